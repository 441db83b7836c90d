"""模型输出结构校验器。

以 Pydantic 模型作为字段清单校验候选对象，返回 ValidationResult：
- 缺少必填字段、类型不符均记为错误，错误信息包含字段路径
- 数值字段接受数字字符串（"85" → 85），转换失败记为错误
- 领域规则（资产/周期归一化、条件必填）由模型上的校验器实现

校验器不关心调用方是哪个阶段，所有阶段共用。
错误信息会出现在面向用户的 error_message 中，因此使用西班牙语。
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

# 模型表示"未知"的写法
_UNKNOWN_MARKERS = {"", "null", "none"}


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    sanitized: dict[str, Any] | None = None


def validate(candidate: Any, manifest: type[BaseModel]) -> ValidationResult:
    """校验并清洗候选对象。

    Args:
        candidate: 模型返回并已 JSON 解析的对象
        manifest: 描述期望结构的 Pydantic 模型

    Returns:
        ValidationResult，sanitized 为按清单导出的 JSON 兼容字典
    """
    if not isinstance(candidate, dict):
        return ValidationResult(
            valid=False,
            errors=["La respuesta no es un objeto JSON válido."],
        )

    try:
        model = manifest.model_validate(candidate)
    except ValidationError as exc:
        return ValidationResult(
            valid=False,
            errors=[_format_error(err) for err in exc.errors()],
        )

    return ValidationResult(valid=True, sanitized=model.model_dump(mode="json"))


def _format_error(err: dict[str, Any]) -> str:
    path = ".".join(str(part) for part in err.get("loc", ()))
    if err.get("type") == "missing":
        return f"Falta el campo obligatorio '{path}'."
    message = err.get("msg", "")
    # 自定义校验器抛出的 ValueError 带 "Value error, " 前缀
    if err.get("type") == "value_error":
        message = message.removeprefix("Value error, ")
        return f"{message} (campo '{path}')" if path else message
    return f"Campo '{path}' inválido: {message}"


def is_unknown(raw: Any) -> bool:
    """模型以 null / 空串 / "null" 表示的未知值。"""
    return raw is None or (isinstance(raw, str) and raw.strip().lower() in _UNKNOWN_MARKERS)


def _fold(text: str) -> str:
    """去掉重音并转小写："Válida" -> "valida"。"""
    decomposed = unicodedata.normalize("NFKD", text.strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def canonical_choice(raw: Any, choices: tuple[str, ...]) -> Any:
    """忽略大小写与重音匹配枚举值，未匹配时原样返回交由类型校验报错。"""
    if isinstance(raw, str):
        folded = _fold(raw)
        for choice in choices:
            if folded == _fold(choice):
                return choice
    return raw
