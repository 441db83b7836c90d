"""AI Prompt 模板。

从 YAML 文件加载模板，构建发送给 Gemini 的提示词：
- chart_extraction: 图表识别（附带用户备注）
- recommendation: 最终交易建议
- signal_validation: 技术信号风控复核
- event_descriptions: 经济事件批量描述
- event_analysis: 单个经济事件深度分析

模板文本面向模型，使用西班牙语以与产品输出保持一致。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from app.pipeline.normalizer import TIMEFRAMES

logger = logging.getLogger(__name__)

# YAML 模板目录
_TEMPLATES_DIR = Path(__file__).parent / "templates"

# 模板缓存
_template_cache: dict[str, dict[str, Any]] = {}

_NO_NOTES = "El usuario no proporcionó notas adicionales."
_NO_HISTORY = "No se encontraron datos históricos para este evento específico."

# 内置默认模板（YAML 文件缺失时的降级方案）
_FALLBACK_TEMPLATES: dict[str, str] = {
    "chart_extraction": (
        "Analiza la imagen del gráfico de trading y devuelve un JSON con TODAS las claves "
        "del esquema; usa null si no puedes determinar un valor.\n"
        'Notas del usuario: "{notes}"\n'
        "Temporalidades permitidas: {timeframes}."
    ),
    "recommendation": (
        "Actúa como analista de trading cuantitativo. Devuelve un JSON estricto según el esquema. "
        "'puntuacion' es un entero entre 0 y 100. Si la estrategia es 'ESPERAR', rellena "
        "'plan_de_vigilancia' con condicion_compra y condicion_venta.\n"
        "Datos de Entrada:\n{input_json}"
    ),
    "signal_validation": (
        "Valida la señal de {direction} en {asset} (patrón: {pattern}, precio {price}). "
        'Responde JSON con status "valida" y "signal", o status "descartada" y "justification".'
    ),
    "event_descriptions": (
        "Describe brevemente qué mide cada indicador económico y por qué importa a los mercados. "
        "Devuelve un objeto JSON nombre → descripción.\n{event_names}"
    ),
    "event_analysis": (
        'Analiza el evento "{event_name}" ({currency}); previsión {estimate}, previo {previous}.\n'
        "Histórico:\n{history}\n"
        "Devuelve JSON con professional_description, historical_analysis y "
        "forecast_scenarios (tres escenarios con scenario y recommendation)."
    ),
}


def _load_template(name: str) -> dict[str, Any]:
    """加载并缓存 YAML Prompt 模板。

    Args:
        name: 模板文件名（不含 .yaml 后缀）

    Returns:
        模板字典，包含 version, prompt_template
    """
    if name in _template_cache:
        return _template_cache[name]

    path = _TEMPLATES_DIR / f"{name}.yaml"
    if not path.exists():
        logger.warning("Prompt 模板 %s 不存在，使用内置默认模板", path)
        return {"version": f"{name}-fallback", "prompt_template": _FALLBACK_TEMPLATES[name]}

    with open(path, encoding="utf-8") as f:
        template = yaml.safe_load(f)

    _template_cache[name] = template
    return template


def get_prompt_version(template_name: str) -> str:
    """获取 Prompt 模板版本号。"""
    return _load_template(template_name).get("version", "unknown")


def _render(name: str, **values: Any) -> str:
    template = _load_template(name)
    return template["prompt_template"].format(**values).strip()


def build_extraction_prompt(notes: str | None) -> str:
    """构建图表识别提示词，用户备注作为分析上下文。"""
    return _render(
        "chart_extraction",
        notes=(notes or "").strip() or _NO_NOTES,
        timeframes=", ".join(TIMEFRAMES),
    )


def build_recommendation_prompt(extraction: dict[str, Any], market: dict[str, Any]) -> str:
    """构建最终建议提示词：图表识别结果 + 市场数据。"""
    input_json = json.dumps(
        {
            "analisis_usuario": extraction,
            "datos_mercado_e_indicadores": market,
        },
        ensure_ascii=False,
        indent=2,
        default=str,
    )
    return _render("recommendation", input_json=input_json)


def build_signal_validation_prompt(asset: str, direction: str, pattern: str, price: float) -> str:
    """构建信号复核提示词，direction 为 COMPRA / VENTA。"""
    return _render(
        "signal_validation",
        asset=asset,
        direction=direction,
        pattern=pattern,
        price=price,
    )


def build_event_descriptions_prompt(event_names: list[str]) -> str:
    """构建经济事件批量描述提示词。"""
    return _render("event_descriptions", event_names="\n".join(event_names))


def build_event_analysis_prompt(
    event_name: str,
    currency: str,
    estimate: str | None,
    previous: str | None,
    history: list[dict[str, Any]],
) -> str:
    """构建单个经济事件分析提示词。

    history 为该事件最近若干次公布记录（date / actual / estimate）。
    """
    lines = [
        f"  - Fecha: {item.get('date', 'N/A')}, "
        f"Actual: {item.get('actual') if item.get('actual') is not None else 'N/A'}, "
        f"Previsión: {item.get('estimate') if item.get('estimate') is not None else 'N/A'}"
        for item in history
    ]
    return _render(
        "event_analysis",
        event_name=event_name,
        currency=currency,
        estimate=estimate if estimate is not None else "N/A",
        previous=previous if previous is not None else "N/A",
        history="\n".join(lines) if lines else _NO_HISTORY,
    )
