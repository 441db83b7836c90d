"""Gemini 模型客户端。

图表识别、最终建议、信号复核和经济事件描述共用同一个客户端类，
按用途以不同 model_id 创建实例。输出一律为 JSON 文本：
结构约束通过 response_schema 交给模型，结构校验由调用方完成。

认证：API Key（Google AI）优先，其次 ADC（Vertex AI），都没有时构造失败。
"""

import asyncio
import json
import logging
from typing import Any

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)


class GeminiError(Exception):
    """Gemini 调用失败的基类。"""


class GeminiTimeoutError(GeminiError):
    """单次请求超过 timeout，不重试。"""


class GeminiAPIError(GeminiError):
    """重试耗尽后仍失败（限流、认证、服务端错误）。"""


class GeminiResponseParseError(GeminiError):
    """模型返回的文本不是合法 JSON。"""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


_EMPTY_USAGE = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def _create_sdk_client(
    api_key: str | None,
    use_adc: bool,
    gcp_project: str,
    gcp_location: str,
) -> genai.Client:
    if api_key:
        return genai.Client(api_key=api_key)
    if not use_adc:
        raise ValueError("必须配置 GEMINI_API_KEY 或设置 GEMINI_USE_ADC=true")
    if not gcp_project:
        raise ValueError("ADC 模式需要配置 GEMINI_GCP_PROJECT（GCP 项目 ID）")
    try:
        return genai.Client(vertexai=True, project=gcp_project, location=gcp_location)
    except Exception as exc:
        raise ValueError(f"ADC Vertex AI 客户端初始化失败：{exc}") from exc


class GeminiClient:
    """Gemini 异步客户端。

    Args:
        api_key: Gemini API 密钥，为空时尝试 ADC
        model_id: 模型标识符
        timeout: 单次请求超时秒数
        max_retries: 非超时错误的重试次数（指数退避 1s, 2s, ...）
        use_adc: 是否使用 Application Default Credentials
        gcp_project: GCP 项目 ID（ADC 模式必填）
        gcp_location: GCP 区域

    Raises:
        ValueError: 凭据缺失或 ADC 初始化失败
    """

    def __init__(
        self,
        api_key: str | None = None,
        model_id: str = "gemini-2.0-flash",
        timeout: int = 30,
        max_retries: int = 2,
        use_adc: bool = False,
        gcp_project: str = "",
        gcp_location: str = "us-central1",
    ) -> None:
        self._client = _create_sdk_client(api_key, use_adc, gcp_project, gcp_location)
        self._model_id = model_id
        self._timeout = timeout
        self._max_retries = max_retries
        self._last_usage = dict(_EMPTY_USAGE)

    @property
    def model_id(self) -> str:
        return self._model_id

    def get_last_usage(self) -> dict[str, int]:
        """最近一次成功调用的 token 用量。"""
        return dict(self._last_usage)

    def _record_usage(self, response: Any) -> None:
        meta = response.usage_metadata
        if not meta:
            return
        self._last_usage = {
            "prompt_tokens": meta.prompt_token_count or 0,
            "completion_tokens": meta.candidates_token_count or 0,
            "total_tokens": meta.total_token_count or 0,
        }

    async def _generate_once(self, contents: Any, config: types.GenerateContentConfig) -> str:
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model_id,
                    contents=contents,
                    config=config,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GeminiTimeoutError(
                f"{self._model_id} 请求超时（{self._timeout}s）"
            ) from exc
        self._record_usage(response)
        return response.text or ""

    async def chat(
        self,
        prompt: str,
        max_tokens: int = 2000,
        image: bytes | None = None,
        image_mime_type: str = "image/png",
        response_schema: dict[str, Any] | None = None,
    ) -> str:
        """发送提示词（可附带一张图片），返回模型的 JSON 文本。

        Raises:
            GeminiTimeoutError: 请求超时
            GeminiAPIError: 重试耗尽
        """
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=response_schema,
            max_output_tokens=max_tokens,
        )
        contents: Any = prompt
        if image is not None:
            contents = [prompt, types.Part.from_bytes(data=image, mime_type=image_mime_type)]

        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._generate_once(contents, config)
            except GeminiTimeoutError:
                raise
            except Exception as exc:
                if attempt == attempts:
                    raise GeminiAPIError(
                        f"{self._model_id} 调用失败（已重试 {self._max_retries} 次）：{exc}"
                    ) from exc
                wait = 2 ** (attempt - 1)
                logger.warning(
                    "[Gemini] %s 第 %d/%d 次调用失败，%ds 后重试：%s",
                    self._model_id, attempt, attempts, wait, exc,
                )
                await asyncio.sleep(wait)

        raise GeminiAPIError(f"{self._model_id} 未发起调用")

    async def chat_json(
        self,
        prompt: str,
        max_tokens: int = 2000,
        image: bytes | None = None,
        image_mime_type: str = "image/png",
        response_schema: dict[str, Any] | None = None,
    ) -> Any:
        """chat() + JSON 解析。只做语法解析，不检查结构。

        Raises:
            GeminiResponseParseError: 响应不是合法 JSON
        """
        text = await self.chat(
            prompt,
            max_tokens,
            image=image,
            image_mime_type=image_mime_type,
            response_schema=response_schema,
        )
        try:
            return json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise GeminiResponseParseError(
                f"{self._model_id} 响应不是合法 JSON：{exc}",
                raw_response=text,
            ) from exc


def build_gemini_client(settings: Any, model_id: str) -> GeminiClient:
    """按配置创建指定模型的客户端。"""
    return GeminiClient(
        api_key=settings.gemini_api_key or None,
        model_id=model_id,
        timeout=settings.gemini_timeout,
        max_retries=settings.gemini_max_retries,
        use_adc=settings.gemini_use_adc,
        gcp_project=settings.gemini_gcp_project,
        gcp_location=settings.gemini_gcp_location,
    )
