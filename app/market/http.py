"""行情类 HTTP 接口公共请求逻辑。"""

import asyncio
import logging
from typing import Any

import httpx

from app.exceptions import DependencyError, RateLimitError

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """GET + JSON 解析 + 有限重试。

    网络错误和 5xx 重试；4xx（429 除外）直接失败；429 抛 RateLimitError。

    Args:
        base_url: 接口根地址
        timeout: 请求超时秒数
        max_retries: 瞬态错误重试次数
        transport: 可选 httpx 传输层（测试时注入 MockTransport）
    """

    provider = "http"

    def __init__(
        self,
        base_url: str,
        timeout: int = 20,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    async def get_json(self, path: str = "", params: dict[str, Any] | None = None) -> Any:
        url = f"{self._base_url}/{path.lstrip('/')}" if path else self._base_url
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(self._max_retries + 1):
                try:
                    response = await client.get(url, params=params)
                except httpx.HTTPError as exc:
                    last_error = exc
                else:
                    if response.status_code == 429:
                        raise RateLimitError(f"{self.provider} 限流（HTTP 429）")
                    if response.status_code >= 500:
                        last_error = DependencyError(
                            f"{self.provider} 服务端错误（HTTP {response.status_code}）"
                        )
                    elif response.status_code >= 400:
                        raise DependencyError(
                            f"{self.provider} 请求失败（HTTP {response.status_code}）"
                        )
                    else:
                        try:
                            return response.json()
                        except ValueError as exc:
                            raise DependencyError(f"{self.provider} 返回非 JSON 响应") from exc

                if attempt < self._max_retries:
                    wait = 2 ** attempt
                    logger.warning(
                        "[%s] 请求失败（第 %d 次），%ds 后重试：%s",
                        self.provider, attempt + 1, wait, last_error,
                    )
                    await asyncio.sleep(wait)

        raise DependencyError(f"{self.provider} 请求失败：{last_error}")
