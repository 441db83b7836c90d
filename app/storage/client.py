"""对象存储客户端：下载用户上传的图表截图。"""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.exceptions import DependencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    data: bytes
    content_type: str


class ObjectStorage(Protocol):
    """阶段执行器依赖的存储接口。"""

    async def download(self, path: str) -> StoredObject: ...

    async def upload(self, path: str, data: bytes, content_type: str) -> str: ...


class HttpObjectStorage:
    """基于 HTTP 的对象存储（Supabase Storage 兼容接口）。

    Args:
        base_url: 存储服务根地址，例如 https://<project>.supabase.co/storage/v1
        api_key: 服务端密钥
        bucket: 存储桶名称
        timeout: 请求超时秒数
        transport: 可选 httpx 传输层（测试时注入 MockTransport）
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str,
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {api_key}", "apikey": api_key}

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/object/{self._bucket}/{path.lstrip('/')}"

    async def download(self, path: str) -> StoredObject:
        """下载对象，非 2xx 抛 DependencyError。"""
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, headers=self._headers, transport=self._transport
            ) as client:
                response = await client.get(self._object_url(path))
        except httpx.HTTPError as exc:
            raise DependencyError(f"存储下载失败：{path}：{exc}") from exc

        if response.status_code != 200:
            raise DependencyError(f"存储下载失败：{path}（HTTP {response.status_code}）")

        content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        logger.debug("[存储] 下载 %s（%d 字节，%s）", path, len(response.content), content_type)
        return StoredObject(data=response.content, content_type=content_type)

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """上传对象并返回其路径。"""
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, headers=self._headers, transport=self._transport
            ) as client:
                response = await client.post(
                    self._object_url(path),
                    content=data,
                    headers={"content-type": content_type, "x-upsert": "true"},
                )
        except httpx.HTTPError as exc:
            raise DependencyError(f"存储上传失败：{path}：{exc}") from exc

        if response.status_code not in (200, 201):
            raise DependencyError(f"存储上传失败：{path}（HTTP {response.status_code}）")
        return path
