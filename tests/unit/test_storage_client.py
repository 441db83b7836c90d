"""对象存储客户端测试。"""

import httpx
import pytest

from app.exceptions import DependencyError
from app.storage.client import HttpObjectStorage


def _storage(handler) -> HttpObjectStorage:
    return HttpObjectStorage(
        base_url="https://proj.supabase.co/storage/v1/",
        api_key="service-key",
        bucket="charts",
        transport=httpx.MockTransport(handler),
    )


class TestHttpObjectStorage:
    async def test_download(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, content=b"\x89PNG", headers={"content-type": "image/png; charset=binary"}
            )

        stored = await _storage(handler).download("/user-1/chart.png")

        assert stored.data == b"\x89PNG"
        assert stored.content_type == "image/png"
        assert str(seen[0].url) == "https://proj.supabase.co/storage/v1/object/charts/user-1/chart.png"
        assert seen[0].headers["authorization"] == "Bearer service-key"

    async def test_download_not_found(self) -> None:
        storage = _storage(lambda r: httpx.Response(404))
        with pytest.raises(DependencyError, match="404"):
            await storage.download("missing.png")

    async def test_download_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DependencyError):
            await _storage(handler).download("a.png")

    async def test_upload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": "charts/a.png"})

        assert await _storage(handler).upload("a.png", b"img", "image/jpeg") == "a.png"
        assert seen[0].method == "POST"
        assert seen[0].headers["content-type"] == "image/jpeg"
        assert seen[0].headers["x-upsert"] == "true"

    async def test_upload_rejected(self) -> None:
        storage = _storage(lambda r: httpx.Response(413))
        with pytest.raises(DependencyError, match="413"):
            await storage.upload("a.png", b"img", "image/png")
