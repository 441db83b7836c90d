"""请求存储条件写入测试（内存 SQLite）。"""

from datetime import timedelta

from sqlalchemy import update

from app.models.analysis import AnalysisRequest
from app.models.base import utcnow
from app.pipeline.state import Enriching, Failed
from app.pipeline.store import STALE_ERROR_MESSAGE, SqlRequestStore


class TestCreateAndFetch:
    async def test_create_pending(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "charts/a.png", "Veo un doble suelo")

        fetched = await store.fetch(record.id)
        assert fetched.status == "pending"
        assert fetched.notes == "Veo un doble suelo"
        assert fetched.lease_token is None
        assert fetched.credit_charged is False

    async def test_fetch_missing(self, session_factory) -> None:
        assert await SqlRequestStore(session_factory).fetch("nope") is None

    async def test_list_for_user(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        await store.create("user-1", "a.png")
        await store.create("user-1", "b.png")
        await store.create("user-2", "c.png")
        records = await store.list_for_user("user-1")
        assert {r.image_path for r in records} == {"a.png", "b.png"}


class TestClaim:
    async def test_claim_sets_status_and_lease(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")

        lease = await store.claim(record.id, "pending", "analyzing")
        assert lease is not None
        fetched = await store.fetch(record.id)
        assert fetched.status == "analyzing"
        assert fetched.lease_token == lease

    async def test_second_claim_loses(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")

        first = await store.claim(record.id, "pending", "analyzing")
        second = await store.claim(record.id, "pending", "analyzing")
        assert first is not None
        assert second is None

    async def test_claim_without_status_change_blocks_duplicates(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        async with session_factory() as session:
            await session.execute(
                update(AnalysisRequest)
                .where(AnalysisRequest.id == record.id)
                .values(status="enriching", analysis_result={"activo": "EUR/USD"})
            )
            await session.commit()

        assert await store.claim(record.id, "enriching") is not None
        assert await store.claim(record.id, "enriching") is None
        assert (await store.fetch(record.id)).status == "enriching"

    async def test_wrong_expected_status(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        assert await store.claim(record.id, "enriching") is None


class TestCommit:
    async def test_commit_with_valid_lease(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        lease = await store.claim(record.id, "pending", "analyzing")

        committed = await store.commit(record.id, lease, Enriching(extraction={"activo": "EUR/USD"}))
        assert committed.status == "enriching"
        assert committed.analysis_result == {"activo": "EUR/USD"}
        assert committed.lease_token is None

    async def test_commit_with_stale_lease_rejected(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        await store.claim(record.id, "pending", "analyzing")

        assert await store.commit(record.id, "other-lease", Failed("analysis", "x")) is None
        assert (await store.fetch(record.id)).status == "analyzing"


class TestStale:
    async def _age(self, session_factory, request_id: str, minutes: int) -> None:
        async with session_factory() as session:
            await session.execute(
                update(AnalysisRequest)
                .where(AnalysisRequest.id == request_id)
                .values(updated_at=utcnow() - timedelta(minutes=minutes))
            )
            await session.commit()

    async def test_list_and_fail_stale(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        old = await store.create("user-1", "old.png")
        fresh = await store.create("user-1", "fresh.png")
        await self._age(session_factory, old.id, 30)

        stale = await store.list_stale(utcnow() - timedelta(minutes=15))
        assert [r.id for r in stale] == [old.id]

        failed = await store.fail_stale(stale[0])
        assert failed.status == "failed"
        assert failed.error_message == STALE_ERROR_MESSAGE
        assert failed.failed_stage == "analysis"
        assert (await store.fetch(fresh.id)).status == "pending"

    async def test_fail_stale_skips_if_record_moved(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        await self._age(session_factory, record.id, 30)
        stale = (await store.list_stale(utcnow() - timedelta(minutes=15)))[0]

        # 阶段在清理前推进了记录
        await store.claim(record.id, "pending", "analyzing")
        assert await store.fail_stale(stale) is None
        assert (await store.fetch(record.id)).status == "analyzing"

    async def test_sweep_invalidates_lease(self, session_factory) -> None:
        store = SqlRequestStore(session_factory)
        record = await store.create("user-1", "a.png")
        lease = await store.claim(record.id, "pending", "analyzing")
        await self._age(session_factory, record.id, 30)
        stale = (await store.list_stale(utcnow() - timedelta(minutes=15)))[0]

        assert await store.fail_stale(stale) is not None
        late = await store.commit(record.id, lease, Enriching(extraction={"activo": "EUR/USD"}))
        assert late is None
        assert (await store.fetch(record.id)).status == "failed"
