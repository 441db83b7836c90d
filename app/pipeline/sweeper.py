"""超时请求清理：将长时间停留在非终态的请求置为 failed。

以 status + updated_at 作为写入条件，期间若阶段已推进则放弃本次清理；
被清理请求上的租约同时失效，迟到的阶段提交会被拒绝。
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from app.models.base import utcnow
from app.pipeline.store import SqlRequestStore
from app.realtime.publisher import RecordPublisher

logger = logging.getLogger(__name__)


class StaleRequestSweeper:
    def __init__(
        self,
        store: SqlRequestStore,
        stale_minutes: int,
        publisher: RecordPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._stale_after = timedelta(minutes=stale_minutes)
        self._publisher = publisher
        self._clock = clock

    async def sweep(self) -> int:
        """返回本次置为 failed 的请求数。"""
        cutoff = self._clock() - self._stale_after
        stale = await self._store.list_stale(cutoff)
        swept = 0
        for record in stale:
            failed = await self._store.fail_stale(record)
            if failed is None:
                continue
            swept += 1
            logger.warning(
                "[超时清理] 请求 %s 在 %s 状态停留超过 %s，已置为 failed",
                record.id, record.status, self._stale_after,
            )
            if self._publisher is not None:
                await self._publisher.publish_request(failed)
        return swept
