"""分析请求持久化：管线唯一的协调点。

所有状态写入都是条件更新（compare-and-swap）：
- claim(): 仅当 status 等于预期值且未被占用时写入租约
- commit(): 仅当租约仍归当前执行者时写入新状态并释放租约
- fail_stale(): 仅当 status / updated_at 未变化时置为 failed

条件不满足时返回 None / False，调用方据此判定为并发冲突，绝不覆盖他人写入。
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.analysis import AnalysisRequest
from app.models.base import utcnow
from app.pipeline.state import (
    TERMINAL_STATUSES,
    Failed,
    PipelineStatus,
    State,
    columns_for,
    stage_for_status,
)

logger = logging.getLogger(__name__)

STALE_ERROR_MESSAGE = "El análisis superó el tiempo máximo de procesamiento."


class RequestStore(Protocol):
    """阶段执行器依赖的存储接口。"""

    async def fetch(self, request_id: str) -> AnalysisRequest | None: ...

    async def claim(
        self,
        request_id: str,
        expected_status: str,
        claimed_status: str | None = None,
    ) -> str | None: ...

    async def commit(self, request_id: str, lease: str, state: State) -> AnalysisRequest | None: ...


class SqlRequestStore:
    """基于 SQLAlchemy 异步会话的请求存储。"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        user_id: str,
        image_path: str,
        notes: str | None = None,
    ) -> AnalysisRequest:
        """新建 pending 请求。"""
        async with self._session_factory() as session:
            record = AnalysisRequest(
                user_id=user_id,
                image_path=image_path,
                notes=notes,
                status=PipelineStatus.PENDING.value,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.info("[请求] 新建分析请求 %s（user=%s）", record.id, user_id)
            return record

    async def fetch(self, request_id: str) -> AnalysisRequest | None:
        async with self._session_factory() as session:
            return await session.get(AnalysisRequest, request_id)

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[AnalysisRequest]:
        """用户历史请求，按创建时间倒序。"""
        async with self._session_factory() as session:
            stmt = (
                select(AnalysisRequest)
                .where(AnalysisRequest.user_id == user_id)
                .order_by(AnalysisRequest.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def claim(
        self,
        request_id: str,
        expected_status: str,
        claimed_status: str | None = None,
    ) -> str | None:
        """占用请求：写入租约（可同时推进到 claimed_status）。

        Returns:
            租约令牌；状态不符或已被占用时返回 None
        """
        lease = str(uuid.uuid4())
        values: dict = {"lease_token": lease, "updated_at": utcnow()}
        if claimed_status is not None:
            values["status"] = claimed_status

        async with self._session_factory() as session:
            stmt = (
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == request_id,
                    AnalysisRequest.status == expected_status,
                    AnalysisRequest.lease_token.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount != 1:
            logger.info("[请求] %s 占用失败（期望状态 %s）", request_id, expected_status)
            return None
        return lease

    async def commit(self, request_id: str, lease: str, state: State) -> AnalysisRequest | None:
        """以租约为条件写入新状态并释放租约。

        Returns:
            写入后的记录；租约已失效（被清理或被他人占用）时返回 None
        """
        values = columns_for(state)
        values["lease_token"] = None
        values["updated_at"] = utcnow()

        async with self._session_factory() as session:
            stmt = (
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == request_id,
                    AnalysisRequest.lease_token == lease,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                logger.warning("[请求] %s 提交 %s 失败：租约已失效", request_id, state.status.value)
                return None
            await session.commit()
            return await session.get(AnalysisRequest, request_id)

    async def list_stale(self, older_than: datetime) -> list[AnalysisRequest]:
        """非终态且 updated_at 早于阈值的请求。"""
        terminal = [s.value for s in TERMINAL_STATUSES]
        async with self._session_factory() as session:
            stmt = (
                select(AnalysisRequest)
                .where(
                    AnalysisRequest.status.not_in(terminal),
                    AnalysisRequest.updated_at < older_than,
                )
                .order_by(AnalysisRequest.updated_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def fail_stale(self, record: AnalysisRequest) -> AnalysisRequest | None:
        """将超时请求置为 failed，条件为 status 与 updated_at 均未变化。"""
        state = Failed(stage=stage_for_status(record.status), message=STALE_ERROR_MESSAGE)
        values = columns_for(state)
        values["lease_token"] = None
        values["updated_at"] = utcnow()

        async with self._session_factory() as session:
            stmt = (
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == record.id,
                    AnalysisRequest.status == record.status,
                    AnalysisRequest.updated_at == record.updated_at,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            return await session.get(AnalysisRequest, record.id)
