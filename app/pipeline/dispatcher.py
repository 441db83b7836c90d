"""管线调度：按记录当前状态把触发分派给对应阶段。

触发来源：
- HTTP 回调（数据库行变更 / 存储通知）
- Redis 变更频道 analysis:*（阶段提交后发布，本进程监听后调度下一阶段）
- CLI 手动驱动

触发至少投递一次、可能重复，重复由阶段的前置状态检查与条件写入吸收。
"""

import asyncio
import json
import logging
from typing import Any

from app.exceptions import InputError
from app.pipeline.stages.base import BaseStage, StageOutcome
from app.pipeline.store import SqlRequestStore
from app.realtime.publisher import ANALYSIS_CHANNEL_PREFIX

logger = logging.getLogger(__name__)


class PipelineDispatcher:
    """状态 → 阶段路由。"""

    def __init__(self, store: SqlRequestStore, stages: list[BaseStage]) -> None:
        self._store = store
        self._stages = {stage.consumes.value: stage for stage in stages}

    @property
    def store(self) -> SqlRequestStore:
        return self._store

    def handles(self, status: str | None) -> bool:
        return status in self._stages

    async def dispatch(self, request_id: str | None) -> StageOutcome:
        """执行当前状态对应的阶段，无对应阶段时返回 SKIPPED。"""
        if not request_id:
            logger.error("[调度] 触发载荷缺少请求 id")
            raise InputError("触发载荷缺少请求 id")

        record = await self._store.fetch(request_id)
        if record is None:
            logger.warning("[调度] 请求 %s 不存在", request_id)
            return StageOutcome.SKIPPED

        stage = self._stages.get(record.status)
        if stage is None:
            logger.debug("[调度] 请求 %s 状态 %s 无需调度", request_id, record.status)
            return StageOutcome.SKIPPED
        return await stage.execute(request_id)

    async def drive(self, request_id: str, max_steps: int = 5) -> Any:
        """连续推进直到终态或不再前进，返回最终记录。"""
        for _ in range(max_steps):
            outcome = await self.dispatch(request_id)
            if outcome is not StageOutcome.ADVANCED:
                break
        return await self._store.fetch(request_id)


def extract_request_id(payload: Any) -> str | None:
    """从触发载荷中取请求 id：{"record": {...}} 或裸记录。"""
    if not isinstance(payload, dict):
        return None
    record = payload.get("record") if isinstance(payload.get("record"), dict) else payload
    request_id = record.get("id")
    return str(request_id) if request_id else None


class PipelineTriggerListener:
    """监听 Redis 变更频道并调度下一阶段。"""

    def __init__(self, redis_client: Any, dispatcher: PipelineDispatcher) -> None:
        self._redis = redis_client
        self._dispatcher = dispatcher
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._redis and not self._task:
            self._task = asyncio.create_task(self._listen())
            logger.info("[调度] 触发监听已启动")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(f"{ANALYSIS_CHANNEL_PREFIX}*")
        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                self.handle_message(message["data"])
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.close()

    def handle_message(self, data: Any) -> asyncio.Task | None:
        """解析一条变更消息，状态需要调度时创建后台任务。"""
        if isinstance(data, bytes):
            data = data.decode()
        try:
            payload = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            logger.warning("[调度] 忽略无法解析的变更消息")
            return None

        request_id = extract_request_id(payload)
        if not request_id or not self._dispatcher.handles(payload.get("status")):
            return None

        task = asyncio.create_task(self._run(request_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(self, request_id: str) -> None:
        try:
            await self._dispatcher.dispatch(request_id)
        except Exception:
            logger.exception("[调度] 请求 %s 调度异常", request_id)
