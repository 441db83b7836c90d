"""阶段执行器基类。

每个阶段执行同一套流程：
1. 按 id 重新读取记录（触发载荷只用于定位，不信任其中的状态）
2. 状态不等于本阶段前置状态 → 直接返回 SKIPPED，不调用外部服务、不写库
3. 条件写入租约占用记录，并发的重复触发会占用失败并返回 SKIPPED
4. 调用 run() 完成唯一的外部工作单元并校验结果
5. 以租约为条件原子提交下一状态及结果字段
6. 任意异常 → 提交 failed，error_message 为带阶段前缀的简短说明，细节只进日志
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from app.ai.clients.gemini import (
    GeminiError,
    GeminiResponseParseError,
    GeminiTimeoutError,
)
from app.config import Settings
from app.exceptions import (
    DependencyError,
    InputError,
    RateLimitError,
    StageValidationError,
)
from app.pipeline.state import (
    Event,
    Failed,
    Pending,
    PipelineStatus,
    StageFailed,
    State,
    state_from_record,
    transition,
)
from app.pipeline.store import RequestStore
from app.realtime.publisher import RecordPublisher

logger = logging.getLogger(__name__)


class StageOutcome(str, Enum):
    ADVANCED = "advanced"     # 已推进到下一状态
    SKIPPED = "skipped"       # 前置状态不符或已被占用，未做任何事
    FAILED = "failed"         # 已提交 failed
    CONFLICT = "conflict"     # 租约失效，提交被拒绝


class BaseStage(ABC):
    """阶段执行器基类。

    子类需声明：
        name: 阶段标识，写入 failed_stage
        consumes: 前置状态
        error_prefix: 面向用户的错误前缀
    可选：
        claim_status: 占用时同时写入的状态（阶段一 pending → analyzing）
        start_event: 占用后在内存状态上应用的事件
    """

    name: ClassVar[str]
    consumes: ClassVar[PipelineStatus]
    error_prefix: ClassVar[str]
    claim_status: ClassVar[PipelineStatus | None] = None
    start_event: ClassVar[Event | None] = None

    def __init__(
        self,
        settings: Settings,
        store: RequestStore,
        publisher: RecordPublisher | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._publisher = publisher

    @abstractmethod
    async def run(self, record: Any) -> Event:
        """执行本阶段的外部工作单元，返回推进事件。"""

    async def after_commit(self, record: Any) -> None:
        """成功提交后的附加动作，默认无。"""

    async def execute(self, request_id: str | None) -> StageOutcome:
        """执行一次阶段调用，可安全地被重复触发。"""
        if not request_id:
            logger.error("[%s] 触发载荷缺少请求 id，忽略", self.name)
            raise InputError("触发载荷缺少请求 id")

        record = await self._store.fetch(request_id)
        if record is None:
            logger.warning("[%s] 请求 %s 不存在，忽略", self.name, request_id)
            return StageOutcome.SKIPPED
        if record.status != self.consumes.value:
            logger.info(
                "[%s] 请求 %s 当前状态 %s，无需处理",
                self.name, request_id, record.status,
            )
            return StageOutcome.SKIPPED

        claimed_status = self.claim_status.value if self.claim_status else None
        lease = await self._store.claim(request_id, self.consumes.value, claimed_status)
        if lease is None:
            return StageOutcome.SKIPPED
        if claimed_status:
            await self._publish_current(request_id)

        logger.info("[%s] 请求 %s 开始处理", self.name, request_id)
        current: State = Pending()
        try:
            current = state_from_record(record)
            if self.start_event is not None:
                current = transition(current, self.start_event)
            event = await self.run(record)
            next_state = transition(current, event)
        except Exception as exc:
            message = self._user_message(exc)
            if isinstance(exc, (StageValidationError, DependencyError, GeminiError)):
                logger.warning("[%s] 请求 %s 失败：%s", self.name, request_id, exc)
            else:
                logger.exception("[%s] 请求 %s 异常", self.name, request_id)
            next_state = transition(current, StageFailed(stage=self.name, message=message))

        committed = await self._store.commit(request_id, lease, next_state)
        if committed is None:
            logger.warning("[%s] 请求 %s 提交被拒绝（已被清理或并发修改）", self.name, request_id)
            return StageOutcome.CONFLICT

        if isinstance(next_state, Failed):
            await self._publish(committed)
            return StageOutcome.FAILED

        logger.info("[%s] 请求 %s 推进至 %s", self.name, request_id, committed.status)
        await self.after_commit(committed)
        await self._publish(committed)
        return StageOutcome.ADVANCED

    def _user_message(self, exc: Exception) -> str:
        """异常 → 面向用户的简短错误说明。"""
        if isinstance(exc, StageValidationError):
            detail = f"respuesta inválida: {exc}"
        elif isinstance(exc, RateLimitError):
            detail = "límite de la API de datos de mercado alcanzado."
        elif isinstance(exc, DependencyError):
            detail = "un servicio externo no está disponible."
        elif isinstance(exc, GeminiResponseParseError):
            detail = "el modelo devolvió un JSON malformado."
        elif isinstance(exc, GeminiTimeoutError):
            detail = "el modelo no respondió a tiempo."
        elif isinstance(exc, GeminiError):
            detail = "el servicio de IA no está disponible."
        else:
            detail = "error interno."
        return f"{self.error_prefix}: {detail}"

    async def _publish(self, record: Any) -> None:
        if self._publisher is not None:
            await self._publisher.publish_request(record)

    async def _publish_current(self, request_id: str) -> None:
        if self._publisher is None:
            return
        record = await self._store.fetch(request_id)
        if record is not None:
            await self._publisher.publish_request(record)
