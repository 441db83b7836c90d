"""单个经济事件的 AI 分析（带永久缓存）。

缓存键 (event_name, currency, event_date)，写一次读多次：
命中直接返回；未命中则取该事件最近 5 次历史公布值生成分析，
以 ON CONFLICT DO NOTHING 写入后重新读取，并发生成时以先写入者为准。
"""

import logging
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.clients.gemini import GeminiClient
from app.ai.prompts import build_event_analysis_prompt
from app.ai.schemas import EventAnalysis
from app.exceptions import StageValidationError
from app.market.fmp import FmpClient
from app.models.base import dialect_insert, utcnow
from app.models.calendar import EventAnalysisCache
from app.pipeline.validator import validate

logger = logging.getLogger(__name__)

HISTORY_SIZE = 5


class EventAnalysisService:
    def __init__(
        self,
        fmp: FmpClient,
        gemini: GeminiClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._fmp = fmp
        self._gemini = gemini
        self._session_factory = session_factory

    async def get_or_create(
        self,
        event_name: str,
        currency: str,
        event_date: date,
        estimate: str | None = None,
        previous: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """返回事件分析，缓存未命中时生成并写入。

        Raises:
            DependencyError: 历史数据获取失败
            GeminiError: 模型调用失败
            StageValidationError: 模型输出不符合结构
        """
        cached = await self._load(event_name, currency, event_date)
        if cached is not None:
            logger.info("[事件分析] 命中缓存：%s %s %s", event_name, currency, event_date)
            return cached

        history = await self._history(event_name, currency)
        raw = await self._gemini.chat_json(
            build_event_analysis_prompt(event_name, currency, estimate, previous, history)
        )
        result = validate(raw, EventAnalysis)
        if not result.valid:
            raise StageValidationError(result.errors)

        async with self._session_factory() as session:
            stmt = dialect_insert(session, EventAnalysisCache).values(
                event_name=event_name,
                currency=currency,
                event_date=event_date,
                analysis=result.sanitized,
                requested_by=user_id,
                created_at=utcnow(),
            )
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["event_name", "currency", "event_date"]
            )
            await session.execute(stmt)
            await session.commit()

        logger.info("[事件分析] 生成并缓存：%s %s %s", event_name, currency, event_date)
        stored = await self._load(event_name, currency, event_date)
        return stored if stored is not None else result.sanitized

    async def _load(self, event_name: str, currency: str, event_date: date) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(EventAnalysisCache.analysis).where(
                    EventAnalysisCache.event_name == event_name,
                    EventAnalysisCache.currency == currency,
                    EventAnalysisCache.event_date == event_date,
                )
            )

    async def _history(self, event_name: str, currency: str) -> list[dict[str, Any]]:
        raw = await self._fmp.fetch_historical_calendar(currency)
        matches = [item for item in raw if item.get("event") == event_name]
        return [
            {
                "date": str(item.get("date", ""))[:10],
                "actual": item.get("actual"),
                "estimate": item.get("estimate"),
            }
            for item in matches[:HISTORY_SIZE]
        ]
