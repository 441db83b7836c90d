"""经济日历维护任务。

- refresh(): 拉取未来 N 天日历，按 (event_date, event_name) 幂等 upsert，
  已有的 event_description 不会被覆盖
- enrich_descriptions(): 为缺少描述的事件批量生成描述，只填充仍为空的行
- update_actuals(): 刷新最近窗口内已公布事件的 actual 值
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.clients.gemini import GeminiClient, GeminiError
from app.ai.prompts import build_event_descriptions_prompt
from app.config import Settings
from app.market.fmp import FmpClient
from app.models.base import dialect_insert, utcnow
from app.models.calendar import EconomicEvent

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_event_date(raw: Any) -> datetime | None:
    """日历时间 → naive UTC datetime，无法解析返回 None。"""
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_event_row(event: dict[str, Any]) -> dict[str, Any] | None:
    """接口事件 → economic_events 行，缺少日期或名称返回 None。"""
    event_date = parse_event_date(event.get("date"))
    name = event.get("event")
    if event_date is None or not name:
        return None
    previous = event.get("previous")
    if previous is None:
        previous = event.get("prev")
    return {
        "event_date": event_date,
        "event_name": str(name),
        "country": _as_text(event.get("country")),
        "currency": _as_text(event.get("currency")),
        "impact": _as_text(event.get("impact")),
        "actual": _as_text(event.get("actual")),
        "estimate": _as_text(event.get("estimate")),
        "previous": _as_text(previous),
        "updated_at": utcnow(),
    }


class CalendarRefresher:
    """经济日历同步与描述补全。"""

    def __init__(
        self,
        settings: Settings,
        fmp: FmpClient,
        gemini: GeminiClient,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._fmp = fmp
        self._gemini = gemini
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def refresh(self) -> int:
        """同步未来 calendar_refresh_days 天的事件，返回 upsert 行数。"""
        today = self._clock().date()
        raw = await self._fmp.fetch_calendar(
            today, today + timedelta(days=self._settings.calendar_refresh_days)
        )

        # 同一批次内按自然键去重，后出现的覆盖先出现的
        unique: dict[tuple[datetime, str], dict[str, Any]] = {}
        for event in raw:
            row = to_event_row(event)
            if row is not None:
                unique[(row["event_date"], row["event_name"])] = row
        rows = list(unique.values())
        if not rows:
            logger.info("[经济日历] 无新事件")
            return 0

        async with self._session_factory() as session:
            stmt = dialect_insert(session, EconomicEvent).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["event_date", "event_name"],
                set_={
                    "country": stmt.excluded.country,
                    "currency": stmt.excluded.currency,
                    "impact": stmt.excluded.impact,
                    "actual": stmt.excluded.actual,
                    "estimate": stmt.excluded.estimate,
                    "previous": stmt.excluded.previous,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

        logger.info("[经济日历] upsert %d 个事件（原始 %d 条）", len(rows), len(raw))
        return len(rows)

    async def enrich_descriptions(self) -> int:
        """为缺少描述的事件生成描述，返回成功填充的事件名数量。"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(EconomicEvent.event_name)
                .where(EconomicEvent.event_description.is_(None))
                .limit(self._settings.calendar_description_scan_limit)
            )
            names = list(dict.fromkeys(result.scalars().all()))

        if not names:
            logger.info("[事件描述] 没有需要补全的事件")
            return 0

        batch_size = self._settings.calendar_description_batch_size
        described = 0
        for i in range(0, len(names), batch_size):
            batch = names[i:i + batch_size]
            try:
                raw = await self._gemini.chat_json(build_event_descriptions_prompt(batch))
            except GeminiError as exc:
                logger.warning("[事件描述] 第 %d 批生成失败（继续）：%s", i // batch_size + 1, exc)
                continue
            if not isinstance(raw, dict):
                logger.warning("[事件描述] 第 %d 批返回格式异常", i // batch_size + 1)
                continue

            descriptions = {
                name: text.strip()
                for name, text in raw.items()
                if name in batch and isinstance(text, str) and text.strip()
            }
            described += await self._store_descriptions(descriptions)

        logger.info("[事件描述] 完成：待补全 %d 个，已填充 %d 个", len(names), described)
        return described

    async def _store_descriptions(self, descriptions: dict[str, str]) -> int:
        stored = 0
        async with self._session_factory() as session:
            for name, text in descriptions.items():
                result = await session.execute(
                    update(EconomicEvent)
                    .where(
                        EconomicEvent.event_name == name,
                        EconomicEvent.event_description.is_(None),
                    )
                    .values(event_description=text)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    stored += 1
            await session.commit()
        return stored

    async def update_actuals(self) -> int:
        """刷新最近 calendar_actuals_window_minutes 分钟内公布的 actual 值。"""
        now = self._clock()
        since = now - timedelta(minutes=self._settings.calendar_actuals_window_minutes)
        raw = await self._fmp.fetch_calendar(since.date(), now.date())

        updated = 0
        async with self._session_factory() as session:
            for event in raw:
                actual = _as_text(event.get("actual"))
                event_date = parse_event_date(event.get("date"))
                if actual is None or event_date is None or not event.get("event"):
                    continue
                result = await session.execute(
                    update(EconomicEvent)
                    .where(
                        EconomicEvent.event_date == event_date,
                        EconomicEvent.event_name == str(event["event"]),
                    )
                    .values(actual=actual, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount or 0
            await session.commit()

        if updated:
            logger.info("[经济日历] 更新 actual 值 %d 条", updated)
        return updated
