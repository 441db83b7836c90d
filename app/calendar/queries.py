"""经济日历查询。"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.calendar import EconomicEvent


async def list_events(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    currency: str | None = None,
    impact: str | None = None,
) -> list[EconomicEvent]:
    """按时间区间（含两端）查询事件，按时间升序。"""
    stmt = select(EconomicEvent).where(
        EconomicEvent.event_date >= start,
        EconomicEvent.event_date <= end,
    )
    if currency:
        stmt = stmt.where(EconomicEvent.currency == currency.upper())
    if impact:
        stmt = stmt.where(EconomicEvent.impact == impact)
    stmt = stmt.order_by(EconomicEvent.event_date, EconomicEvent.event_name)
    result = await session.execute(stmt)
    return list(result.scalars().all())
