"""经济日历与事件分析缓存 ORM 模型。"""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, utcnow


class EconomicEvent(Base):
    """经济日历事件表，自然键 (event_date, event_name)。

    event_description 一旦写入永不覆盖。
    """

    __tablename__ = "economic_events"
    __table_args__ = (
        UniqueConstraint("event_date", "event_name", name="uq_economic_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    event_name: Mapped[str] = mapped_column(String(256), nullable=False)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True, index=True)
    impact: Mapped[str | None] = mapped_column(String(8), nullable=True)  # High / Medium / Low
    actual: Mapped[str | None] = mapped_column(String(32), nullable=True)
    estimate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    previous: Mapped[str | None] = mapped_column(String(32), nullable=True)
    event_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class EventAnalysisCache(Base):
    """事件 AI 分析缓存表，写一次读多次。"""

    __tablename__ = "event_analysis_cache"
    __table_args__ = (
        UniqueConstraint("event_name", "currency", "event_date", name="uq_event_analysis"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(String(256), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    analysis: Mapped[dict] = mapped_column(JSONType, nullable=False)
    requested_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
