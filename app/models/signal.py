"""交易信号 ORM 模型（只追加，不修改）。"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, utcnow


class TradingSignal(Base):
    """经 AI 确认的交易信号。"""

    __tablename__ = "trading_signals"
    __table_args__ = (
        Index("ix_trading_signals_created_at", "created_at"),
        Index("ix_trading_signals_asset", "asset"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset: Mapped[str] = mapped_column(String(16), nullable=False)
    direction: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY / SELL
    entry_price: Mapped[float] = mapped_column(Numeric(20, 6), nullable=False)
    stop_loss: Mapped[float] = mapped_column(Numeric(20, 6), nullable=False)
    take_profit: Mapped[float] = mapped_column(Numeric(20, 6), nullable=False)
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    technical_pattern: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
