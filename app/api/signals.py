"""交易信号查询 API。"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_session_factory
from app.models.signal import TradingSignal

router = APIRouter(prefix="/api/v1/signals", tags=["signals"])


def _scan_symbol(asset: str) -> str:
    """EUR/USD、eur-usd → EURUSD（扫描器保存的品种格式）。"""
    return asset.upper().replace("/", "").replace("-", "").replace(" ", "")


class SignalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    asset: str
    direction: str
    entry_price: float
    stop_loss: float
    take_profit: float
    justification: str
    technical_pattern: str
    created_at: datetime


@router.get("", response_model=list[SignalResponse])
async def list_signals(
    asset: str | None = Query(None, description="品种，如 EURUSD / EUR/USD"),
    limit: int = Query(20, ge=1, le=100),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Any:
    """最新信号，按创建时间倒序。"""
    stmt = select(TradingSignal)
    if asset:
        stmt = stmt.where(TradingSignal.asset == _scan_symbol(asset))
    stmt = stmt.order_by(TradingSignal.created_at.desc(), TradingSignal.id.desc()).limit(limit)
    async with session_factory() as session:
        result = await session.execute(stmt)
        return list(result.scalars().all())
