"""经济日历 API。"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.clients.gemini import GeminiError
from app.api.deps import get_event_analysis_service, get_session_factory
from app.calendar.event_analysis import EventAnalysisService
from app.calendar.queries import list_events
from app.exceptions import DependencyError, StageValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/calendar", tags=["calendar"])


class EconomicEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_date: datetime
    event_name: str
    country: str | None = None
    currency: str | None = None
    impact: str | None = None
    actual: str | None = None
    estimate: str | None = None
    previous: str | None = None
    event_description: str | None = None


class EventAnalysisRequest(BaseModel):
    event_name: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=8)
    event_date: date
    estimate: str | None = None
    previous: str | None = None
    user_id: str | None = None


@router.get("", response_model=list[EconomicEventResponse])
async def get_calendar(
    start: date | None = Query(None, description="开始日期（默认今天）"),
    end: date | None = Query(None, description="结束日期（默认开始后 7 天）"),
    currency: str | None = Query(None),
    impact: str | None = Query(None, description="High / Medium / Low"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Any:
    start_day = start or datetime.now(timezone.utc).date()
    end_day = end or start_day + timedelta(days=7)
    if end_day < start_day:
        raise HTTPException(status_code=400, detail="La fecha final es anterior a la inicial.")
    async with session_factory() as session:
        return await list_events(
            session,
            datetime.combine(start_day, time.min),
            datetime.combine(end_day, time.max),
            currency=currency,
            impact=impact,
        )


@router.post("/analysis")
async def analyze_event(
    req: EventAnalysisRequest,
    service: EventAnalysisService = Depends(get_event_analysis_service),
) -> dict[str, Any]:
    """单个事件的情景分析，同一 (事件, 货币, 日期) 只生成一次。"""
    try:
        return await service.get_or_create(
            req.event_name,
            req.currency.upper(),
            req.event_date,
            estimate=req.estimate,
            previous=req.previous,
            user_id=req.user_id,
        )
    except (GeminiError, DependencyError, StageValidationError) as exc:
        logger.warning("[事件分析] %s 生成失败：%s", req.event_name, exc)
        raise HTTPException(status_code=502, detail="No se pudo generar el análisis del evento.")
