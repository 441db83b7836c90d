"""图表分析请求 HTTP API。

- POST   /api/v1/analysis               新建请求（需有剩余额度）
- GET    /api/v1/analysis?user_id=...    用户的请求列表
- GET    /api/v1/analysis/{id}           单个请求
- POST   /api/v1/analysis/hooks/trigger  外部触发（数据库行变更 / 存储通知）
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import (
    get_dispatcher,
    get_ledger,
    get_publisher,
    get_redis_client,
    get_session_factory,
    get_store,
)
from app.config import settings
from app.credits.ledger import CreditLedger
from app.exceptions import ProfileNotFoundError
from app.factory import build_dispatcher
from app.pipeline.dispatcher import PipelineDispatcher, extract_request_id
from app.pipeline.store import SqlRequestStore
from app.realtime.publisher import RecordPublisher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])


# ---------------------------------------------------------------------------
# Pydantic 请求/响应模型
# ---------------------------------------------------------------------------

class AnalysisCreateRequest(BaseModel):
    """新建分析请求。"""

    user_id: str = Field(..., min_length=1)
    image_path: str = Field(..., min_length=1, description="对象存储中的图表路径")
    notes: str | None = Field(None, max_length=2000, description="用户备注")


class AnalysisResponse(BaseModel):
    """分析请求记录（不含内部租约字段）。"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    image_path: str
    notes: str | None = None
    status: str
    analysis_result: dict | None = None
    market_data: dict | None = None
    final_recommendation: dict | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TriggerResponse(BaseModel):
    request_id: str
    outcome: str


async def _drive_in_background(
    session_factory: async_sessionmaker[AsyncSession],
    request_id: str,
) -> None:
    """无 Redis 时在本进程内推进管线。"""
    try:
        await build_dispatcher(settings, session_factory).drive(request_id)
    except Exception:
        logger.exception("[分析请求] 请求 %s 后台推进失败", request_id)


# ---------------------------------------------------------------------------
# 端点
# ---------------------------------------------------------------------------

@router.post("", response_model=AnalysisResponse, status_code=201)
async def create_analysis(
    req: AnalysisCreateRequest,
    background_tasks: BackgroundTasks,
    store: SqlRequestStore = Depends(get_store),
    ledger: CreditLedger = Depends(get_ledger),
    publisher: RecordPublisher = Depends(get_publisher),
    redis_client: Any = Depends(get_redis_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Any:
    """新建分析请求，余额为 0 时返回 402。扣费在建议生成成功后进行。"""
    try:
        balance = await ledger.balance(req.user_id)
    except ProfileNotFoundError:
        raise HTTPException(status_code=404, detail="Usuario no encontrado.")
    if balance <= 0:
        raise HTTPException(status_code=402, detail="No tienes créditos suficientes para un nuevo análisis.")

    record = await store.create(req.user_id, req.image_path, req.notes)
    await publisher.publish_request(record)
    if redis_client is None:
        background_tasks.add_task(_drive_in_background, session_factory, record.id)
    return record


@router.get("", response_model=list[AnalysisResponse])
async def list_analyses(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    store: SqlRequestStore = Depends(get_store),
) -> Any:
    return await store.list_for_user(user_id, limit=limit)


@router.get("/{request_id}", response_model=AnalysisResponse)
async def get_analysis(
    request_id: str,
    store: SqlRequestStore = Depends(get_store),
) -> Any:
    record = await store.fetch(request_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Análisis no encontrado.")
    return record


@router.post("/hooks/trigger", response_model=TriggerResponse)
async def trigger_analysis(
    payload: Any = Body(None),
    dispatcher: PipelineDispatcher = Depends(get_dispatcher),
) -> TriggerResponse:
    """外部触发入口，载荷为 {"record": {"id": ...}} 或裸记录。重复触发是安全的。"""
    request_id = extract_request_id(payload)
    if request_id is None:
        logger.warning("[分析请求] 触发载荷缺少请求 id")
        raise HTTPException(status_code=400, detail="Falta el identificador de la solicitud.")
    outcome = await dispatcher.dispatch(request_id)
    return TriggerResponse(request_id=request_id, outcome=outcome.value)
