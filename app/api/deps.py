"""路由依赖：会话工厂、Redis 与按配置装配的服务。

服务按请求构造，测试中通过 app.dependency_overrides 替换。
"""

from typing import Any

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.billing.webhook import BillingWebhookHandler
from app.calendar.event_analysis import EventAnalysisService
from app.config import settings
from app.credits.ledger import CreditLedger
from app.database import async_session_factory
from app.factory import build_billing_handler, build_dispatcher, build_event_analysis_service
from app.pipeline.dispatcher import PipelineDispatcher
from app.pipeline.store import SqlRequestStore
from app.realtime.publisher import RecordPublisher
from app.realtime.redis_client import get_redis


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_redis_client() -> Any:
    return get_redis()


def get_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SqlRequestStore:
    return SqlRequestStore(session_factory)


def get_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CreditLedger:
    return CreditLedger(session_factory)


def get_publisher(redis_client: Any = Depends(get_redis_client)) -> RecordPublisher:
    return RecordPublisher(redis_client)


def get_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis_client: Any = Depends(get_redis_client),
) -> PipelineDispatcher:
    try:
        return build_dispatcher(settings, session_factory, redis_client)
    except ValueError as exc:
        raise HTTPException(status_code=503, detail="El servicio de análisis no está configurado.") from exc


def get_event_analysis_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> EventAnalysisService:
    try:
        return build_event_analysis_service(settings, session_factory)
    except ValueError as exc:
        raise HTTPException(status_code=503, detail="El servicio de IA no está configurado.") from exc


def get_billing_handler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BillingWebhookHandler:
    return build_billing_handler(settings, session_factory)
