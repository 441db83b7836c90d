"""组件装配：按配置构造管线、扫描器、日历任务等服务对象。

只在入口（FastAPI lifespan、定时任务、CLI）调用，业务代码通过构造参数接收依赖。
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.clients.gemini import GeminiClient, build_gemini_client
from app.billing.webhook import BillingWebhookHandler, HmacSignatureVerifier
from app.calendar.event_analysis import EventAnalysisService
from app.calendar.refresh import CalendarRefresher
from app.config import Settings
from app.credits.ledger import CreditLedger
from app.market.alpha_vantage import AlphaVantageClient
from app.market.fmp import FmpClient
from app.pipeline.dispatcher import PipelineDispatcher
from app.pipeline.stages.enrichment import EnrichmentStage
from app.pipeline.stages.extraction import ExtractionStage
from app.pipeline.stages.generation import GenerationStage
from app.pipeline.store import SqlRequestStore
from app.pipeline.sweeper import StaleRequestSweeper
from app.realtime.publisher import RecordPublisher
from app.signals.scanner import SignalScanner
from app.storage.client import HttpObjectStorage


def build_fmp(settings: Settings) -> FmpClient:
    return FmpClient(
        api_key=settings.fmp_api_key,
        base_url=settings.fmp_base_url,
        timeout=settings.fmp_timeout,
    )


def build_flash_client(settings: Settings) -> GeminiClient:
    return build_gemini_client(settings, settings.gemini_model_id)


def build_dispatcher(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Any = None,
) -> PipelineDispatcher:
    """三个阶段 + 调度器。"""
    store = SqlRequestStore(session_factory)
    publisher = RecordPublisher(redis_client)
    vision = build_gemini_client(settings, settings.gemini_vision_model_id)
    storage = HttpObjectStorage(
        base_url=settings.storage_url,
        api_key=settings.storage_api_key,
        bucket=settings.storage_bucket,
        timeout=settings.storage_timeout,
    )
    market = AlphaVantageClient(
        api_key=settings.alpha_vantage_api_key,
        base_url=settings.alpha_vantage_base_url,
        timeout=settings.alpha_vantage_timeout,
    )
    stages = [
        ExtractionStage(settings, store, storage, vision, publisher),
        EnrichmentStage(settings, store, market, publisher),
        GenerationStage(settings, store, vision, CreditLedger(session_factory), publisher),
    ]
    return PipelineDispatcher(store, stages)


def build_sweeper(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Any = None,
) -> StaleRequestSweeper:
    return StaleRequestSweeper(
        SqlRequestStore(session_factory),
        settings.stale_request_minutes,
        RecordPublisher(redis_client),
    )


def build_signal_scanner(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Any = None,
) -> SignalScanner:
    return SignalScanner(
        settings,
        build_fmp(settings),
        build_flash_client(settings),
        session_factory,
        RecordPublisher(redis_client),
    )


def build_calendar_refresher(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> CalendarRefresher:
    return CalendarRefresher(
        settings, build_fmp(settings), build_flash_client(settings), session_factory
    )


def build_event_analysis_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> EventAnalysisService:
    return EventAnalysisService(build_fmp(settings), build_flash_client(settings), session_factory)


def build_billing_handler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> BillingWebhookHandler:
    return BillingWebhookHandler(
        CreditLedger(session_factory),
        HmacSignatureVerifier(settings.billing_webhook_secret),
    )
