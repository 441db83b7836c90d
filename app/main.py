import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.analysis import router as analysis_router
from app.api.billing import router as billing_router
from app.api.calendar import router as calendar_router
from app.api.health import router as health_router
from app.api.signals import router as signals_router
from app.api.websocket import (
    router as websocket_router,
    set_redis_client,
    start_redis_listener,
    stop_redis_listener,
)
from app.config import settings
from app.database import async_session_factory, engine
from app.factory import build_dispatcher
from app.logger import setup_logging
from app.pipeline.dispatcher import PipelineTriggerListener
from app.realtime.redis_client import close_redis, init_redis
from app.scheduler.core import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

# 优雅关闭超时时间（秒）
_shutdown_timeout = 30


async def _start_trigger_listener(redis_client) -> PipelineTriggerListener | None:
    """Redis 可用且 AI 凭据已配置时，监听记录变更驱动管线。"""
    if redis_client is None or not settings.pipeline_trigger_listener_enabled:
        logger.info("[启动] 管线触发监听未启用")
        return None
    try:
        dispatcher = build_dispatcher(settings, async_session_factory, redis_client)
    except ValueError as e:
        logger.warning("[启动] 管线未配置，触发监听未启动：%s", e)
        return None
    listener = PipelineTriggerListener(redis_client, dispatcher)
    await listener.start()
    return listener


async def _graceful_shutdown(listener: PipelineTriggerListener | None) -> None:
    """优雅关闭逻辑：等待运行中的任务完成，超时后强制关闭。"""
    logger.info("[关闭] 停止接受新任务，等待运行中的任务完成...")

    if listener is not None:
        await listener.stop()
    await stop_redis_listener()

    try:
        await asyncio.wait_for(stop_scheduler(), timeout=_shutdown_timeout)
        logger.info("[关闭] 调度器已停止")
    except asyncio.TimeoutError:
        logger.warning("[关闭] 等待超时（%d 秒），强制关闭调度器", _shutdown_timeout)
        await stop_scheduler()

    logger.info("[关闭] 关闭数据库连接...")
    await close_redis()
    await engine.dispose()
    logger.info("[关闭] 完成")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)

    redis_client = await init_redis()
    set_redis_client(redis_client)
    await start_redis_listener()
    listener = await _start_trigger_listener(redis_client)
    await start_scheduler()

    yield

    await _graceful_shutdown(listener)


app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(health_router)
app.include_router(analysis_router)
app.include_router(signals_router)
app.include_router(calendar_router)
app.include_router(billing_router)
app.include_router(websocket_router)
