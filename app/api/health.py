"""深度健康检查端点。

检测数据库、Redis 以及外部服务凭据配置，返回各组件状态和整体健康状态。
"""

import logging
import time
from enum import Enum
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from app.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentStatus(BaseModel):
    status: str  # up / down / configured / not_configured
    latency_ms: float | None = None
    error: str | None = None


class HealthCheckResponse(BaseModel):
    status: HealthStatus
    components: dict[str, ComponentStatus]


async def _check_database() -> ComponentStatus:
    from app.database import engine

    start = time.monotonic()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return ComponentStatus(status="up", latency_ms=round((time.monotonic() - start) * 1000, 1))
    except Exception as e:
        return ComponentStatus(
            status="down", latency_ms=round((time.monotonic() - start) * 1000, 1), error=str(e)
        )


async def _check_redis() -> ComponentStatus:
    from app.realtime.redis_client import get_redis

    redis = get_redis()
    if redis is None:
        return ComponentStatus(status="down", error="Redis 未初始化")

    start = time.monotonic()
    try:
        await redis.ping()
        return ComponentStatus(status="up", latency_ms=round((time.monotonic() - start) * 1000, 1))
    except Exception as e:
        return ComponentStatus(
            status="down", latency_ms=round((time.monotonic() - start) * 1000, 1), error=str(e)
        )


def _check_configured(value: str, env_name: str) -> ComponentStatus:
    if value:
        return ComponentStatus(status="configured")
    return ComponentStatus(status="not_configured", error=f"{env_name} 未配置")


@router.get("/health", response_model=HealthCheckResponse)
async def health_check() -> Any:
    """状态定义：

    - healthy: 所有组件正常
    - degraded: Redis 不可用或外部服务凭据缺失（管线可能无法推进）
    - unhealthy: 数据库不可用，返回 503
    """
    db_status = await _check_database()
    components = {
        "database": db_status,
        "redis": await _check_redis(),
        "gemini": (
            ComponentStatus(status="configured") if settings.gemini_use_adc
            else _check_configured(settings.gemini_api_key, "GEMINI_API_KEY")
        ),
        "alpha_vantage": _check_configured(settings.alpha_vantage_api_key, "ALPHA_VANTAGE_API_KEY"),
        "fmp": _check_configured(settings.fmp_api_key, "FMP_API_KEY"),
        "storage": _check_configured(settings.storage_url, "STORAGE_URL"),
    }

    if db_status.status != "up":
        overall = HealthStatus.UNHEALTHY
    elif any(c.status not in ("up", "configured") for c in components.values()):
        overall = HealthStatus.DEGRADED
    else:
        overall = HealthStatus.HEALTHY

    response = HealthCheckResponse(status=overall, components=components)
    if overall == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=response.model_dump())
    return response
