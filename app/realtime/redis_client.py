"""Redis 异步连接管理：实时推送与管线触发共用一个连接。"""

import logging
from typing import Optional

import redis.asyncio as aioredis

from app.config import Settings, settings

logger = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None


def redis_url(cfg: Settings) -> str:
    auth = f":{cfg.redis_password}@" if cfg.redis_password else ""
    return f"redis://{auth}{cfg.redis_host}:{cfg.redis_port}/{cfg.redis_db}"


async def init_redis(cfg: Settings = settings) -> Optional[aioredis.Redis]:
    """初始化 Redis 连接。

    Redis 不可用时降级为 None：请求仍可创建，但不会有实时推送，
    管线改由创建接口的后台任务、/hooks/trigger 回调或 CLI 推进。
    """
    global _redis_client
    try:
        client = aioredis.from_url(
            redis_url(cfg),
            decode_responses=False,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
        await client.ping()
        _redis_client = client
        logger.info("Redis 连接成功：%s:%s/%s", cfg.redis_host, cfg.redis_port, cfg.redis_db)
    except Exception as e:
        logger.warning("Redis 连接失败，实时推送降级：%s", e)
        _redis_client = None
    return _redis_client


def get_redis() -> Optional[aioredis.Redis]:
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis 连接已关闭")
