"""Redis Pub/Sub 发布器：记录变更广播。

同一条消息既推送给 WebSocket 订阅者，也被管线触发监听器消费以调度下一阶段。
Redis 不可用时静默降级，不影响已提交的数据库写入。
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

ANALYSIS_CHANNEL_PREFIX = "analysis:"
SIGNALS_CHANNEL = "signals:feed"


def serialize_request(record: Any) -> dict[str, Any]:
    """AnalysisRequest → 对外可见的字典（不含租约等内部字段）。"""
    return {
        "id": record.id,
        "user_id": record.user_id,
        "image_path": record.image_path,
        "notes": record.notes,
        "status": record.status,
        "analysis_result": record.analysis_result,
        "market_data": record.market_data,
        "final_recommendation": record.final_recommendation,
        "error_message": record.error_message,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def serialize_signal(signal: Any) -> dict[str, Any]:
    return {
        "id": signal.id,
        "asset": signal.asset,
        "direction": signal.direction,
        "entry_price": signal.entry_price,
        "stop_loss": signal.stop_loss,
        "take_profit": signal.take_profit,
        "justification": signal.justification,
        "technical_pattern": signal.technical_pattern,
        "created_at": signal.created_at,
    }


class RecordPublisher:
    """将记录变更发布到 Redis channel。"""

    def __init__(self, redis_client):
        self._redis = redis_client

    async def _publish(self, channel: str, data: dict) -> None:
        if not self._redis:
            return
        try:
            payload = json.dumps(data, ensure_ascii=False, default=str)
            await self._redis.publish(channel, payload)
        except Exception:
            logger.warning("[RecordPublisher] 发布失败: %s", channel, exc_info=True)

    async def publish_request(self, record: Any) -> None:
        """发布分析请求变更到 analysis:{id}。"""
        await self._publish(f"{ANALYSIS_CHANNEL_PREFIX}{record.id}", serialize_request(record))

    async def publish_signal(self, signal: Any) -> None:
        """发布新交易信号到 signals:feed。"""
        await self._publish(SIGNALS_CHANNEL, serialize_signal(signal))
