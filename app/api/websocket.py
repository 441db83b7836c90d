"""WebSocket 实时推送端点。

- /ws/analysis/{request_id}: 单个分析请求的状态变更
- /ws/signals: 新交易信号

单个 Redis 监听任务订阅全部频道，按频道转发给对应连接。
"""

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.database import async_session_factory
from app.pipeline.store import SqlRequestStore
from app.realtime.publisher import ANALYSIS_CHANNEL_PREFIX, SIGNALS_CHANNEL, serialize_request

logger = logging.getLogger(__name__)
router = APIRouter()

# 全局连接管理：ws -> 订阅的频道
_connections: dict[WebSocket, str] = {}
_redis_listener_task: asyncio.Task | None = None
_redis_client: Any = None

_HEARTBEAT_SECONDS = 30


def set_redis_client(client) -> None:
    """设置 Redis 客户端（由 lifespan 调用）。"""
    global _redis_client
    _redis_client = client


async def broadcast(channel: str, data: str) -> int:
    """推送给订阅了该频道的所有连接，返回送达数。"""
    delivered = 0
    for ws, subscribed in list(_connections.items()):
        if subscribed != channel:
            continue
        try:
            await ws.send_text(data)
            delivered += 1
        except Exception:
            # 连接已断开，清理
            _connections.pop(ws, None)
    return delivered


async def _redis_listener() -> None:
    """监听 Redis Pub/Sub，转发给对应 WebSocket 客户端。"""
    if not _redis_client:
        return
    pubsub = _redis_client.pubsub()
    await pubsub.psubscribe(f"{ANALYSIS_CHANNEL_PREFIX}*")
    await pubsub.subscribe(SIGNALS_CHANNEL)
    try:
        async for message in pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            channel = message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode()
            await broadcast(channel, data)
    except asyncio.CancelledError:
        pass
    finally:
        await pubsub.punsubscribe()
        await pubsub.unsubscribe()
        await pubsub.close()


async def start_redis_listener() -> None:
    """启动 Redis Pub/Sub 监听任务。"""
    global _redis_listener_task
    if _redis_client and not _redis_listener_task:
        _redis_listener_task = asyncio.create_task(_redis_listener())


async def stop_redis_listener() -> None:
    """停止 Redis Pub/Sub 监听任务。"""
    global _redis_listener_task
    if _redis_listener_task:
        _redis_listener_task.cancel()
        try:
            await _redis_listener_task
        except asyncio.CancelledError:
            pass
        _redis_listener_task = None


async def _serve(ws: WebSocket, channel: str) -> None:
    """保持连接直到客户端断开，空闲时发送心跳。客户端消息被忽略。"""
    _connections[ws] = channel
    logger.info("[WebSocket] 订阅 %s，当前连接数: %d", channel, len(_connections))
    try:
        while True:
            try:
                await asyncio.wait_for(ws.receive_text(), timeout=_HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                try:
                    await ws.send_json({"type": "ping"})
                except Exception:
                    break
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.warning("[WebSocket] 连接异常", exc_info=True)
    finally:
        _connections.pop(ws, None)
        logger.info("[WebSocket] 客户端断开，当前连接数: %d", len(_connections))


@router.websocket("/ws/analysis/{request_id}")
async def websocket_analysis(ws: WebSocket, request_id: str) -> None:
    """连接后先推送当前快照，之后推送每次状态变更。"""
    await ws.accept()
    record = await SqlRequestStore(async_session_factory).fetch(request_id)
    if record is None:
        await ws.send_json({"type": "error", "message": "Análisis no encontrado."})
        await ws.close(code=4404)
        return
    await ws.send_text(json.dumps(serialize_request(record), ensure_ascii=False, default=str))
    await _serve(ws, f"{ANALYSIS_CHANNEL_PREFIX}{request_id}")


@router.websocket("/ws/signals")
async def websocket_signals(ws: WebSocket) -> None:
    await ws.accept()
    await _serve(ws, SIGNALS_CHANNEL)


def get_connection_count() -> int:
    """获取当前 WebSocket 连接数。"""
    return len(_connections)
