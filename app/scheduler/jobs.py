"""定时任务定义：请求超时清理、额度对账、信号扫描、经济日历维护。

每个任务独立构造所需服务，异常在任务内记录，不影响调度器其他任务。
"""

import logging
import time
import traceback

from app.config import settings
from app.credits.ledger import CreditLedger
from app.database import async_session_factory
from app.factory import build_calendar_refresher, build_signal_scanner, build_sweeper
from app.realtime.redis_client import get_redis

logger = logging.getLogger(__name__)


async def sweep_stale_requests_job() -> None:
    """将长时间未到终态的分析请求置为 failed。"""
    try:
        count = await build_sweeper(settings, async_session_factory, get_redis()).sweep()
    except Exception:
        logger.error("[超时清理] 失败\n%s", traceback.format_exc())
        return
    if count:
        logger.info("[超时清理] 置为失败 %d 条", count)


async def reconcile_credits_job() -> None:
    """补扣已完成但未扣费的请求。"""
    try:
        charged = await CreditLedger(async_session_factory).reconcile()
    except Exception:
        logger.error("[额度对账] 失败\n%s", traceback.format_exc())
        return
    logger.info("[额度对账] 补扣 %d 条", charged)


async def scan_signals_job() -> None:
    start = time.monotonic()
    logger.info("[信号扫描] 开始")
    try:
        signals = await build_signal_scanner(settings, async_session_factory, get_redis()).scan()
    except Exception:
        logger.error("[信号扫描] 失败，耗时 %.1fs\n%s", time.monotonic() - start, traceback.format_exc())
        return
    logger.info("[信号扫描] 结束：新信号 %d 条", len(signals))


async def refresh_calendar_job() -> None:
    """同步未来日历后补全缺失的事件描述。"""
    try:
        await build_calendar_refresher(settings, async_session_factory).refresh()
    except Exception:
        logger.error("[经济日历] 同步失败\n%s", traceback.format_exc())
        return
    await describe_events_job()


async def describe_events_job() -> None:
    try:
        await build_calendar_refresher(settings, async_session_factory).enrich_descriptions()
    except Exception:
        logger.error("[事件描述] 失败\n%s", traceback.format_exc())


async def update_calendar_actuals_job() -> None:
    try:
        await build_calendar_refresher(settings, async_session_factory).update_actuals()
    except Exception:
        logger.error("[经济日历] 更新 actual 失败\n%s", traceback.format_exc())
