"""调度器核心：创建、配置、启动和停止 APScheduler。"""

import logging
from collections.abc import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import Settings, settings

logger = logging.getLogger(__name__)

# 模块级调度器实例
_scheduler: AsyncIOScheduler | None = None


def create_scheduler(cfg: Settings = settings) -> AsyncIOScheduler:
    """创建并配置 APScheduler 实例。

    配置：
    - MemoryJobStore（内存存储，重启后自动重新注册）
    - coalesce=True（错过多次触发时合并为一次）
    - max_instances=1（同一任务最多同时运行 1 个）
    - misfire_grace_time=300（错过触发后 5 分钟内仍可执行）
    """
    return AsyncIOScheduler(
        timezone=cfg.scheduler_timezone,
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
    )


def cron_trigger(expr: str, timezone: str) -> CronTrigger:
    """五段式 cron 表达式 → CronTrigger。"""
    parts = expr.split()
    if len(parts) != 5:
        raise ValueError(f"invalid cron expression: {expr!r}")
    return CronTrigger(
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone,
    )


def _add_cron_job(
    scheduler: AsyncIOScheduler,
    func: Callable[[], Awaitable[None]],
    cron: str,
    job_id: str,
    name: str,
    timezone: str,
) -> None:
    scheduler.add_job(
        func=func,
        trigger=cron_trigger(cron, timezone),
        id=job_id,
        name=name,
        replace_existing=True,
    )
    logger.info("注册任务：%s [%s]", name, cron)


def register_jobs(scheduler: AsyncIOScheduler, cfg: Settings = settings) -> None:
    """注册所有 cron 任务到调度器。"""
    from app.scheduler.jobs import (
        describe_events_job,
        reconcile_credits_job,
        refresh_calendar_job,
        scan_signals_job,
        sweep_stale_requests_job,
        update_calendar_actuals_job,
    )

    tz = cfg.scheduler_timezone

    _add_cron_job(
        scheduler, sweep_stale_requests_job, cfg.scheduler_sweeper_cron,
        "stale_request_sweep", "分析请求超时清理", tz,
    )

    if cfg.credit_reconcile_enabled:
        _add_cron_job(
            scheduler, reconcile_credits_job, cfg.scheduler_credit_reconcile_cron,
            "credit_reconcile", "额度对账", tz,
        )
    else:
        logger.info("额度对账已禁用（CREDIT_RECONCILE_ENABLED=false）")

    if cfg.signal_scan_enabled:
        _add_cron_job(
            scheduler, scan_signals_job, cfg.scheduler_signal_scan_cron,
            "signal_scan", "信号扫描", tz,
        )
    else:
        logger.info("信号扫描已禁用（SIGNAL_SCAN_ENABLED=false）")

    _add_cron_job(
        scheduler, refresh_calendar_job, cfg.scheduler_calendar_refresh_cron,
        "calendar_refresh", "经济日历同步", tz,
    )
    _add_cron_job(
        scheduler, update_calendar_actuals_job, cfg.scheduler_calendar_actuals_cron,
        "calendar_actuals", "经济日历公布值更新", tz,
    )
    _add_cron_job(
        scheduler, describe_events_job, cfg.scheduler_calendar_describe_cron,
        "calendar_describe", "经济事件描述补全", tz,
    )


async def start_scheduler() -> None:
    """启动调度器，注册所有任务。供 FastAPI lifespan 调用。"""
    global _scheduler
    _scheduler = create_scheduler()
    register_jobs(_scheduler)
    _scheduler.start()
    logger.info("调度器已启动")


async def stop_scheduler() -> None:
    """优雅停止调度器，等待运行中的任务完成。"""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=True)
        logger.info("调度器已停止")
        _scheduler = None
