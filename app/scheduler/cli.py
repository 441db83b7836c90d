"""运维 CLI：手动触发定时任务或推进单个分析请求。

用法：
    python -m app.scheduler.cli run-job scan-signals
    python -m app.scheduler.cli drive <request_id>
"""

import asyncio
import logging

import click

from app.config import settings
from app.logger import setup_logging

logger = logging.getLogger(__name__)

# 可用的单步任务映射
JOB_MAP = {
    "sweep": "sweep_stale_requests_job",
    "reconcile": "reconcile_credits_job",
    "scan-signals": "scan_signals_job",
    "refresh-calendar": "refresh_calendar_job",
    "describe-events": "describe_events_job",
    "update-actuals": "update_calendar_actuals_job",
}


@click.group()
def cli() -> None:
    """图表分析后端 - 运维 CLI"""
    setup_logging(settings.log_level)


@cli.command("run-job")
@click.argument("job_name")
def run_job(job_name: str) -> None:
    """手动触发单个定时任务。

    可用任务：sweep, reconcile, scan-signals, refresh-calendar, describe-events, update-actuals
    """
    if job_name not in JOB_MAP:
        available = ", ".join(JOB_MAP.keys())
        click.echo(f"错误：未知任务 '{job_name}'，可用任务：{available}", err=True)
        raise SystemExit(1)

    import app.scheduler.jobs as jobs_module

    func = getattr(jobs_module, JOB_MAP[job_name])
    click.echo(f"触发任务 {job_name}")
    asyncio.run(func())


async def _drive(request_id: str, max_steps: int) -> dict | None:
    from app.database import async_session_factory, engine
    from app.factory import build_dispatcher
    from app.realtime.publisher import serialize_request

    try:
        record = await build_dispatcher(settings, async_session_factory).drive(request_id, max_steps)
        return serialize_request(record) if record is not None else None
    finally:
        await engine.dispose()


@cli.command("drive")
@click.argument("request_id")
@click.option("--max-steps", default=5, show_default=True, help="最多推进的阶段数")
def drive(request_id: str, max_steps: int) -> None:
    """在本进程内把分析请求连续推进到终态。"""
    record = asyncio.run(_drive(request_id, max_steps))
    if record is None:
        click.echo(f"错误：请求 {request_id} 不存在", err=True)
        raise SystemExit(1)
    click.echo(f"请求 {request_id} 当前状态：{record['status']}")
    if record.get("error_message"):
        click.echo(f"错误信息：{record['error_message']}")


# 支持 python -m app.scheduler.cli
if __name__ == "__main__":
    cli()
