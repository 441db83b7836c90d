"""应用日志配置模块。

- development: 可读文本格式
- production: 单行 JSON 结构化格式

管线日志通过 extra={"request_id": ...} 携带请求 ID，JSON 格式下原样输出。
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

# 标准 LogRecord 属性，其余属性视为 extra 字段
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "relativeCreated",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "filename", "module", "pathname", "thread", "threadName",
    "process", "processName", "levelname", "levelno", "message",
    "msecs", "taskName",
}


class JSONFormatter(logging.Formatter):
    """JSON 结构化日志格式化器，每条日志输出为单行 JSON 对象。"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["traceback"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        extra = {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_ATTRS and not k.startswith("_")
        }
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class UTCFormatter(logging.Formatter):
    """文本格式，时间统一为 UTC。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="seconds")


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """配置应用日志。

    - 控制台输出
    - 主日志文件：logs/app.log（轮转）
    - 错误日志文件：logs/app-error.log（仅 WARNING+，轮转）
    """
    from app.config import settings

    if log_dir is None:
        log_dir = Path(__file__).resolve().parent.parent / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_format = settings.log_format
    if not log_format:
        log_format = "json" if settings.app_env == "production" else "text"

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = UTCFormatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # 清除已有 handlers（避免重复添加）
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    main_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )
    main_handler.setFormatter(formatter)
    root_logger.addHandler(main_handler)

    error_handler = RotatingFileHandler(
        log_dir / "app-error.log",
        maxBytes=20 * 1024 * 1024,  # 20MB
        backupCount=10,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.WARNING)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    # 抑制第三方库噪音日志
    for lib in ("httpcore", "httpx", "asyncio", "sqlalchemy.engine", "apscheduler", "google_genai"):
        logging.getLogger(lib).setLevel(logging.WARNING)
