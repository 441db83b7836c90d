"""ORM 声明基类与通用列类型。"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

# PostgreSQL 上使用 JSONB，其他方言（测试用 SQLite）退化为通用 JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """当前 UTC 时间（naive），与数据库中存储的时间格式保持一致。"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dialect_insert(session: AsyncSession, table: Any) -> Any:
    """按会话方言返回支持 ON CONFLICT 的 insert 构造（PostgreSQL / SQLite）。"""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(table)
    return pg_insert(table)


class Base(DeclarativeBase):
    pass
