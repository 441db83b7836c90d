"""图表分析请求 ORM 模型：管线状态机的持久化实例。"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONType, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class AnalysisRequest(Base):
    """分析请求表。

    status 取值：pending / analyzing / enriching / generating / complete / failed。
    lease_token 为阶段执行期间的占用标记，提交或失败时清空。
    """

    __tablename__ = "analysis_requests"
    __table_args__ = (
        Index("ix_analysis_requests_user_created", "user_id", "created_at"),
        Index("ix_analysis_requests_status_updated", "status", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    image_path: Mapped[str] = mapped_column(String(512), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    analysis_result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    market_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    final_recommendation: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    failed_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)

    lease_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    credit_charged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
