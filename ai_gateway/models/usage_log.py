from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ai_gateway.db.base import Base


class AiUsageLog(Base):
    """One generation attempt. Append-only: rows are never updated or deleted."""

    __tablename__ = "ai_usage_logs"
    __table_args__ = (Index("ix_ai_usage_logs_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    service: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    phase: Mapped[str | None] = mapped_column(String(20), nullable=True)
    feature_type: Mapped[str | None] = mapped_column(String(20), nullable=True)  # profile | business | quiz
    model_used: Mapped[str] = mapped_column(String(100), nullable=False)  # gpt-5-mini, gemini-2.5-flash, etc.
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    estimated_cost_jpy: Mapped[float] = mapped_column(Float, default=0.0)
    outcome: Mapped[str] = mapped_column(String(20), default="success")  # success | fallback | failed
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
