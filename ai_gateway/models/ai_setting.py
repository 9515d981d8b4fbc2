from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ai_gateway.db.base import Base


class AiModelOverride(Base):
    """Admin-configured primary/backup model for one (service, plan tier, phase)."""

    __tablename__ = "ai_model_overrides"
    __table_args__ = (UniqueConstraint("service", "plan_tier", "phase", name="uq_ai_model_override"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_tier: Mapped[str] = mapped_column(String(20), nullable=False)  # none | lite | standard | pro | business | enterprise
    phase: Mapped[str] = mapped_column(String(20), nullable=False)  # outline | writing
    primary_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    backup_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    selected_preset: Mapped[str] = mapped_column(String(20), default="custom")  # presetA | presetB | custom
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )


class AiFeatureLimit(Base):
    """Admin-configured daily per-feature limits for one (service, plan tier). -1 = unlimited."""

    __tablename__ = "ai_feature_limits"
    __table_args__ = (UniqueConstraint("service", "plan_tier", name="uq_ai_feature_limit"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    profile: Mapped[int] = mapped_column(Integer, nullable=False)
    business: Mapped[int] = mapped_column(Integer, nullable=False)
    quiz: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = no combined cap
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )
