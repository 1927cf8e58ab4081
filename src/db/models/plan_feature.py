"""Plan/feature entitlement junction model."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, JSONDocument, new_uuid, utcnow

PLAN_FEATURE_UNIQUE_CONSTRAINT = "uq_plan_features_plan_feature"


class PlanFeature(Base):
    """States whether, and with which value, a feature is granted to a plan."""

    __tablename__ = "plan_features"

    plan_feature_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=new_uuid
    )
    plan_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plans.plan_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("features.feature_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    value: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    plan: Mapped["Plan"] = relationship("Plan", back_populates="plan_features")
    feature: Mapped["Feature"] = relationship("Feature", back_populates="plan_features")

    __table_args__ = (
        UniqueConstraint("plan_id", "feature_id", name=PLAN_FEATURE_UNIQUE_CONSTRAINT),
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<PlanFeature {self.plan_feature_id} plan={self.plan_id} "
            f"feature={self.feature_id} enabled={self.is_enabled}>"
        )
