"""Feature catalog model definition."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, JSONDocument, new_uuid, utcnow


class Feature(Base):
    """A capability that plans can switch on or parameterize."""

    __tablename__ = "features"

    feature_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=new_uuid
    )
    key_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    is_boolean: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_value: Mapped[Dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict
    )
    validation_schema: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    plan_features: Mapped[List["PlanFeature"]] = relationship(
        "PlanFeature", back_populates="feature", passive_deletes=True
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Feature {self.feature_id} key={self.key_name}>"
