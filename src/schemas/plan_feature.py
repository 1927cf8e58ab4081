"""Pydantic schemas for plan/feature entitlement rows"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class PlanFeatureCreate(BaseModel):
    """A fully specified entitlement row ready for insertion."""

    plan_id: str = Field(..., min_length=1)
    feature_id: str = Field(..., min_length=1)
    is_enabled: bool
    value: Dict[str, JsonValue] = Field(default_factory=dict)


class PlanFeatureUpdate(BaseModel):
    """Partial update of an entitlement row."""

    is_enabled: Optional[bool] = None
    value: Optional[Dict[str, JsonValue]] = None


class PlanFeatureEntry(BaseModel):
    """Entitlement for a plan implied by context (replace / copy payloads)."""

    feature_id: str = Field(..., min_length=1)
    is_enabled: bool
    value: Optional[Dict[str, JsonValue]] = None


class BulkUpdateItem(BaseModel):
    plan_feature_id: str = Field(..., min_length=1)
    is_enabled: Optional[bool] = None
    value: Optional[Dict[str, JsonValue]] = None

    def changes(self) -> PlanFeatureUpdate:
        return PlanFeatureUpdate.model_validate(
            self.model_dump(exclude={"plan_feature_id"}, exclude_unset=True)
        )


class PlanFeatureRead(BaseModel):
    """Schema returned when reading an entitlement row."""

    plan_feature_id: str
    plan_id: str
    feature_id: str
    is_enabled: bool
    value: Dict[str, JsonValue] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def has_value(self) -> bool:
        return bool(self.value)
