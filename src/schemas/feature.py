"""Pydantic schemas for Feature resources"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

KEY_NAME_PATTERN = r"^[a-z0-9_-]+$"


class _FeatureFields(BaseModel):
    @field_validator("key_name", mode="before", check_fields=False)
    @classmethod
    def _strip_key_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("display_name", check_fields=False)
    @classmethod
    def _validate_display_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("display name must not be empty")
        return value

    @field_validator("description", "category", check_fields=False)
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class FeatureCreate(_FeatureFields):
    """Schema for creating a feature."""

    key_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=KEY_NAME_PATTERN,
        description="Unique lowercase identifier",
    )
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    is_boolean: bool = Field(
        default=True, description="True for on/off capabilities, False for limits"
    )
    default_value: Dict[str, JsonValue] = Field(default_factory=dict)
    validation_schema: Optional[Dict[str, JsonValue]] = Field(
        default=None,
        description="JSON schema constraining entitlement values for this feature",
    )
    is_active: bool = True


class FeatureUpdate(_FeatureFields):
    """Partial update; only explicitly supplied fields are applied."""

    key_name: Optional[str] = Field(
        default=None, min_length=1, max_length=100, pattern=KEY_NAME_PATTERN
    )
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=100)
    is_boolean: Optional[bool] = None
    default_value: Optional[Dict[str, JsonValue]] = None
    validation_schema: Optional[Dict[str, JsonValue]] = None
    is_active: Optional[bool] = None


class FeatureRead(BaseModel):
    """Schema returned when reading a feature."""

    feature_id: str
    key_name: str
    display_name: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_boolean: bool
    default_value: Dict[str, JsonValue] = Field(default_factory=dict)
    validation_schema: Optional[Dict[str, JsonValue]] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeleteOutcome(str, Enum):
    """What a catalog delete actually did."""

    DELETED = "deleted"
    DEACTIVATED = "deactivated"


class FeatureUsageCount(BaseModel):
    feature_id: str
    feature_name: str
    plan_count: int


class FeatureStats(BaseModel):
    total_features: int
    active_features: int
    inactive_features: int
    category_counts: Dict[str, int]
    features_without_plans: int
    most_used_features: List[FeatureUsageCount]
