"""Pydantic schemas for Plan resources"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    field_validator,
)


class BillingInterval(str, Enum):
    """Recurring billing frequencies; ``None`` on a plan means one-time."""

    MONTHLY = "monthly"
    YEARLY = "yearly"
    WEEKLY = "weekly"
    DAILY = "daily"


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _normalize_optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class _PlanFields(BaseModel):
    @field_validator("name", check_fields=False)
    @classmethod
    def _validate_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value)

    @field_validator("slug", "currency", mode="before", check_fields=False)
    @classmethod
    def _normalize_codes(cls, value, info):
        if not isinstance(value, str):
            return value
        value = value.strip()
        return value.lower() if info.field_name == "slug" else value.upper()

    @field_validator("description", check_fields=False)
    @classmethod
    def _validate_description(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_optional_text(value)


class PlanCreate(_PlanFields):
    """Schema for creating a plan."""

    name: str = Field(..., min_length=1, max_length=100, description="Unique plan name")
    slug: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9-]+$",
        description="Unique URL-safe identifier",
    )
    description: Optional[str] = Field(default=None, max_length=500)
    price: Decimal = Field(default=Decimal("0"), ge=0, le=Decimal("999999.99"))
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    billing_interval: Optional[BillingInterval] = Field(
        default=None, description="Recurring interval, omitted for one-time plans"
    )
    is_active: bool = True
    sort_order: int = Field(default=0, ge=0, le=999)
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)


class PlanUpdate(_PlanFields):
    """Partial update; only explicitly supplied fields are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    slug: Optional[str] = Field(
        default=None, min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$"
    )
    description: Optional[str] = Field(default=None, max_length=500)
    price: Optional[Decimal] = Field(default=None, ge=0, le=Decimal("999999.99"))
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Z]{3}$")
    billing_interval: Optional[BillingInterval] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = Field(default=None, ge=0, le=999)
    metadata: Optional[Dict[str, JsonValue]] = None


class PlanRead(BaseModel):
    """Schema returned when reading a plan."""

    plan_id: str
    name: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    currency: str
    billing_interval: Optional[BillingInterval] = None
    is_active: bool
    sort_order: int
    metadata: Dict[str, JsonValue] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @property
    def is_free(self) -> bool:
        return self.price == 0

    @property
    def is_recurring(self) -> bool:
        return self.billing_interval is not None


class PlanOrder(BaseModel):
    plan_id: str
    sort_order: int = Field(..., ge=0, le=999)


class PlanStatistics(BaseModel):
    total: int
    active: int
    inactive: int
