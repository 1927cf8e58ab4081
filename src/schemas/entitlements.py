"""Read models derived from the entitlement matrix."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, JsonValue

from src.schemas.plan_feature import PlanFeatureRead


class MatrixEntry(BaseModel):
    """One joined row of plan_features, plans and features."""

    plan_feature: PlanFeatureRead
    plan_name: str
    feature_name: str
    feature_key_name: str


class MatrixPlanEntry(BaseModel):
    plan_id: str
    plan_name: str
    is_enabled: bool
    value: Dict[str, JsonValue] = Field(default_factory=dict)


class EntitlementMatrixRow(BaseModel):
    """All plan entitlements of one feature."""

    feature_id: str
    feature_name: str
    feature_key_name: str
    plans: List[MatrixPlanEntry] = Field(default_factory=list)


class CategoryBreakdown(BaseModel):
    total: int = 0
    enabled: int = 0


class PlanEntitlementSummary(BaseModel):
    plan_id: str
    plan_name: str
    total_features: int
    enabled_features: int
    disabled_features: int
    features_with_values: int
    features_by_category: Dict[str, CategoryBreakdown] = Field(default_factory=dict)


class PlanCoverage(BaseModel):
    plan_id: str
    plan_name: str
    feature_count: int
    enabled_count: int
    coverage_percent: float


class FeatureAdoption(BaseModel):
    feature_id: str
    feature_name: str
    plan_count: int
    enabled_count: int
    adoption_percent: float


class EntitlementAnalytics(BaseModel):
    total_relationships: int
    enabled_relationships: int
    disabled_relationships: int
    relationships_with_values: int
    plan_coverage: List[PlanCoverage] = Field(default_factory=list)
    feature_adoption: List[FeatureAdoption] = Field(default_factory=list)


class MissingFeature(BaseModel):
    """A catalog feature that has no entitlement row on a given plan."""

    feature_id: str
    feature_name: str
    feature_key_name: str
    feature_category: Optional[str] = None
    is_active: bool
