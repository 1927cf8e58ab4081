"""Database models package exports."""

from src.db.models.feature import Feature
from src.db.models.plan import Plan
from src.db.models.plan_feature import PlanFeature

__all__ = [
    "Feature",
    "Plan",
    "PlanFeature",
]
