"""Repository layer package."""

from src.repositories.feature_repo import FeatureRepo
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.repositories.plan_repo import PlanRepo

__all__ = [
    "FeatureRepo",
    "PlanFeatureRepo",
    "PlanRepo",
]
