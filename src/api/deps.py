"""FastAPI dependencies wiring repositories into services."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.session import get_session_factory
from src.repositories.feature_repo import FeatureRepo
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.repositories.plan_repo import PlanRepo
from src.services.feature_service import FeatureService
from src.services.plan_feature_service import PlanFeatureService
from src.services.plan_service import PlanService


def get_plan_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PlanService:
    return PlanService(PlanRepo(session_factory), PlanFeatureRepo(session_factory))


def get_feature_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> FeatureService:
    return FeatureService(FeatureRepo(session_factory), PlanFeatureRepo(session_factory))


def get_plan_feature_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PlanFeatureService:
    return PlanFeatureService(
        PlanFeatureRepo(session_factory),
        PlanRepo(session_factory),
        FeatureRepo(session_factory),
    )
