"""Version 1 API router."""
from fastapi import APIRouter

from src.api.v1.endpoints import features, plan_features, plans

api_router = APIRouter(prefix="/v1")

admin_router = APIRouter(prefix="/admin")
admin_router.include_router(plans.router)
admin_router.include_router(features.router)
admin_router.include_router(plan_features.router)

api_router.include_router(admin_router)
