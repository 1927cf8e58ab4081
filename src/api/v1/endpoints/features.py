"""Admin endpoints for the feature catalog."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.api.deps import get_feature_service
from src.auth.jwt import require_admin
from src.schemas.feature import FeatureCreate, FeatureRead, FeatureStats, FeatureUpdate
from src.schemas.plan_feature import PlanFeatureRead
from src.services.feature_service import FeatureService


router = APIRouter(
    prefix="/features", tags=["features"], dependencies=[Depends(require_admin)]
)


class DuplicateFeatureRequest(BaseModel):
    new_key_name: str
    new_display_name: Optional[str] = None


class CategoryUpdateRequest(BaseModel):
    feature_ids: List[str] = Field(..., min_length=1)
    category: Optional[str] = None


@router.get("")
async def list_features(
    search: Optional[str] = None,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_boolean: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: str = "display_name",
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    service: FeatureService = Depends(get_feature_service),
):
    filters = {
        "search": search,
        "category": category,
        "is_active": is_active,
        "is_boolean": is_boolean,
    }
    items = await service.list_features(
        **filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    total = await service.count_features(**filters)
    return {"items": items, "total": total, "page": page}


@router.get("/active", response_model=List[FeatureRead])
async def list_active_features(service: FeatureService = Depends(get_feature_service)):
    return await service.get_active_features()


@router.get("/categories", response_model=List[str])
async def list_categories(service: FeatureService = Depends(get_feature_service)):
    return await service.get_feature_categories()


@router.get("/categories/{category}", response_model=List[FeatureRead])
async def list_features_in_category(
    category: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.get_features_by_category(category)


@router.get("/unassigned", response_model=List[FeatureRead])
async def list_unassigned_features(
    service: FeatureService = Depends(get_feature_service),
):
    return await service.get_unassigned_features()


@router.get("/stats", response_model=FeatureStats)
async def feature_stats(service: FeatureService = Depends(get_feature_service)):
    return await service.get_feature_stats()


@router.put("/category")
async def bulk_update_category(
    data: CategoryUpdateRequest, service: FeatureService = Depends(get_feature_service)
):
    updated = await service.bulk_update_feature_category(data.feature_ids, data.category)
    return {"updated": updated}


@router.get("/key/{key_name}", response_model=FeatureRead)
async def get_feature_by_key_name(
    key_name: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.get_feature_by_key_name(key_name)


@router.get("/{feature_id}", response_model=FeatureRead)
async def get_feature(
    feature_id: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.get_feature(feature_id)


@router.get("/{feature_id}/usage", response_model=List[PlanFeatureRead])
async def feature_usage(
    feature_id: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.get_feature_usage(feature_id)


@router.post("", response_model=FeatureRead, status_code=status.HTTP_201_CREATED)
async def create_feature(
    data: FeatureCreate, service: FeatureService = Depends(get_feature_service)
):
    return await service.create_feature(data)


@router.put("/{feature_id}", response_model=FeatureRead)
async def update_feature(
    feature_id: str,
    data: FeatureUpdate,
    service: FeatureService = Depends(get_feature_service),
):
    return await service.update_feature(feature_id, data)


@router.post("/{feature_id}/activate", response_model=FeatureRead)
async def activate_feature(
    feature_id: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.activate_feature(feature_id)


@router.post("/{feature_id}/deactivate", response_model=FeatureRead)
async def deactivate_feature(
    feature_id: str, service: FeatureService = Depends(get_feature_service)
):
    return await service.deactivate_feature(feature_id)


@router.post(
    "/{feature_id}/duplicate",
    response_model=FeatureRead,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_feature(
    feature_id: str,
    data: DuplicateFeatureRequest,
    service: FeatureService = Depends(get_feature_service),
):
    return await service.duplicate_feature(
        feature_id, data.new_key_name, data.new_display_name
    )


@router.delete("/{feature_id}")
async def delete_feature(
    feature_id: str,
    hard: bool = False,
    service: FeatureService = Depends(get_feature_service),
):
    outcome = await service.delete_feature(feature_id, hard=hard)
    return {"status": outcome.value, "feature_id": feature_id}
