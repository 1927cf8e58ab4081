"""Admin endpoints for plan entitlements and the entitlement matrix."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.api.deps import get_plan_feature_service
from src.auth.jwt import require_admin
from src.schemas.entitlements import (
    EntitlementAnalytics,
    EntitlementMatrixRow,
    MissingFeature,
    PlanEntitlementSummary,
)
from src.schemas.plan_feature import PlanFeatureRead
from src.services.plan_feature_service import PlanFeatureService


router = APIRouter(
    prefix="/plan-features",
    tags=["plan-features"],
    dependencies=[Depends(require_admin)],
)


# Request bodies keep ``value`` loosely typed so that non-object values reach
# the service and are rejected with INVALID_VALUE rather than a 422.


class CreatePlanFeatureRequest(BaseModel):
    plan_id: str
    feature_id: str
    is_enabled: bool = True
    value: Optional[Any] = None


class UpdatePlanFeatureRequest(BaseModel):
    is_enabled: Optional[bool] = None
    value: Optional[Any] = None


class BulkUpdateRequest(BaseModel):
    updates: List[Dict[str, Any]] = Field(..., min_length=1)
    atomic: bool = False


class BulkCreateRequest(BaseModel):
    entries: List[Dict[str, Any]] = Field(..., min_length=1)


class ReplaceFeaturesRequest(BaseModel):
    features: List[Dict[str, Any]] = Field(default_factory=list)


class CopyEntitlementsRequest(BaseModel):
    source_plan_id: str
    target_plan_id: str
    overwrite: bool = False


@router.get("")
async def list_plan_features(
    plan_id: Optional[List[str]] = Query(None),
    feature_id: Optional[List[str]] = Query(None),
    is_enabled: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    items = await service.list_plan_features(
        plan_ids=plan_id,
        feature_ids=feature_id,
        is_enabled=is_enabled,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    total = await service.count_plan_features(
        plan_ids=plan_id, feature_ids=feature_id, is_enabled=is_enabled
    )
    return {"items": items, "total": total, "page": page}


@router.get("/matrix", response_model=List[EntitlementMatrixRow])
async def entitlement_matrix(
    plan_id: Optional[List[str]] = Query(None),
    feature_id: Optional[List[str]] = Query(None),
    is_enabled: Optional[bool] = None,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.get_entitlement_matrix(
        plan_ids=plan_id, feature_ids=feature_id, is_enabled=is_enabled
    )


@router.get("/analytics", response_model=EntitlementAnalytics)
async def entitlement_analytics(
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.get_entitlement_analytics()


@router.post("/copy", response_model=List[PlanFeatureRead])
async def copy_plan_entitlements(
    data: CopyEntitlementsRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.copy_plan_entitlements(
        data.source_plan_id, data.target_plan_id, data.overwrite
    )


@router.put("/bulk", response_model=List[PlanFeatureRead])
async def bulk_update_plan_features(
    data: BulkUpdateRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.bulk_update_plan_features(data.updates, atomic=data.atomic)


@router.post(
    "/bulk", response_model=List[PlanFeatureRead], status_code=status.HTTP_201_CREATED
)
async def bulk_create_plan_features(
    data: BulkCreateRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.bulk_create_plan_features(data.entries)


@router.get("/plans/{plan_id}", response_model=List[PlanFeatureRead])
async def features_for_plan(
    plan_id: str,
    enabled_only: bool = False,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.get_features_by_plan(plan_id, enabled_only=enabled_only)


@router.put("/plans/{plan_id}", response_model=List[PlanFeatureRead])
async def replace_features_for_plan(
    plan_id: str,
    data: ReplaceFeaturesRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.replace_all_features_for_plan(plan_id, data.features)


@router.get("/plans/{plan_id}/summary", response_model=PlanEntitlementSummary)
async def plan_summary(
    plan_id: str, service: PlanFeatureService = Depends(get_plan_feature_service)
):
    return await service.get_plan_entitlement_summary(plan_id)


@router.get("/plans/{plan_id}/missing", response_model=List[MissingFeature])
async def missing_features(
    plan_id: str, service: PlanFeatureService = Depends(get_plan_feature_service)
):
    return await service.get_missing_features_for_plan(plan_id)


@router.get("/features/{feature_id}", response_model=List[PlanFeatureRead])
async def plans_for_feature(
    feature_id: str, service: PlanFeatureService = Depends(get_plan_feature_service)
):
    return await service.get_plans_by_feature(feature_id)


@router.get("/{plan_feature_id}", response_model=PlanFeatureRead)
async def get_plan_feature(
    plan_feature_id: str,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.get_plan_feature(plan_feature_id)


@router.post("", response_model=PlanFeatureRead, status_code=status.HTTP_201_CREATED)
async def create_plan_feature(
    data: CreatePlanFeatureRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.create_plan_feature(
        data.plan_id, data.feature_id, data.is_enabled, data.value
    )


@router.put("/{plan_feature_id}", response_model=PlanFeatureRead)
async def update_plan_feature(
    plan_feature_id: str,
    data: UpdatePlanFeatureRequest,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.update_plan_feature(
        plan_feature_id, data.model_dump(exclude_unset=True)
    )


@router.post("/{plan_feature_id}/enable", response_model=PlanFeatureRead)
async def enable_plan_feature(
    plan_feature_id: str,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.enable_plan_feature(plan_feature_id)


@router.post("/{plan_feature_id}/disable", response_model=PlanFeatureRead)
async def disable_plan_feature(
    plan_feature_id: str,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    return await service.disable_plan_feature(plan_feature_id)


@router.delete("/{plan_feature_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan_feature(
    plan_feature_id: str,
    service: PlanFeatureService = Depends(get_plan_feature_service),
):
    await service.delete_plan_feature(plan_feature_id)
