"""Admin endpoints for the plan catalog."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from src.api.deps import get_plan_service
from src.auth.jwt import require_admin
from src.schemas.plan import PlanCreate, PlanOrder, PlanRead, PlanStatistics, PlanUpdate
from src.schemas.plan_feature import PlanFeatureRead
from src.services.plan_service import PlanService


router = APIRouter(
    prefix="/plans", tags=["plans"], dependencies=[Depends(require_admin)]
)


@router.get("")
async def list_plans(
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    sort_by: str = "sort_order",
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    service: PlanService = Depends(get_plan_service),
):
    items = await service.list_plans(
        search=search,
        is_active=is_active,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    total = await service.count_plans(search=search, is_active=is_active)
    return {"items": items, "total": total, "page": page}


@router.get("/public", response_model=List[PlanRead])
async def list_public_plans(service: PlanService = Depends(get_plan_service)):
    return await service.get_public_plans()


@router.get("/statistics", response_model=PlanStatistics)
async def plan_statistics(service: PlanService = Depends(get_plan_service)):
    return await service.get_plan_statistics()


@router.post("/reorder", response_model=List[PlanRead])
async def reorder_plans(
    orders: List[PlanOrder], service: PlanService = Depends(get_plan_service)
):
    return await service.reorder_plans(orders)


@router.get("/slug/{slug}", response_model=PlanRead)
async def get_plan_by_slug(slug: str, service: PlanService = Depends(get_plan_service)):
    return await service.get_plan_by_slug(slug)


@router.get("/{plan_id}", response_model=PlanRead)
async def get_plan(plan_id: str, service: PlanService = Depends(get_plan_service)):
    return await service.get_plan(plan_id)


@router.get("/{plan_id}/features", response_model=List[PlanFeatureRead])
async def get_plan_features(
    plan_id: str, service: PlanService = Depends(get_plan_service)
):
    return await service.get_plan_features(plan_id)


@router.post("", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
async def create_plan(data: PlanCreate, service: PlanService = Depends(get_plan_service)):
    return await service.create_plan(data)


@router.put("/{plan_id}", response_model=PlanRead)
async def update_plan(
    plan_id: str, data: PlanUpdate, service: PlanService = Depends(get_plan_service)
):
    return await service.update_plan(plan_id, data)


@router.post("/{plan_id}/activate", response_model=PlanRead)
async def activate_plan(plan_id: str, service: PlanService = Depends(get_plan_service)):
    return await service.activate_plan(plan_id)


@router.post("/{plan_id}/deactivate", response_model=PlanRead)
async def deactivate_plan(
    plan_id: str, service: PlanService = Depends(get_plan_service)
):
    return await service.deactivate_plan(plan_id)


@router.post(
    "/{plan_id}/duplicate", response_model=PlanRead, status_code=status.HTTP_201_CREATED
)
async def duplicate_plan(
    plan_id: str,
    modifications: Optional[PlanUpdate] = Body(None),
    service: PlanService = Depends(get_plan_service),
):
    return await service.duplicate_plan(plan_id, modifications)


@router.delete("/{plan_id}")
async def delete_plan(
    plan_id: str,
    force: bool = False,
    service: PlanService = Depends(get_plan_service),
):
    removed = await service.delete_plan(plan_id, force=force)
    return {"status": "deleted", "plan_id": plan_id, "removed_entitlements": removed}
