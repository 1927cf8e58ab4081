"""Plan catalog operations."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Union

from src.core.exceptions import ConflictError, ErrorCode, NotFoundError
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.repositories.plan_repo import PlanRepo
from src.schemas.plan import PlanCreate, PlanOrder, PlanRead, PlanStatistics, PlanUpdate
from src.schemas.plan_feature import PlanFeatureEntry, PlanFeatureRead
from src.services.payloads import parse_payload

logger = logging.getLogger(__name__)

# Fields that may be cleared by passing an explicit null.
NULLABLE_PLAN_FIELDS = frozenset({"description", "billing_interval"})


class PlanService:
    """Create, query and maintain subscription plans."""

    def __init__(self, plan_repo: PlanRepo, plan_feature_repo: PlanFeatureRepo) -> None:
        self.plan_repo = plan_repo
        self.plan_feature_repo = plan_feature_repo

    async def get_plan(self, plan_id: str) -> PlanRead:
        plan = await self.plan_repo.find_by_id(plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan with ID {plan_id} not found",
                ErrorCode.PLAN_NOT_FOUND,
                details={"plan_id": plan_id},
            )
        return plan

    async def get_plan_by_slug(self, slug: str) -> PlanRead:
        plan = await self.plan_repo.find_by_slug(slug)
        if plan is None:
            raise NotFoundError(
                f"Plan with slug '{slug}' not found",
                ErrorCode.PLAN_NOT_FOUND,
                details={"slug": slug},
            )
        return plan

    async def list_plans(
        self,
        *,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "sort_order",
        sort_order: str = "asc",
    ) -> list[PlanRead]:
        return await self.plan_repo.find_many(
            search=search,
            is_active=is_active,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    async def count_plans(
        self, *, search: Optional[str] = None, is_active: Optional[bool] = None
    ) -> int:
        return await self.plan_repo.count(search=search, is_active=is_active)

    async def get_public_plans(self) -> list[PlanRead]:
        """Active plans in display order."""

        return [plan for plan in await self.plan_repo.find_all() if plan.is_active]

    async def get_plan_features(self, plan_id: str) -> list[PlanFeatureRead]:
        """Enabled entitlements of a plan."""

        await self.get_plan(plan_id)
        return await self.plan_feature_repo.find_enabled_by_plan_id(plan_id)

    async def create_plan(self, data: Union[PlanCreate, Mapping[str, Any]]) -> PlanRead:
        payload = parse_payload(PlanCreate, data)
        await self._ensure_unique(name=payload.name, slug=payload.slug)
        return await self.plan_repo.create(payload)

    async def update_plan(
        self, plan_id: str, data: Union[PlanUpdate, Mapping[str, Any]]
    ) -> PlanRead:
        payload = parse_payload(PlanUpdate, data)
        current = await self.get_plan(plan_id)

        changes = {
            field: value
            for field, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or field in NULLABLE_PLAN_FIELDS
        }
        if not changes:
            return current

        await self._ensure_unique(
            name=changes.get("name") if changes.get("name") != current.name else None,
            slug=changes.get("slug") if changes.get("slug") != current.slug else None,
        )
        return await self.plan_repo.update(plan_id, changes)

    async def activate_plan(self, plan_id: str) -> PlanRead:
        return await self.update_plan(plan_id, PlanUpdate(is_active=True))

    async def deactivate_plan(self, plan_id: str) -> PlanRead:
        return await self.update_plan(plan_id, PlanUpdate(is_active=False))

    async def delete_plan(self, plan_id: str, *, force: bool = False) -> int:
        """Delete a plan; ``force`` also removes its entitlements.

        Returns the number of entitlement rows removed alongside the plan.
        """

        return await self.plan_repo.delete(plan_id, force=force)

    async def duplicate_plan(
        self,
        source_plan_id: str,
        modifications: Union[PlanUpdate, Mapping[str, Any], None] = None,
    ) -> PlanRead:
        """Clone a plan together with its full entitlement set."""

        source = await self.get_plan(source_plan_id)
        overrides = parse_payload(PlanUpdate, modifications).model_dump(
            exclude_unset=True
        )

        fields = {
            "name": f"{source.name} (Copy)",
            "slug": f"{source.slug}-copy",
            "description": source.description,
            "price": source.price,
            "currency": source.currency,
            "billing_interval": source.billing_interval,
            "is_active": False,
            "sort_order": min(source.sort_order + 1, 999),
            "metadata": dict(source.metadata),
        }
        fields.update(
            {
                key: value
                for key, value in overrides.items()
                if value is not None or key in NULLABLE_PLAN_FIELDS
            }
        )
        payload = parse_payload(PlanCreate, fields)
        await self._ensure_unique(name=payload.name, slug=payload.slug)

        entitlements = [
            PlanFeatureEntry(
                feature_id=row.feature_id, is_enabled=row.is_enabled, value=row.value
            )
            for row in await self.plan_feature_repo.find_by_plan_id(source_plan_id)
        ]
        duplicate = await self.plan_repo.create_with_entitlements(payload, entitlements)
        logger.info(
            "Plan %s duplicated as %s with %d entitlements",
            source_plan_id,
            duplicate.plan_id,
            len(entitlements),
        )
        return duplicate

    async def reorder_plans(
        self, orders: Sequence[Union[PlanOrder, Mapping[str, Any]]]
    ) -> list[PlanRead]:
        parsed = [parse_payload(PlanOrder, order) for order in orders]
        if not parsed:
            return []
        return await self.plan_repo.update_sort_orders(parsed)

    async def get_plan_statistics(self) -> PlanStatistics:
        total = await self.plan_repo.count()
        active = await self.plan_repo.count(is_active=True)
        return PlanStatistics(total=total, active=active, inactive=total - active)

    async def _ensure_unique(
        self, *, name: Optional[str] = None, slug: Optional[str] = None
    ) -> None:
        if name is not None and await self.plan_repo.find_by_name(name) is not None:
            raise ConflictError(
                f"Plan with name '{name}' already exists",
                ErrorCode.PLAN_NAME_EXISTS,
                details={"name": name},
            )
        if slug is not None and await self.plan_repo.find_by_slug(slug) is not None:
            raise ConflictError(
                f"Plan with slug '{slug}' already exists",
                ErrorCode.PLAN_SLUG_EXISTS,
                details={"slug": slug},
            )
