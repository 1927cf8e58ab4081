"""Repository utilities for subscription plans."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import ConflictError, ErrorCode, NotFoundError
from src.db.models.plan import Plan
from src.db.models.plan_feature import PlanFeature
from src.repositories.errors import (
    is_unique_violation,
    raise_storage_error,
    violated_constraint,
)
from src.repositories.query import apply_ordering, apply_paging
from src.schemas.plan import PlanCreate, PlanOrder, PlanRead
from src.schemas.plan_feature import PlanFeatureEntry

logger = logging.getLogger(__name__)

PLAN_SORT_FIELDS = frozenset(
    {"name", "slug", "price", "sort_order", "is_active", "created_at", "updated_at"}
)


def _to_columns(values: Dict[str, Any]) -> Dict[str, Any]:
    """Map schema field names onto ORM attribute names."""

    columns = dict(values)
    if "metadata" in columns:
        columns["metadata_"] = columns.pop("metadata")
    interval = columns.get("billing_interval")
    if interval is not None and hasattr(interval, "value"):
        columns["billing_interval"] = interval.value
    return columns


def _plan_conflict(exc: IntegrityError) -> ConflictError:
    if violated_constraint(exc, "uq_plans_slug", "plans.slug"):
        return ConflictError("Plan slug already exists", ErrorCode.PLAN_SLUG_EXISTS)
    return ConflictError("Plan name already exists", ErrorCode.PLAN_NAME_EXISTS)


def _not_found(plan_id: str) -> NotFoundError:
    return NotFoundError(
        f"Plan with ID {plan_id} not found",
        ErrorCode.PLAN_NOT_FOUND,
        details={"plan_id": plan_id},
    )


class PlanRepo:
    """Data-access helpers for :class:`Plan`."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_by_id(self, plan_id: str) -> PlanRead | None:
        async with self.session_factory() as session:
            plan = await session.get(Plan, plan_id)
            return PlanRead.model_validate(plan) if plan else None

    async def find_by_slug(self, slug: str) -> PlanRead | None:
        return await self._get_one(Plan.slug == slug.strip().lower())

    async def find_by_name(self, name: str) -> PlanRead | None:
        return await self._get_one(Plan.name == name.strip())

    async def find_by_ids(self, plan_ids: Iterable[str]) -> list[PlanRead]:
        ids = list(set(plan_ids))
        if not ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(select(Plan).where(Plan.plan_id.in_(ids)))
            return [PlanRead.model_validate(plan) for plan in result.scalars()]

    async def find_many(
        self,
        *,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "sort_order",
        sort_order: str = "asc",
    ) -> list[PlanRead]:
        stmt = self._filtered(select(Plan), search=search, is_active=is_active)
        stmt = apply_ordering(stmt, Plan, sort_by, sort_order, PLAN_SORT_FIELDS)
        stmt = apply_paging(stmt, page, limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            plans = [PlanRead.model_validate(plan) for plan in result.scalars()]
        logger.debug("Found %d plans", len(plans))
        return plans

    async def find_all(self) -> list[PlanRead]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Plan).order_by(Plan.sort_order.asc(), Plan.name.asc())
            )
            return [PlanRead.model_validate(plan) for plan in result.scalars()]

    async def count(
        self, *, search: Optional[str] = None, is_active: Optional[bool] = None
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(Plan), search=search, is_active=is_active
        )
        async with self.session_factory() as session:
            value = (await session.execute(stmt)).scalar_one()
        return int(value or 0)

    async def create(self, data: PlanCreate) -> PlanRead:
        try:
            async with self.session_factory.begin() as session:
                plan = Plan(**_to_columns(data.model_dump()))
                session.add(plan)
                await session.flush()
                created = PlanRead.model_validate(plan)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise _plan_conflict(exc) from exc
            raise_storage_error(exc, "create plan")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "create plan")

        logger.info("Plan created: %s (%s)", created.plan_id, created.slug)
        return created

    async def create_with_entitlements(
        self, data: PlanCreate, entitlements: Sequence[PlanFeatureEntry]
    ) -> PlanRead:
        """Insert a plan and its entitlement rows in one transaction."""

        try:
            async with self.session_factory.begin() as session:
                plan = Plan(**_to_columns(data.model_dump()))
                session.add(plan)
                await session.flush()
                session.add_all(
                    PlanFeature(
                        plan_id=plan.plan_id,
                        feature_id=entry.feature_id,
                        is_enabled=entry.is_enabled,
                        value=dict(entry.value or {}),
                    )
                    for entry in entitlements
                )
                await session.flush()
                created = PlanRead.model_validate(plan)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise _plan_conflict(exc) from exc
            raise_storage_error(exc, "create plan with entitlements")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "create plan with entitlements")

        logger.info(
            "Plan created: %s with %d entitlements", created.plan_id, len(entitlements)
        )
        return created

    async def update(self, plan_id: str, changes: Dict[str, Any]) -> PlanRead:
        try:
            async with self.session_factory.begin() as session:
                plan = await session.get(Plan, plan_id)
                if plan is None:
                    raise _not_found(plan_id)
                for attr, value in _to_columns(changes).items():
                    setattr(plan, attr, value)
                await session.flush()
                updated = PlanRead.model_validate(plan)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise _plan_conflict(exc) from exc
            raise_storage_error(exc, "update plan")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "update plan")

        logger.info("Plan updated: %s fields=%s", plan_id, sorted(changes))
        return updated

    async def update_sort_orders(self, orders: Sequence[PlanOrder]) -> list[PlanRead]:
        """Apply every sort order in one transaction; any missing plan aborts all."""

        try:
            async with self.session_factory.begin() as session:
                ids = [order.plan_id for order in orders]
                result = await session.execute(select(Plan).where(Plan.plan_id.in_(ids)))
                plans = {plan.plan_id: plan for plan in result.scalars()}
                missing = [plan_id for plan_id in ids if plan_id not in plans]
                if missing:
                    raise NotFoundError(
                        f"Plans not found: {', '.join(missing)}",
                        ErrorCode.PLAN_NOT_FOUND,
                        details={"plan_ids": missing},
                    )
                for order in orders:
                    plans[order.plan_id].sort_order = order.sort_order
                await session.flush()
                updated = [PlanRead.model_validate(plans[plan_id]) for plan_id in ids]
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "reorder plans")

        logger.info("Reordered %d plans", len(updated))
        return updated

    async def delete(self, plan_id: str, *, force: bool = False) -> int:
        """Delete a plan, returning how many entitlement rows were removed with it.

        Reference counting and the delete happen in the same transaction.
        """

        try:
            async with self.session_factory.begin() as session:
                plan = await session.get(Plan, plan_id)
                if plan is None:
                    raise _not_found(plan_id)

                references = (
                    await session.execute(
                        select(func.count())
                        .select_from(PlanFeature)
                        .where(PlanFeature.plan_id == plan_id)
                    )
                ).scalar_one()

                if references and not force:
                    raise ConflictError(
                        f"Cannot delete plan with {references} associated features. "
                        "Use force=true to override.",
                        ErrorCode.PLAN_HAS_FEATURES,
                        details={"plan_id": plan_id, "feature_count": references},
                    )
                if references:
                    await session.execute(
                        delete(PlanFeature).where(PlanFeature.plan_id == plan_id)
                    )
                await session.delete(plan)
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "delete plan")

        logger.info("Plan deleted: %s (removed %d entitlements)", plan_id, references)
        return int(references)

    async def _get_one(self, criterion) -> PlanRead | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Plan).where(criterion))
            plan = result.scalar_one_or_none()
            return PlanRead.model_validate(plan) if plan else None

    @staticmethod
    def _filtered(stmt, *, search: Optional[str], is_active: Optional[bool]):
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Plan.name.ilike(pattern), Plan.slug.ilike(pattern)))
        if is_active is not None:
            stmt = stmt.where(Plan.is_active.is_(is_active))
        return stmt
