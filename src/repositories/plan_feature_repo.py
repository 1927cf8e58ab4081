"""Repository utilities for plan/feature entitlement rows.

Every method opens its own session; multi-row writes run inside a single
``session_factory.begin()`` block so they commit or roll back as a unit.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, func, select, tuple_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationFailedError,
)
from src.db.models.feature import Feature
from src.db.models.plan import Plan
from src.db.models.plan_feature import PlanFeature
from src.repositories.errors import (
    is_foreign_key_violation,
    is_unique_violation,
    raise_storage_error,
    violated_constraint,
)
from src.repositories.query import apply_ordering, apply_paging
from src.schemas.entitlements import MatrixEntry
from src.schemas.plan_feature import (
    BulkUpdateItem,
    PlanFeatureCreate,
    PlanFeatureRead,
    PlanFeatureUpdate,
)

logger = logging.getLogger(__name__)

PLAN_FEATURE_SORT_FIELDS = frozenset(
    {"created_at", "updated_at", "plan_id", "feature_id", "is_enabled"}
)
DEFAULT_PAGE_SIZE = 100

ModelT = TypeVar("ModelT", bound=BaseModel)
CreateInput = Union[PlanFeatureCreate, Mapping[str, Any]]
UpdateInput = Union[PlanFeatureUpdate, Mapping[str, Any]]
BulkUpdateInput = Union[BulkUpdateItem, Mapping[str, Any]]


def _coerce(model: Type[ModelT], item: Any) -> ModelT:
    if isinstance(item, model):
        return item
    return model.model_validate(item)


def _error_summary(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(error["loc"]), "msg": error["msg"]}
        for error in exc.errors(include_url=False)
    ]


def _validate_batch(
    model: Type[ModelT], items: Sequence[Any], code: ErrorCode, label: str
) -> List[ModelT]:
    """Validate every entry up front; one bad entry rejects the whole batch."""

    validated: List[ModelT] = []
    failures: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        try:
            validated.append(_coerce(model, item))
        except ValidationError as exc:
            failures.append({"index": index, "errors": _error_summary(exc)})
    if failures:
        logger.warning("Rejected %s batch: %d invalid entries", label, len(failures))
        raise ValidationFailedError(
            f"Validation failed for {len(failures)} {label} entries",
            code,
            details={"failures": failures},
        )
    return validated


def _find_batch_duplicates(rows: Sequence[PlanFeatureCreate]) -> List[Dict[str, str]]:
    seen = set()
    duplicates = []
    for row in rows:
        pair = (row.plan_id, row.feature_id)
        if pair in seen:
            duplicates.append({"plan_id": row.plan_id, "feature_id": row.feature_id})
        seen.add(pair)
    return duplicates


def _missing_reference(exc: IntegrityError) -> NotFoundError:
    if violated_constraint(exc, "plan_id"):
        return NotFoundError("Referenced plan does not exist", ErrorCode.PLAN_NOT_FOUND)
    return NotFoundError("Referenced feature does not exist", ErrorCode.FEATURE_NOT_FOUND)


def _not_found(plan_feature_id: str) -> NotFoundError:
    return NotFoundError(
        f"Plan feature with ID {plan_feature_id} not found",
        ErrorCode.PLAN_FEATURE_NOT_FOUND,
        details={"plan_feature_id": plan_feature_id},
    )


def _new_row(data: PlanFeatureCreate) -> PlanFeature:
    return PlanFeature(
        plan_id=data.plan_id,
        feature_id=data.feature_id,
        is_enabled=data.is_enabled,
        value=dict(data.value),
    )


class PlanFeatureRepo:
    """Data-access helpers for :class:`PlanFeature`."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # Reads

    async def find_by_id(self, plan_feature_id: str) -> PlanFeatureRead | None:
        async with self.session_factory() as session:
            row = await session.get(PlanFeature, plan_feature_id)
            return PlanFeatureRead.model_validate(row) if row else None

    async def find_by_plan_and_feature(
        self, plan_id: str, feature_id: str
    ) -> PlanFeatureRead | None:
        stmt = select(PlanFeature).where(
            PlanFeature.plan_id == plan_id, PlanFeature.feature_id == feature_id
        )
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return PlanFeatureRead.model_validate(row) if row else None

    async def find_by_plan_id(self, plan_id: str) -> list[PlanFeatureRead]:
        return await self._find_where(PlanFeature.plan_id == plan_id)

    async def find_by_feature_id(self, feature_id: str) -> list[PlanFeatureRead]:
        return await self._find_where(PlanFeature.feature_id == feature_id)

    async def find_enabled_by_plan_id(self, plan_id: str) -> list[PlanFeatureRead]:
        return await self._find_where(
            PlanFeature.plan_id == plan_id, PlanFeature.is_enabled.is_(True)
        )

    async def find_all(self) -> list[PlanFeatureRead]:
        return await self._find_where()

    async def find_many(
        self,
        *,
        plan_ids: Optional[Sequence[str]] = None,
        feature_ids: Optional[Sequence[str]] = None,
        is_enabled: Optional[bool] = None,
        page: int = 1,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> list[PlanFeatureRead]:
        stmt = self._filtered(
            select(PlanFeature),
            plan_ids=plan_ids,
            feature_ids=feature_ids,
            is_enabled=is_enabled,
        )
        stmt = apply_ordering(
            stmt, PlanFeature, sort_by, sort_order, PLAN_FEATURE_SORT_FIELDS
        )
        stmt = apply_paging(stmt, page, limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = [PlanFeatureRead.model_validate(row) for row in result.scalars()]
        logger.debug("Found %d plan features", len(rows))
        return rows

    async def count(
        self,
        *,
        plan_ids: Optional[Sequence[str]] = None,
        feature_ids: Optional[Sequence[str]] = None,
        is_enabled: Optional[bool] = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(PlanFeature),
            plan_ids=plan_ids,
            feature_ids=feature_ids,
            is_enabled=is_enabled,
        )
        async with self.session_factory() as session:
            value = (await session.execute(stmt)).scalar_one()
        return int(value or 0)

    async def get_entitlement_matrix(
        self,
        *,
        plan_ids: Optional[Sequence[str]] = None,
        feature_ids: Optional[Sequence[str]] = None,
        is_enabled: Optional[bool] = None,
    ) -> list[MatrixEntry]:
        """Entitlement rows joined with plan and feature names.

        Ordered by plan name, then feature display name.
        """

        stmt = (
            select(PlanFeature, Plan.name, Feature.display_name, Feature.key_name)
            .join(Plan, Plan.plan_id == PlanFeature.plan_id)
            .join(Feature, Feature.feature_id == PlanFeature.feature_id)
        )
        stmt = self._filtered(
            stmt, plan_ids=plan_ids, feature_ids=feature_ids, is_enabled=is_enabled
        ).order_by(Plan.name.asc(), Feature.display_name.asc())

        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                entries = [
                    MatrixEntry(
                        plan_feature=PlanFeatureRead.model_validate(row),
                        plan_name=plan_name,
                        feature_name=feature_name,
                        feature_key_name=key_name,
                    )
                    for row, plan_name, feature_name, key_name in result.all()
                ]
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "load entitlement matrix")
        return entries

    # Writes

    async def create(self, data: CreateInput) -> PlanFeatureRead:
        """Insert one row; the unique constraint decides concurrent duplicates."""

        data = _coerce(PlanFeatureCreate, data)
        try:
            async with self.session_factory.begin() as session:
                row = _new_row(data)
                session.add(row)
                await session.flush()
                created = PlanFeatureRead.model_validate(row)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ConflictError(
                    "Feature is already associated with this plan",
                    ErrorCode.PLAN_FEATURE_ALREADY_EXISTS,
                    details={"plan_id": data.plan_id, "feature_id": data.feature_id},
                ) from exc
            if is_foreign_key_violation(exc):
                raise _missing_reference(exc) from exc
            raise_storage_error(exc, "create plan feature")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "create plan feature")

        logger.info(
            "Plan feature created: %s (plan=%s feature=%s)",
            created.plan_feature_id,
            created.plan_id,
            created.feature_id,
        )
        return created

    async def create_many(self, rows: Sequence[CreateInput]) -> list[PlanFeatureRead]:
        if not rows:
            return []

        validated = _validate_batch(
            PlanFeatureCreate, rows, ErrorCode.BULK_VALIDATION_ERROR, "plan feature"
        )
        duplicates = _find_batch_duplicates(validated)
        if duplicates:
            raise ConflictError(
                "Batch contains duplicate plan/feature pairs",
                ErrorCode.DUPLICATE_IN_BATCH,
                details={"duplicates": duplicates},
            )

        pairs = [(row.plan_id, row.feature_id) for row in validated]
        try:
            async with self.session_factory.begin() as session:
                existing = (
                    await session.execute(
                        select(PlanFeature.plan_id, PlanFeature.feature_id).where(
                            tuple_(PlanFeature.plan_id, PlanFeature.feature_id).in_(pairs)
                        )
                    )
                ).all()
                if existing:
                    raise ConflictError(
                        f"{len(existing)} plan/feature pairs already exist",
                        ErrorCode.BULK_DUPLICATE_ERROR,
                        details={
                            "existing": [
                                {"plan_id": plan_id, "feature_id": feature_id}
                                for plan_id, feature_id in existing
                            ]
                        },
                    )
                new_rows = [_new_row(row) for row in validated]
                session.add_all(new_rows)
                await session.flush()
                created = [PlanFeatureRead.model_validate(row) for row in new_rows]
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ConflictError(
                    "Plan/feature pairs were created concurrently",
                    ErrorCode.BULK_DUPLICATE_ERROR,
                ) from exc
            if is_foreign_key_violation(exc):
                raise _missing_reference(exc) from exc
            raise_storage_error(exc, "create plan features")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "create plan features")

        logger.info("Created %d plan features", len(created))
        return created

    async def update(
        self, plan_feature_id: str, data: UpdateInput
    ) -> PlanFeatureRead:
        changes = _coerce(PlanFeatureUpdate, data).model_dump(
            exclude_unset=True, exclude_none=True
        )
        try:
            async with self.session_factory.begin() as session:
                row = await session.get(PlanFeature, plan_feature_id)
                if row is None:
                    raise _not_found(plan_feature_id)
                for attr, value in changes.items():
                    setattr(row, attr, value)
                await session.flush()
                updated = PlanFeatureRead.model_validate(row)
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "update plan feature")

        logger.info("Plan feature updated: %s fields=%s", plan_feature_id, sorted(changes))
        return updated

    async def update_many(
        self, updates: Sequence[BulkUpdateInput]
    ) -> list[PlanFeatureRead]:
        """Apply every update in one transaction; a missing id rolls back all."""

        if not updates:
            return []

        items = _validate_batch(
            BulkUpdateItem,
            updates,
            ErrorCode.BULK_UPDATE_VALIDATION_ERROR,
            "plan feature update",
        )
        try:
            async with self.session_factory.begin() as session:
                updated = []
                for item in items:
                    row = await session.get(PlanFeature, item.plan_feature_id)
                    if row is None:
                        raise _not_found(item.plan_feature_id)
                    changes = item.changes().model_dump(
                        exclude_unset=True, exclude_none=True
                    )
                    for attr, value in changes.items():
                        setattr(row, attr, value)
                    updated.append(row)
                await session.flush()
                result = [PlanFeatureRead.model_validate(row) for row in updated]
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "update plan features")

        logger.info("Updated %d plan features", len(result))
        return result

    async def enable(self, plan_feature_id: str) -> PlanFeatureRead:
        return await self.update(plan_feature_id, PlanFeatureUpdate(is_enabled=True))

    async def disable(self, plan_feature_id: str) -> PlanFeatureRead:
        return await self.update(plan_feature_id, PlanFeatureUpdate(is_enabled=False))

    async def delete(self, plan_feature_id: str) -> None:
        try:
            async with self.session_factory.begin() as session:
                row = await session.get(PlanFeature, plan_feature_id)
                if row is None:
                    raise _not_found(plan_feature_id)
                await session.delete(row)
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "delete plan feature")

        logger.info("Plan feature deleted: %s", plan_feature_id)

    async def replace_all_for_plan(
        self, plan_id: str, rows: Sequence[CreateInput]
    ) -> list[PlanFeatureRead]:
        """Swap a plan's entire entitlement set for ``rows`` atomically."""

        validated = _validate_batch(
            PlanFeatureCreate, rows, ErrorCode.BULK_VALIDATION_ERROR, "plan feature"
        )
        mismatched = [row.plan_id for row in validated if row.plan_id != plan_id]
        if mismatched:
            raise ValidationFailedError(
                "All entries must belong to the plan being replaced",
                ErrorCode.PLAN_ID_MISMATCH,
                details={"plan_id": plan_id, "mismatched": sorted(set(mismatched))},
            )
        duplicates = _find_batch_duplicates(validated)
        if duplicates:
            raise ConflictError(
                "Batch contains duplicate plan/feature pairs",
                ErrorCode.DUPLICATE_IN_BATCH,
                details={"duplicates": duplicates},
            )

        try:
            async with self.session_factory.begin() as session:
                removed = await session.execute(
                    delete(PlanFeature).where(PlanFeature.plan_id == plan_id)
                )
                new_rows = [_new_row(row) for row in validated]
                session.add_all(new_rows)
                await session.flush()
                created = [PlanFeatureRead.model_validate(row) for row in new_rows]
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ConflictError(
                    "Feature is already associated with this plan",
                    ErrorCode.PLAN_FEATURE_ALREADY_EXISTS,
                    details={"plan_id": plan_id},
                ) from exc
            if is_foreign_key_violation(exc):
                raise _missing_reference(exc) from exc
            raise_storage_error(exc, "replace plan features")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "replace plan features")

        logger.info(
            "Replaced entitlements for plan %s: removed %d, inserted %d",
            plan_id,
            removed.rowcount,
            len(created),
        )
        return created

    async def delete_by_plan_id(self, plan_id: str) -> int:
        return await self._delete_where(PlanFeature.plan_id == plan_id)

    async def delete_by_feature_id(self, feature_id: str) -> int:
        return await self._delete_where(PlanFeature.feature_id == feature_id)

    # Helpers

    async def _find_where(self, *criteria) -> list[PlanFeatureRead]:
        stmt = (
            select(PlanFeature)
            .where(*criteria)
            .order_by(PlanFeature.created_at.asc(), PlanFeature.plan_feature_id.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [PlanFeatureRead.model_validate(row) for row in result.scalars()]

    async def _delete_where(self, criterion) -> int:
        try:
            async with self.session_factory.begin() as session:
                result = await session.execute(delete(PlanFeature).where(criterion))
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "delete plan features")

        removed = int(result.rowcount or 0)
        logger.info("Deleted %d plan features", removed)
        return removed

    @staticmethod
    def _filtered(
        stmt,
        *,
        plan_ids: Optional[Iterable[str]] = None,
        feature_ids: Optional[Iterable[str]] = None,
        is_enabled: Optional[bool] = None,
    ):
        if plan_ids is not None:
            stmt = stmt.where(PlanFeature.plan_id.in_(list(plan_ids)))
        if feature_ids is not None:
            stmt = stmt.where(PlanFeature.feature_id.in_(list(feature_ids)))
        if is_enabled is not None:
            stmt = stmt.where(PlanFeature.is_enabled.is_(is_enabled))
        return stmt
