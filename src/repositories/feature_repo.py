"""Repository utilities for the feature catalog."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import ConflictError, ErrorCode, NotFoundError
from src.db.models.feature import Feature
from src.db.models.plan_feature import PlanFeature
from src.repositories.errors import is_unique_violation, raise_storage_error
from src.repositories.query import apply_ordering, apply_paging
from src.schemas.feature import DeleteOutcome, FeatureCreate, FeatureRead

logger = logging.getLogger(__name__)

FEATURE_SORT_FIELDS = frozenset(
    {"display_name", "key_name", "category", "is_active", "created_at", "updated_at"}
)


def _duplicate_key(key_name: Optional[str]) -> ConflictError:
    return ConflictError(
        f"Feature with key name '{key_name}' already exists",
        ErrorCode.DUPLICATE_KEY_NAME,
        details={"key_name": key_name},
    )


def _not_found(feature_id: str) -> NotFoundError:
    return NotFoundError(
        f"Feature with ID {feature_id} not found",
        ErrorCode.FEATURE_NOT_FOUND,
        details={"feature_id": feature_id},
    )


class FeatureRepo:
    """Data-access helpers for :class:`Feature`."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_by_id(self, feature_id: str) -> FeatureRead | None:
        async with self.session_factory() as session:
            feature = await session.get(Feature, feature_id)
            return FeatureRead.model_validate(feature) if feature else None

    async def find_by_key_name(self, key_name: str) -> FeatureRead | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Feature).where(Feature.key_name == key_name.strip())
            )
            feature = result.scalar_one_or_none()
            return FeatureRead.model_validate(feature) if feature else None

    async def find_by_ids(self, feature_ids: Iterable[str]) -> list[FeatureRead]:
        ids = list(set(feature_ids))
        if not ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(Feature).where(Feature.feature_id.in_(ids))
            )
            return [FeatureRead.model_validate(feature) for feature in result.scalars()]

    async def find_many(
        self,
        *,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_boolean: Optional[bool] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "display_name",
        sort_order: str = "asc",
    ) -> list[FeatureRead]:
        stmt = self._filtered(
            select(Feature),
            search=search,
            category=category,
            is_active=is_active,
            is_boolean=is_boolean,
        )
        stmt = apply_ordering(stmt, Feature, sort_by, sort_order, FEATURE_SORT_FIELDS)
        stmt = apply_paging(stmt, page, limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            features = [FeatureRead.model_validate(row) for row in result.scalars()]
        logger.debug("Found %d features", len(features))
        return features

    async def find_all(
        self, *, category: Optional[str] = None, is_active: Optional[bool] = None
    ) -> list[FeatureRead]:
        """Unpaginated listing ordered by display name."""

        stmt = self._filtered(
            select(Feature), category=category, is_active=is_active
        ).order_by(Feature.display_name.asc())
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [FeatureRead.model_validate(row) for row in result.scalars()]

    async def get_categories(self) -> list[str]:
        stmt = (
            select(Feature.category)
            .where(Feature.category.is_not(None))
            .distinct()
            .order_by(Feature.category.asc())
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [category for category in result.scalars()]

    async def count(
        self,
        *,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_boolean: Optional[bool] = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(Feature),
            search=search,
            category=category,
            is_active=is_active,
            is_boolean=is_boolean,
        )
        async with self.session_factory() as session:
            value = (await session.execute(stmt)).scalar_one()
        return int(value or 0)

    async def usage_counts(self) -> Dict[str, int]:
        """Number of plans referencing each feature, keyed by feature id."""

        stmt = select(PlanFeature.feature_id, func.count()).group_by(
            PlanFeature.feature_id
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return {feature_id: int(count) for feature_id, count in result.all()}

    async def create(self, data: FeatureCreate) -> FeatureRead:
        try:
            async with self.session_factory.begin() as session:
                feature = Feature(**data.model_dump())
                session.add(feature)
                await session.flush()
                created = FeatureRead.model_validate(feature)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise _duplicate_key(data.key_name) from exc
            raise_storage_error(exc, "create feature")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "create feature")

        logger.info("Feature created: %s (%s)", created.feature_id, created.key_name)
        return created

    async def update(self, feature_id: str, changes: Dict[str, Any]) -> FeatureRead:
        try:
            async with self.session_factory.begin() as session:
                feature = await session.get(Feature, feature_id)
                if feature is None:
                    raise _not_found(feature_id)
                for attr, value in changes.items():
                    setattr(feature, attr, value)
                await session.flush()
                updated = FeatureRead.model_validate(feature)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise _duplicate_key(changes.get("key_name")) from exc
            raise_storage_error(exc, "update feature")
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "update feature")

        logger.info("Feature updated: %s fields=%s", feature_id, sorted(changes))
        return updated

    async def update_category_many(
        self, feature_ids: Sequence[str], category: Optional[str]
    ) -> int:
        ids = list(dict.fromkeys(feature_ids))
        try:
            async with self.session_factory.begin() as session:
                found = (
                    await session.execute(
                        select(Feature.feature_id).where(Feature.feature_id.in_(ids))
                    )
                ).scalars().all()
                missing = sorted(set(ids) - set(found))
                if missing:
                    raise NotFoundError(
                        f"Features not found: {', '.join(missing)}",
                        ErrorCode.FEATURE_NOT_FOUND,
                        details={"feature_ids": missing},
                    )
                result = await session.execute(
                    update(Feature)
                    .where(Feature.feature_id.in_(ids))
                    .values(category=category)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "bulk update feature category")

        logger.info("Moved %d features to category %r", result.rowcount, category)
        return int(result.rowcount or 0)

    async def delete(self, feature_id: str, *, hard: bool = False) -> DeleteOutcome:
        """Delete an unreferenced feature, or deactivate a referenced one.

        A referenced feature with ``hard=True`` is rejected with ``FEATURE_IN_USE``.
        """

        try:
            async with self.session_factory.begin() as session:
                feature = await session.get(Feature, feature_id)
                if feature is None:
                    raise _not_found(feature_id)

                references = (
                    await session.execute(
                        select(func.count())
                        .select_from(PlanFeature)
                        .where(PlanFeature.feature_id == feature_id)
                    )
                ).scalar_one()

                if not references:
                    await session.delete(feature)
                    outcome = DeleteOutcome.DELETED
                elif hard:
                    raise ConflictError(
                        f"Feature is used by {references} plans and cannot be deleted",
                        ErrorCode.FEATURE_IN_USE,
                        details={"feature_id": feature_id, "plan_count": references},
                    )
                else:
                    feature.is_active = False
                    outcome = DeleteOutcome.DEACTIVATED
        except SQLAlchemyError as exc:
            raise_storage_error(exc, "delete feature")

        if outcome is DeleteOutcome.DEACTIVATED:
            logger.warning(
                "Feature %s is used by %d plans; deactivated instead of deleted",
                feature_id,
                references,
            )
        else:
            logger.info("Feature deleted: %s", feature_id)
        return outcome

    @staticmethod
    def _filtered(
        stmt,
        *,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_boolean: Optional[bool] = None,
    ):
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Feature.key_name.ilike(pattern),
                    Feature.display_name.ilike(pattern),
                    Feature.description.ilike(pattern),
                )
            )
        if category is not None:
            stmt = stmt.where(Feature.category == category)
        if is_active is not None:
            stmt = stmt.where(Feature.is_active.is_(is_active))
        if is_boolean is not None:
            stmt = stmt.where(Feature.is_boolean.is_(is_boolean))
        return stmt
