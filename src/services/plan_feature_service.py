"""Entitlement matrix operations across plans and features.

The service validates references against the plan and feature catalogs before
delegating writes to :class:`PlanFeatureRepo`, which owns transactions and the
``(plan_id, feature_id)`` uniqueness guarantee.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from src.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationFailedError,
)
from src.repositories.feature_repo import FeatureRepo
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.repositories.plan_repo import PlanRepo
from src.schemas.entitlements import (
    CategoryBreakdown,
    EntitlementAnalytics,
    EntitlementMatrixRow,
    FeatureAdoption,
    MatrixPlanEntry,
    MissingFeature,
    PlanCoverage,
    PlanEntitlementSummary,
)
from src.schemas.feature import FeatureRead
from src.schemas.plan import PlanRead
from src.schemas.plan_feature import (
    BulkUpdateItem,
    PlanFeatureCreate,
    PlanFeatureEntry,
    PlanFeatureRead,
    PlanFeatureUpdate,
)
from src.services.payloads import parse_payload
from src.services.value_validation import schema_violations

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

EntryInput = Union[PlanFeatureEntry, Mapping[str, Any]]


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0
    return round(part / whole * 100, 2)


def _reject_non_object(value: Any) -> None:
    if value is not None and not isinstance(value, dict):
        raise ValidationFailedError(
            "Value must be a JSON object",
            ErrorCode.INVALID_VALUE,
            details={"received": type(value).__name__},
        )


def _raw_value(data: Any) -> Any:
    if isinstance(data, Mapping):
        return data.get("value")
    return getattr(data, "value", None)


class PlanFeatureService:
    """Entitlement matrix engine."""

    def __init__(
        self,
        plan_feature_repo: PlanFeatureRepo,
        plan_repo: PlanRepo,
        feature_repo: FeatureRepo,
    ) -> None:
        self.plan_feature_repo = plan_feature_repo
        self.plan_repo = plan_repo
        self.feature_repo = feature_repo

    # Reads

    async def get_plan_feature(self, plan_feature_id: str) -> PlanFeatureRead:
        row = await self.plan_feature_repo.find_by_id(plan_feature_id)
        if row is None:
            raise NotFoundError(
                f"Plan feature with ID {plan_feature_id} not found",
                ErrorCode.PLAN_FEATURE_NOT_FOUND,
                details={"plan_feature_id": plan_feature_id},
            )
        return row

    async def get_plan_feature_by_plan_and_feature(
        self, plan_id: str, feature_id: str
    ) -> Optional[PlanFeatureRead]:
        return await self.plan_feature_repo.find_by_plan_and_feature(plan_id, feature_id)

    async def get_features_by_plan(
        self, plan_id: str, *, enabled_only: bool = False
    ) -> list[PlanFeatureRead]:
        await self._require_plan(plan_id)
        if enabled_only:
            return await self.plan_feature_repo.find_enabled_by_plan_id(plan_id)
        return await self.plan_feature_repo.find_by_plan_id(plan_id)

    async def get_plans_by_feature(self, feature_id: str) -> list[PlanFeatureRead]:
        await self._require_feature(feature_id)
        return await self.plan_feature_repo.find_by_feature_id(feature_id)

    async def list_plan_features(self, **filters: Any) -> list[PlanFeatureRead]:
        return await self.plan_feature_repo.find_many(**filters)

    async def count_plan_features(
        self,
        *,
        plan_ids: Optional[Sequence[str]] = None,
        feature_ids: Optional[Sequence[str]] = None,
        is_enabled: Optional[bool] = None,
    ) -> int:
        return await self.plan_feature_repo.count(
            plan_ids=plan_ids, feature_ids=feature_ids, is_enabled=is_enabled
        )

    # Single-row writes

    async def create_plan_feature(
        self,
        plan_id: str,
        feature_id: str,
        is_enabled: bool,
        value: Optional[Dict[str, Any]] = None,
    ) -> PlanFeatureRead:
        _reject_non_object(value)
        await self._require_plan(plan_id)
        feature = await self._require_feature(feature_id)
        value = {} if value is None else value
        self._check_value(value, feature)

        existing = await self.plan_feature_repo.find_by_plan_and_feature(
            plan_id, feature_id
        )
        if existing is not None:
            raise ConflictError(
                "Feature is already associated with this plan",
                ErrorCode.PLAN_FEATURE_ALREADY_EXISTS,
                details={"plan_id": plan_id, "feature_id": feature_id},
            )

        data = parse_payload(
            PlanFeatureCreate,
            {
                "plan_id": plan_id,
                "feature_id": feature_id,
                "is_enabled": is_enabled,
                "value": value,
            },
        )
        return await self.plan_feature_repo.create(data)

    async def update_plan_feature(
        self,
        plan_feature_id: str,
        data: Union[PlanFeatureUpdate, Mapping[str, Any]],
    ) -> PlanFeatureRead:
        """Change only the supplied fields of one entitlement."""

        _reject_non_object(_raw_value(data))
        changes = parse_payload(PlanFeatureUpdate, data)
        current = await self.get_plan_feature(plan_feature_id)
        if changes.value is not None:
            feature = await self._require_feature(current.feature_id)
            self._check_value(changes.value, feature)
        return await self.plan_feature_repo.update(plan_feature_id, changes)

    async def enable_plan_feature(self, plan_feature_id: str) -> PlanFeatureRead:
        return await self.update_plan_feature(
            plan_feature_id, PlanFeatureUpdate(is_enabled=True)
        )

    async def disable_plan_feature(self, plan_feature_id: str) -> PlanFeatureRead:
        return await self.update_plan_feature(
            plan_feature_id, PlanFeatureUpdate(is_enabled=False)
        )

    async def delete_plan_feature(self, plan_feature_id: str) -> None:
        await self.plan_feature_repo.delete(plan_feature_id)

    # Batch writes

    async def bulk_update_plan_features(
        self,
        updates: Sequence[Union[BulkUpdateItem, Mapping[str, Any]]],
        *,
        atomic: bool = False,
    ) -> list[PlanFeatureRead]:
        """Apply several partial updates.

        By default each update is validated and applied on its own, so a
        failure leaves earlier updates in place. ``atomic=True`` applies the
        whole batch in one transaction instead.
        """

        if atomic:
            return await self._bulk_update_atomic(updates)

        results = []
        for update in updates:
            _reject_non_object(_raw_value(update))
            item = parse_payload(BulkUpdateItem, update)
            results.append(
                await self.update_plan_feature(item.plan_feature_id, item.changes())
            )
        return results

    async def bulk_create_plan_features(
        self, entries: Sequence[Union[PlanFeatureCreate, Mapping[str, Any]]]
    ) -> list[PlanFeatureRead]:
        """Create several entitlements across plans in one transaction."""

        if not entries:
            return []
        for entry in entries:
            _reject_non_object(_raw_value(entry))
        rows = [parse_payload(PlanFeatureCreate, entry) for entry in entries]

        await self._require_plans(row.plan_id for row in rows)
        features = await self._require_features(row.feature_id for row in rows)
        for row in rows:
            self._check_value(row.value, features[row.feature_id])
        return await self.plan_feature_repo.create_many(rows)

    async def replace_all_features_for_plan(
        self, plan_id: str, entries: Sequence[EntryInput]
    ) -> list[PlanFeatureRead]:
        """Atomically swap the plan's entitlement set for ``entries``."""

        await self._require_plan(plan_id)
        rows = await self._prepare_entries(plan_id, entries)
        replaced = await self.plan_feature_repo.replace_all_for_plan(plan_id, rows)
        logger.info("Plan %s now has %d entitlements", plan_id, len(replaced))
        return replaced

    async def copy_plan_entitlements(
        self, source_plan_id: str, target_plan_id: str, overwrite: bool = False
    ) -> list[PlanFeatureRead]:
        """Copy entitlements between plans.

        ``overwrite=True`` makes the target an exact copy of the source.
        Otherwise only features missing from the target are added and the
        newly created rows are returned.
        """

        await self._require_plan(source_plan_id)
        await self._require_plan(target_plan_id)

        source_rows = await self.plan_feature_repo.find_by_plan_id(source_plan_id)
        if not source_rows:
            raise ValidationFailedError(
                "Source plan has no feature entitlements to copy",
                ErrorCode.NO_FEATURES_TO_COPY,
                details={"plan_id": source_plan_id},
            )

        if overwrite:
            # stored rows are copied as they are, even if a schema changed since
            await self._require_features(row.feature_id for row in source_rows)
            rows = [
                PlanFeatureCreate(
                    plan_id=target_plan_id,
                    feature_id=row.feature_id,
                    is_enabled=row.is_enabled,
                    value=row.value,
                )
                for row in source_rows
            ]
            replaced = await self.plan_feature_repo.replace_all_for_plan(
                target_plan_id, rows
            )
            logger.info(
                "Copied %d entitlements from plan %s over %s",
                len(replaced),
                source_plan_id,
                target_plan_id,
            )
            return replaced

        target_rows = await self.plan_feature_repo.find_by_plan_id(target_plan_id)
        present = {row.feature_id for row in target_rows}
        additions = [
            PlanFeatureCreate(
                plan_id=target_plan_id,
                feature_id=row.feature_id,
                is_enabled=row.is_enabled,
                value=row.value,
            )
            for row in source_rows
            if row.feature_id not in present
        ]
        if not additions:
            logger.info("Plan %s already has every feature of %s", target_plan_id, source_plan_id)
            return []

        created = await self.plan_feature_repo.create_many(additions)
        logger.info(
            "Merged %d entitlements from plan %s into %s",
            len(created),
            source_plan_id,
            target_plan_id,
        )
        return created

    # Derived views

    async def get_entitlement_matrix(
        self,
        *,
        plan_ids: Optional[Sequence[str]] = None,
        feature_ids: Optional[Sequence[str]] = None,
        is_enabled: Optional[bool] = None,
    ) -> list[EntitlementMatrixRow]:
        """Pivot entitlement rows into one row per feature."""

        entries = await self.plan_feature_repo.get_entitlement_matrix(
            plan_ids=plan_ids, feature_ids=feature_ids, is_enabled=is_enabled
        )
        rows: Dict[str, EntitlementMatrixRow] = {}
        for entry in entries:
            feature_id = entry.plan_feature.feature_id
            row = rows.get(feature_id)
            if row is None:
                row = rows[feature_id] = EntitlementMatrixRow(
                    feature_id=feature_id,
                    feature_name=entry.feature_name,
                    feature_key_name=entry.feature_key_name,
                )
            row.plans.append(
                MatrixPlanEntry(
                    plan_id=entry.plan_feature.plan_id,
                    plan_name=entry.plan_name,
                    is_enabled=entry.plan_feature.is_enabled,
                    value=entry.plan_feature.value,
                )
            )
        return list(rows.values())

    async def get_plan_entitlement_summary(self, plan_id: str) -> PlanEntitlementSummary:
        plan = await self._require_plan(plan_id)
        rows = await self.plan_feature_repo.find_by_plan_id(plan_id)
        features = {
            feature.feature_id: feature
            for feature in await self.feature_repo.find_by_ids(
                row.feature_id for row in rows
            )
        }

        by_category: Dict[str, CategoryBreakdown] = defaultdict(CategoryBreakdown)
        for row in rows:
            feature = features.get(row.feature_id)
            category = (feature.category if feature else None) or UNCATEGORIZED
            by_category[category].total += 1
            if row.is_enabled:
                by_category[category].enabled += 1

        enabled = sum(1 for row in rows if row.is_enabled)
        return PlanEntitlementSummary(
            plan_id=plan.plan_id,
            plan_name=plan.name,
            total_features=len(rows),
            enabled_features=enabled,
            disabled_features=len(rows) - enabled,
            features_with_values=sum(1 for row in rows if row.has_value),
            features_by_category=dict(by_category),
        )

    async def get_entitlement_analytics(self) -> EntitlementAnalytics:
        rows = await self.plan_feature_repo.find_all()
        plans = await self.plan_repo.find_all()
        features = await self.feature_repo.find_all()

        per_plan: Counter = Counter()
        per_plan_enabled: Counter = Counter()
        per_feature: Counter = Counter()
        per_feature_enabled: Counter = Counter()
        for row in rows:
            per_plan[row.plan_id] += 1
            per_feature[row.feature_id] += 1
            if row.is_enabled:
                per_plan_enabled[row.plan_id] += 1
                per_feature_enabled[row.feature_id] += 1

        enabled = sum(per_plan_enabled.values())
        return EntitlementAnalytics(
            total_relationships=len(rows),
            enabled_relationships=enabled,
            disabled_relationships=len(rows) - enabled,
            relationships_with_values=sum(1 for row in rows if row.has_value),
            plan_coverage=[
                PlanCoverage(
                    plan_id=plan.plan_id,
                    plan_name=plan.name,
                    feature_count=per_plan[plan.plan_id],
                    enabled_count=per_plan_enabled[plan.plan_id],
                    coverage_percent=_percent(
                        per_plan_enabled[plan.plan_id], per_plan[plan.plan_id]
                    ),
                )
                for plan in plans
            ],
            feature_adoption=[
                FeatureAdoption(
                    feature_id=feature.feature_id,
                    feature_name=feature.display_name,
                    plan_count=per_feature[feature.feature_id],
                    enabled_count=per_feature_enabled[feature.feature_id],
                    adoption_percent=_percent(
                        per_feature_enabled[feature.feature_id],
                        per_feature[feature.feature_id],
                    ),
                )
                for feature in features
            ],
        )

    async def get_missing_features_for_plan(self, plan_id: str) -> list[MissingFeature]:
        """Catalog features, active or not, that the plan has no row for."""

        await self._require_plan(plan_id)
        assigned = {
            row.feature_id for row in await self.plan_feature_repo.find_by_plan_id(plan_id)
        }
        return [
            MissingFeature(
                feature_id=feature.feature_id,
                feature_name=feature.display_name,
                feature_key_name=feature.key_name,
                feature_category=feature.category,
                is_active=feature.is_active,
            )
            for feature in await self.feature_repo.find_all()
            if feature.feature_id not in assigned
        ]

    # Helpers

    async def _bulk_update_atomic(
        self, updates: Sequence[Union[BulkUpdateItem, Mapping[str, Any]]]
    ) -> list[PlanFeatureRead]:
        for update in updates:
            _reject_non_object(_raw_value(update))
        items = [parse_payload(BulkUpdateItem, update) for update in updates]

        valued = [item for item in items if item.value is not None]
        if valued:
            rows = {}
            for item in valued:
                rows[item.plan_feature_id] = await self.get_plan_feature(
                    item.plan_feature_id
                )
            features = await self._require_features(
                row.feature_id for row in rows.values()
            )
            for item in valued:
                row = rows[item.plan_feature_id]
                self._check_value(item.value, features[row.feature_id])

        return await self.plan_feature_repo.update_many(items)

    async def _prepare_entries(
        self, plan_id: str, entries: Sequence[EntryInput]
    ) -> List[PlanFeatureCreate]:
        """Validate replacement entries before anything is written."""

        for entry in entries:
            _reject_non_object(_raw_value(entry))
        parsed = [parse_payload(PlanFeatureEntry, entry) for entry in entries]
        features = await self._require_features(entry.feature_id for entry in parsed)

        rows = []
        for entry in parsed:
            value = entry.value or {}
            self._check_value(value, features[entry.feature_id])
            rows.append(
                PlanFeatureCreate(
                    plan_id=plan_id,
                    feature_id=entry.feature_id,
                    is_enabled=entry.is_enabled,
                    value=value,
                )
            )
        return rows

    async def _require_plan(self, plan_id: str) -> PlanRead:
        plan = await self.plan_repo.find_by_id(plan_id)
        if plan is None:
            raise NotFoundError(
                f"Plan with ID {plan_id} not found",
                ErrorCode.PLAN_NOT_FOUND,
                details={"plan_id": plan_id},
            )
        return plan

    async def _require_feature(self, feature_id: str) -> FeatureRead:
        feature = await self.feature_repo.find_by_id(feature_id)
        if feature is None:
            raise NotFoundError(
                f"Feature with ID {feature_id} not found",
                ErrorCode.FEATURE_NOT_FOUND,
                details={"feature_id": feature_id},
            )
        return feature

    async def _require_plans(self, plan_ids: Iterable[str]) -> Dict[str, PlanRead]:
        wanted = set(plan_ids)
        found = {plan.plan_id: plan for plan in await self.plan_repo.find_by_ids(wanted)}
        missing = sorted(wanted - set(found))
        if missing:
            raise NotFoundError(
                f"Plans not found: {', '.join(missing)}",
                ErrorCode.PLAN_NOT_FOUND,
                details={"plan_ids": missing},
            )
        return found

    async def _require_features(
        self, feature_ids: Iterable[str]
    ) -> Dict[str, FeatureRead]:
        wanted = set(feature_ids)
        found = {
            feature.feature_id: feature
            for feature in await self.feature_repo.find_by_ids(wanted)
        }
        missing = sorted(wanted - set(found))
        if missing:
            raise NotFoundError(
                f"Features not found: {', '.join(missing)}",
                ErrorCode.FEATURE_NOT_FOUND,
                details={"feature_ids": missing},
            )
        return found

    @staticmethod
    def _check_value(value: Dict[str, Any], feature: FeatureRead) -> None:
        if feature.is_boolean:
            return
        problems = schema_violations(value, feature.validation_schema)
        if problems:
            raise ValidationFailedError(
                f"Value does not match the schema of feature '{feature.key_name}'",
                ErrorCode.INVALID_VALUE,
                details={"feature_id": feature.feature_id, "problems": problems},
            )
