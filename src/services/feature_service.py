"""Feature catalog operations."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Mapping, Optional, Sequence, Union

from src.core.exceptions import ConflictError, ErrorCode, NotFoundError
from src.repositories.feature_repo import FeatureRepo
from src.repositories.plan_feature_repo import PlanFeatureRepo
from src.schemas.feature import (
    DeleteOutcome,
    FeatureCreate,
    FeatureRead,
    FeatureStats,
    FeatureUpdate,
    FeatureUsageCount,
)
from src.schemas.plan_feature import PlanFeatureRead
from src.services.payloads import parse_payload

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
MOST_USED_LIMIT = 10
NULLABLE_FEATURE_FIELDS = frozenset({"description", "category", "validation_schema"})


class FeatureService:
    """Create, query and maintain catalog features."""

    def __init__(
        self, feature_repo: FeatureRepo, plan_feature_repo: PlanFeatureRepo
    ) -> None:
        self.feature_repo = feature_repo
        self.plan_feature_repo = plan_feature_repo

    async def get_feature(self, feature_id: str) -> FeatureRead:
        feature = await self.feature_repo.find_by_id(feature_id)
        if feature is None:
            raise NotFoundError(
                f"Feature with ID {feature_id} not found",
                ErrorCode.FEATURE_NOT_FOUND,
                details={"feature_id": feature_id},
            )
        return feature

    async def get_feature_by_key_name(self, key_name: str) -> FeatureRead:
        feature = await self.feature_repo.find_by_key_name(key_name)
        if feature is None:
            raise NotFoundError(
                f"Feature with key name '{key_name}' not found",
                ErrorCode.FEATURE_NOT_FOUND,
                details={"key_name": key_name},
            )
        return feature

    async def list_features(
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
        return await self.feature_repo.find_many(
            search=search,
            category=category,
            is_active=is_active,
            is_boolean=is_boolean,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    async def count_features(
        self,
        *,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        is_boolean: Optional[bool] = None,
    ) -> int:
        return await self.feature_repo.count(
            search=search, category=category, is_active=is_active, is_boolean=is_boolean
        )

    async def get_features_by_category(self, category: str) -> list[FeatureRead]:
        return await self.feature_repo.find_all(category=category)

    async def get_active_features(self) -> list[FeatureRead]:
        return await self.feature_repo.find_all(is_active=True)

    async def get_feature_categories(self) -> list[str]:
        return await self.feature_repo.get_categories()

    async def create_feature(
        self, data: Union[FeatureCreate, Mapping[str, Any]]
    ) -> FeatureRead:
        payload = parse_payload(FeatureCreate, data)
        await self._ensure_key_available(payload.key_name)
        return await self.feature_repo.create(payload)

    async def update_feature(
        self, feature_id: str, data: Union[FeatureUpdate, Mapping[str, Any]]
    ) -> FeatureRead:
        payload = parse_payload(FeatureUpdate, data)
        current = await self.get_feature(feature_id)

        changes = {
            field: value
            for field, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or field in NULLABLE_FEATURE_FIELDS
        }
        if not changes:
            return current

        key_name = changes.get("key_name")
        if key_name is not None and key_name != current.key_name:
            await self._ensure_key_available(key_name)
        return await self.feature_repo.update(feature_id, changes)

    async def activate_feature(self, feature_id: str) -> FeatureRead:
        return await self.update_feature(feature_id, FeatureUpdate(is_active=True))

    async def deactivate_feature(self, feature_id: str) -> FeatureRead:
        return await self.update_feature(feature_id, FeatureUpdate(is_active=False))

    async def delete_feature(self, feature_id: str, *, hard: bool = False) -> DeleteOutcome:
        """Hard delete when unreferenced, otherwise deactivate.

        With ``hard=True`` a referenced feature raises ``FEATURE_IN_USE``
        instead of being deactivated.
        """

        return await self.feature_repo.delete(feature_id, hard=hard)

    async def duplicate_feature(
        self,
        feature_id: str,
        new_key_name: str,
        new_display_name: Optional[str] = None,
    ) -> FeatureRead:
        source = await self.get_feature(feature_id)
        payload = parse_payload(
            FeatureCreate,
            {
                "key_name": new_key_name,
                "display_name": new_display_name or f"{source.display_name} (Copy)",
                "description": source.description,
                "category": source.category,
                "is_boolean": source.is_boolean,
                "default_value": dict(source.default_value),
                "validation_schema": source.validation_schema,
                "is_active": source.is_active,
            },
        )
        await self._ensure_key_available(payload.key_name)
        duplicate = await self.feature_repo.create(payload)
        logger.info("Feature %s duplicated as %s", feature_id, duplicate.feature_id)
        return duplicate

    async def bulk_update_feature_category(
        self, feature_ids: Sequence[str], category: Optional[str]
    ) -> int:
        if not feature_ids:
            return 0
        category = parse_payload(FeatureUpdate, {"category": category}).category
        return await self.feature_repo.update_category_many(feature_ids, category)

    async def get_feature_usage(self, feature_id: str) -> list[PlanFeatureRead]:
        """Entitlement rows referencing the feature."""

        await self.get_feature(feature_id)
        return await self.plan_feature_repo.find_by_feature_id(feature_id)

    async def get_unassigned_features(self) -> list[FeatureRead]:
        usage = await self.feature_repo.usage_counts()
        return [
            feature
            for feature in await self.feature_repo.find_all()
            if not usage.get(feature.feature_id)
        ]

    async def get_feature_stats(self) -> FeatureStats:
        features = await self.feature_repo.find_all()
        usage = await self.feature_repo.usage_counts()

        active = sum(1 for feature in features if feature.is_active)
        categories = Counter(feature.category or UNCATEGORIZED for feature in features)
        ranked = sorted(
            (feature for feature in features if usage.get(feature.feature_id)),
            key=lambda feature: (-usage[feature.feature_id], feature.display_name),
        )

        return FeatureStats(
            total_features=len(features),
            active_features=active,
            inactive_features=len(features) - active,
            category_counts=dict(categories),
            features_without_plans=sum(
                1 for feature in features if not usage.get(feature.feature_id)
            ),
            most_used_features=[
                FeatureUsageCount(
                    feature_id=feature.feature_id,
                    feature_name=feature.display_name,
                    plan_count=usage[feature.feature_id],
                )
                for feature in ranked[:MOST_USED_LIMIT]
            ],
        )

    async def _ensure_key_available(self, key_name: str) -> None:
        if await self.feature_repo.find_by_key_name(key_name) is not None:
            raise ConflictError(
                f"Feature with key name '{key_name}' already exists",
                ErrorCode.DUPLICATE_KEY_NAME,
                details={"key_name": key_name},
            )
