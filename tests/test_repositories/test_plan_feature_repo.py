from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ValidationFailedError,
)
from src.schemas.plan_feature import BulkUpdateItem, PlanFeatureCreate, PlanFeatureUpdate


def _row(plan_id: str, feature_id: str, is_enabled: bool = True, value=None):
    return PlanFeatureCreate(
        plan_id=plan_id, feature_id=feature_id, is_enabled=is_enabled, value=value or {}
    )


@pytest.mark.asyncio
async def test_create_rejects_duplicate_pair_at_storage_level(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()

    created = await plan_feature_repo.create(_row(plan.plan_id, feature.feature_id))
    assert created.value == {}

    with pytest.raises(ConflictError) as exc_info:
        await plan_feature_repo.create(_row(plan.plan_id, feature.feature_id, False))
    assert exc_info.value.code is ErrorCode.PLAN_FEATURE_ALREADY_EXISTS

    stored = await plan_feature_repo.find_by_plan_id(plan.plan_id)
    assert [row.is_enabled for row in stored] == [True]


@pytest.mark.asyncio
async def test_create_with_unknown_feature_maps_to_not_found(plan_feature_repo, make_plan):
    plan = await make_plan()

    with pytest.raises(NotFoundError):
        await plan_feature_repo.create(_row(plan.plan_id, "missing-feature"))


@pytest.mark.asyncio
async def test_create_many_is_all_or_nothing(plan_feature_repo, make_plan, make_feature):
    plan = await make_plan()
    first = await make_feature("sso")
    second = await make_feature("audit_log")
    await plan_feature_repo.create(_row(plan.plan_id, second.feature_id))

    with pytest.raises(ConflictError) as exc_info:
        await plan_feature_repo.create_many(
            [_row(plan.plan_id, first.feature_id), _row(plan.plan_id, second.feature_id)]
        )
    assert exc_info.value.code is ErrorCode.BULK_DUPLICATE_ERROR

    stored = await plan_feature_repo.find_by_plan_id(plan.plan_id)
    assert {row.feature_id for row in stored} == {second.feature_id}


@pytest.mark.asyncio
async def test_create_many_rejects_in_batch_duplicates(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()

    with pytest.raises(ConflictError) as exc_info:
        await plan_feature_repo.create_many(
            [_row(plan.plan_id, feature.feature_id), _row(plan.plan_id, feature.feature_id)]
        )
    assert exc_info.value.code is ErrorCode.DUPLICATE_IN_BATCH
    assert await plan_feature_repo.count() == 0


@pytest.mark.asyncio
async def test_create_many_validates_every_entry_first(plan_feature_repo, make_plan):
    plan = await make_plan()

    with pytest.raises(ValidationFailedError) as exc_info:
        await plan_feature_repo.create_many(
            [
                {"plan_id": plan.plan_id, "feature_id": "f1", "is_enabled": True},
                {"plan_id": plan.plan_id, "is_enabled": "not-a-bool"},
            ]
        )
    assert exc_info.value.code is ErrorCode.BULK_VALIDATION_ERROR
    assert exc_info.value.details["failures"][0]["index"] == 1


@pytest.mark.asyncio
async def test_create_many_with_empty_batch_returns_empty_list(plan_feature_repo):
    assert await plan_feature_repo.create_many([]) == []


@pytest.mark.asyncio
async def test_update_changes_only_supplied_fields(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()
    row = await plan_feature_repo.create(
        _row(plan.plan_id, feature.feature_id, True, {"limit": 5})
    )

    updated = await plan_feature_repo.update(
        row.plan_feature_id, PlanFeatureUpdate(is_enabled=False)
    )

    assert updated.is_enabled is False
    assert updated.value == {"limit": 5}


@pytest.mark.asyncio
async def test_update_many_rolls_back_when_any_id_is_missing(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()
    row = await plan_feature_repo.create(_row(plan.plan_id, feature.feature_id))

    with pytest.raises(NotFoundError) as exc_info:
        await plan_feature_repo.update_many(
            [
                BulkUpdateItem(plan_feature_id=row.plan_feature_id, is_enabled=False),
                BulkUpdateItem(plan_feature_id="missing", is_enabled=False),
            ]
        )
    assert exc_info.value.code is ErrorCode.PLAN_FEATURE_NOT_FOUND

    reloaded = await plan_feature_repo.find_by_id(row.plan_feature_id)
    assert reloaded.is_enabled is True


@pytest.mark.asyncio
async def test_replace_all_rolls_back_when_an_insert_fails(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()
    original = await plan_feature_repo.create(
        _row(plan.plan_id, feature.feature_id, True, {"seats": 3})
    )

    with pytest.raises(NotFoundError):
        await plan_feature_repo.replace_all_for_plan(
            plan.plan_id,
            [_row(plan.plan_id, feature.feature_id), _row(plan.plan_id, "no-such-feature")],
        )

    stored = await plan_feature_repo.find_by_plan_id(plan.plan_id)
    assert [(row.plan_feature_id, row.value) for row in stored] == [
        (original.plan_feature_id, {"seats": 3})
    ]


@pytest.mark.asyncio
async def test_replace_all_rejects_rows_for_other_plans(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan("Starter")
    other = await make_plan("Pro")
    feature = await make_feature()

    with pytest.raises(ValidationFailedError) as exc_info:
        await plan_feature_repo.replace_all_for_plan(
            plan.plan_id, [_row(other.plan_id, feature.feature_id)]
        )
    assert exc_info.value.code is ErrorCode.PLAN_ID_MISMATCH


@pytest.mark.asyncio
async def test_replace_all_with_empty_list_clears_plan(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature()
    await plan_feature_repo.create(_row(plan.plan_id, feature.feature_id))

    assert await plan_feature_repo.replace_all_for_plan(plan.plan_id, []) == []
    assert await plan_feature_repo.find_by_plan_id(plan.plan_id) == []


@pytest.mark.asyncio
async def test_bulk_deletes_return_removed_counts(
    plan_feature_repo, make_plan, make_feature
):
    starter = await make_plan("Starter")
    pro = await make_plan("Pro")
    sso = await make_feature("sso")
    audit = await make_feature("audit_log")
    await plan_feature_repo.create_many(
        [
            _row(starter.plan_id, sso.feature_id),
            _row(pro.plan_id, sso.feature_id),
            _row(pro.plan_id, audit.feature_id),
        ]
    )

    assert await plan_feature_repo.delete_by_feature_id(sso.feature_id) == 2
    assert await plan_feature_repo.delete_by_plan_id(pro.plan_id) == 1
    assert await plan_feature_repo.count() == 0


@pytest.mark.asyncio
async def test_find_many_filters_and_rejects_unknown_sort_field(
    plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    sso = await make_feature("sso")
    audit = await make_feature("audit_log")
    await plan_feature_repo.create_many(
        [
            _row(plan.plan_id, sso.feature_id, True),
            _row(plan.plan_id, audit.feature_id, False),
        ]
    )

    enabled = await plan_feature_repo.find_many(plan_ids=[plan.plan_id], is_enabled=True)
    assert [row.feature_id for row in enabled] == [sso.feature_id]
    assert await plan_feature_repo.count(is_enabled=False) == 1

    with pytest.raises(ValidationFailedError) as exc_info:
        await plan_feature_repo.find_many(sort_by="value")
    assert exc_info.value.code is ErrorCode.INVALID_SORT_FIELD


@pytest.mark.asyncio
async def test_entitlement_matrix_is_ordered_by_plan_then_feature(
    plan_feature_repo, make_plan, make_feature
):
    zeta = await make_plan("Zeta")
    alpha = await make_plan("Alpha")
    storage = await make_feature("storage", display_name="Storage")
    api = await make_feature("api_access", display_name="API Access")
    await plan_feature_repo.create_many(
        [
            _row(zeta.plan_id, api.feature_id),
            _row(alpha.plan_id, storage.feature_id),
            _row(alpha.plan_id, api.feature_id, False),
        ]
    )

    entries = await plan_feature_repo.get_entitlement_matrix()

    assert [(entry.plan_name, entry.feature_name) for entry in entries] == [
        ("Alpha", "API Access"),
        ("Alpha", "Storage"),
        ("Zeta", "API Access"),
    ]

    disabled = await plan_feature_repo.get_entitlement_matrix(is_enabled=False)
    assert [entry.feature_key_name for entry in disabled] == ["api_access"]


@pytest.mark.asyncio
async def test_replace_all_maps_unique_violation_to_conflict(
    plan_feature_repo, make_plan, make_feature, monkeypatch
):
    plan = await make_plan()
    feature = await make_feature()
    original = await plan_feature_repo.create(_row(plan.plan_id, feature.feature_id))

    async def _conflicting_flush(self, objects=None):
        # a concurrent writer inserted the same pair after the delete ran
        raise IntegrityError(
            "INSERT INTO plan_features",
            {},
            Exception(
                'duplicate key value violates unique constraint "uq_plan_features_plan_feature"'
            ),
        )

    monkeypatch.setattr(AsyncSession, "flush", _conflicting_flush)

    with pytest.raises(ConflictError) as exc_info:
        await plan_feature_repo.replace_all_for_plan(
            plan.plan_id, [_row(plan.plan_id, feature.feature_id, False)]
        )
    assert exc_info.value.code is ErrorCode.PLAN_FEATURE_ALREADY_EXISTS

    monkeypatch.undo()
    stored = await plan_feature_repo.find_by_plan_id(plan.plan_id)
    assert [(row.plan_feature_id, row.is_enabled) for row in stored] == [
        (original.plan_feature_id, True)
    ]
