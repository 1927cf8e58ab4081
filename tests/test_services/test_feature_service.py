from __future__ import annotations

import pytest

from src.core.exceptions import ConflictError, ErrorCode, NotFoundError, ValidationFailedError
from src.schemas.feature import DeleteOutcome
from src.schemas.plan_feature import PlanFeatureCreate


async def _assign(plan_feature_repo, plan, *features, enabled=True):
    await plan_feature_repo.create_many(
        [
            PlanFeatureCreate(
                plan_id=plan.plan_id, feature_id=feature.feature_id, is_enabled=enabled
            )
            for feature in features
        ]
    )


@pytest.mark.asyncio
async def test_create_feature_and_lookup_by_key(feature_service):
    feature = await feature_service.create_feature(
        {
            "key_name": "max_projects",
            "display_name": " Max Projects ",
            "category": "Limits",
            "is_boolean": False,
            "default_value": {"limit": 3},
        }
    )

    assert feature.display_name == "Max Projects"
    assert feature.default_value == {"limit": 3}
    found = await feature_service.get_feature_by_key_name("max_projects")
    assert found.feature_id == feature.feature_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"key_name": "Has Spaces", "display_name": "Bad"},
        {"key_name": "ok_key", "display_name": "   "},
        {"key_name": "ok_key", "display_name": "Long", "category": "x" * 101},
        {"key_name": "ok_key", "display_name": "Long", "description": "x" * 501},
    ],
)
async def test_create_feature_rejects_invalid_input(feature_service, payload):
    with pytest.raises(ValidationFailedError) as exc_info:
        await feature_service.create_feature(payload)
    assert exc_info.value.code is ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_create_feature_rejects_duplicate_key(feature_service, make_feature):
    await make_feature("sso")

    with pytest.raises(ConflictError) as exc_info:
        await feature_service.create_feature({"key_name": "sso", "display_name": "SSO"})
    assert exc_info.value.code is ErrorCode.DUPLICATE_KEY_NAME


@pytest.mark.asyncio
async def test_get_missing_feature_raises(feature_service):
    with pytest.raises(NotFoundError) as exc_info:
        await feature_service.get_feature("missing")
    assert exc_info.value.code is ErrorCode.FEATURE_NOT_FOUND


@pytest.mark.asyncio
async def test_update_feature_merges_fields(feature_service, make_feature):
    feature = await make_feature("sso", category="Security", description="Single sign-on")

    updated = await feature_service.update_feature(
        feature.feature_id, {"display_name": "SAML SSO"}
    )

    assert updated.display_name == "SAML SSO"
    assert updated.category == "Security"
    assert updated.description == "Single sign-on"

    deactivated = await feature_service.deactivate_feature(feature.feature_id)
    assert deactivated.is_active is False
    assert (await feature_service.activate_feature(feature.feature_id)).is_active


@pytest.mark.asyncio
async def test_list_features_filters(feature_service, make_feature):
    await make_feature("sso", display_name="Single Sign-On", category="Security")
    await make_feature("audit_log", display_name="Audit Log", category="Security")
    await make_feature("seats", display_name="Seats", is_boolean=False)
    await make_feature("legacy_api", display_name="Legacy API", is_active=False)

    listed = await feature_service.list_features()
    assert [f.display_name for f in listed] == [
        "Audit Log",
        "Legacy API",
        "Seats",
        "Single Sign-On",
    ]

    security = await feature_service.list_features(category="Security")
    assert {f.key_name for f in security} == {"sso", "audit_log"}

    limits = await feature_service.list_features(is_boolean=False)
    assert [f.key_name for f in limits] == ["seats"]

    assert await feature_service.count_features(is_active=True) == 3
    assert [f.key_name for f in await feature_service.list_features(search="legacy")] == [
        "legacy_api"
    ]
    assert await feature_service.get_feature_categories() == ["Security"]
    assert len(await feature_service.get_active_features()) == 3
    assert len(await feature_service.get_features_by_category("Security")) == 2

    with pytest.raises(ValidationFailedError) as exc_info:
        await feature_service.list_features(sort_by="default_value")
    assert exc_info.value.code is ErrorCode.INVALID_SORT_FIELD


@pytest.mark.asyncio
async def test_delete_unreferenced_feature_is_hard_delete(feature_service, make_feature):
    feature = await make_feature("sso")

    outcome = await feature_service.delete_feature(feature.feature_id)

    assert outcome is DeleteOutcome.DELETED
    with pytest.raises(NotFoundError):
        await feature_service.get_feature(feature.feature_id)


@pytest.mark.asyncio
async def test_delete_referenced_feature_deactivates_it(
    feature_service, plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature("sso")
    await _assign(plan_feature_repo, plan, feature)

    outcome = await feature_service.delete_feature(feature.feature_id)

    assert outcome is DeleteOutcome.DEACTIVATED
    reloaded = await feature_service.get_feature(feature.feature_id)
    assert reloaded.is_active is False
    assert await plan_feature_repo.count(feature_ids=[feature.feature_id]) == 1


@pytest.mark.asyncio
async def test_hard_delete_of_referenced_feature_is_rejected(
    feature_service, plan_feature_repo, make_plan, make_feature
):
    plan = await make_plan()
    feature = await make_feature("sso")
    await _assign(plan_feature_repo, plan, feature)

    with pytest.raises(ConflictError) as exc_info:
        await feature_service.delete_feature(feature.feature_id, hard=True)
    assert exc_info.value.code is ErrorCode.FEATURE_IN_USE
    assert (await feature_service.get_feature(feature.feature_id)).is_active is True


@pytest.mark.asyncio
async def test_duplicate_feature(feature_service, make_feature):
    source = await make_feature(
        "seats",
        display_name="Seats",
        is_boolean=False,
        default_value={"limit": 5},
        validation_schema={"type": "object"},
    )

    copy = await feature_service.duplicate_feature(source.feature_id, "seats_v2")

    assert copy.key_name == "seats_v2"
    assert copy.display_name == "Seats (Copy)"
    assert copy.default_value == {"limit": 5}
    assert copy.validation_schema == {"type": "object"}

    with pytest.raises(ConflictError):
        await feature_service.duplicate_feature(source.feature_id, "seats_v2")


@pytest.mark.asyncio
async def test_bulk_update_category(feature_service, make_feature):
    sso = await make_feature("sso")
    audit = await make_feature("audit_log")

    assert await feature_service.bulk_update_feature_category(
        [sso.feature_id, audit.feature_id], "Security"
    ) == 2
    assert len(await feature_service.get_features_by_category("Security")) == 2

    with pytest.raises(NotFoundError):
        await feature_service.bulk_update_feature_category(
            [sso.feature_id, "missing"], "Compliance"
        )
    assert (await feature_service.get_feature(sso.feature_id)).category == "Security"


@pytest.mark.asyncio
async def test_usage_unassigned_and_stats(
    feature_service, plan_feature_repo, make_plan, make_feature
):
    starter = await make_plan("Starter")
    pro = await make_plan("Pro")
    sso = await make_feature("sso", category="Security")
    audit = await make_feature("audit_log", category="Security")
    webhooks = await make_feature("webhooks", is_active=False)
    await _assign(plan_feature_repo, starter, sso)
    await _assign(plan_feature_repo, pro, sso, audit)

    usage = await feature_service.get_feature_usage(sso.feature_id)
    assert {row.plan_id for row in usage} == {starter.plan_id, pro.plan_id}

    unassigned = await feature_service.get_unassigned_features()
    assert [feature.feature_id for feature in unassigned] == [webhooks.feature_id]

    stats = await feature_service.get_feature_stats()
    assert stats.total_features == 3
    assert stats.active_features == 2
    assert stats.inactive_features == 1
    assert stats.category_counts == {"Security": 2, "Uncategorized": 1}
    assert stats.features_without_plans == 1
    assert [(item.feature_id, item.plan_count) for item in stats.most_used_features] == [
        (sso.feature_id, 2),
        (audit.feature_id, 1),
    ]
