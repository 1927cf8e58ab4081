from __future__ import annotations

import pytest
from fastapi import status

from src.auth.jwt import create_access_token
from src.core.config import settings

API_PREFIX = f"{settings.API_PREFIX}/v1/admin"


async def _create_plan(client, headers, name: str, **fields) -> dict:
    body = {"name": name, "slug": name.lower().replace(" ", "-"), "price": "19.00"}
    body.update(fields)
    response = await client.post(f"{API_PREFIX}/plans", json=body, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


async def _create_feature(client, headers, key_name: str, **fields) -> dict:
    body = {"key_name": key_name, "display_name": key_name.replace("_", " ").title()}
    body.update(fields)
    response = await client.post(f"{API_PREFIX}/features", json=body, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_admin_routes_require_token(client):
    response = await client.get(f"{API_PREFIX}/plans")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["code"] == "HTTP_ERROR"

    invalid = await client.get(
        f"{API_PREFIX}/plans", headers={"Authorization": "Bearer not-a-token"}
    )
    assert invalid.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_admin_routes_require_admin_role(client):
    token = create_access_token("viewer@example.com", role="viewer")

    response = await client.get(
        f"{API_PREFIX}/features", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["message"] == "Admin privileges required"


@pytest.mark.asyncio
async def test_plan_crud_flow(client, admin_headers):
    plan = await _create_plan(client, admin_headers, "Pro", billing_interval="monthly")
    assert plan["slug"] == "pro"
    assert plan["is_active"] is True

    listed = await client.get(f"{API_PREFIX}/plans", headers=admin_headers)
    assert listed.json()["total"] == 1

    by_slug = await client.get(f"{API_PREFIX}/plans/slug/pro", headers=admin_headers)
    assert by_slug.json()["plan_id"] == plan["plan_id"]

    updated = await client.put(
        f"{API_PREFIX}/plans/{plan['plan_id']}",
        json={"description": "For growing teams"},
        headers=admin_headers,
    )
    assert updated.status_code == status.HTTP_200_OK
    assert updated.json()["description"] == "For growing teams"

    deactivated = await client.post(
        f"{API_PREFIX}/plans/{plan['plan_id']}/deactivate", headers=admin_headers
    )
    assert deactivated.json()["is_active"] is False

    deleted = await client.delete(
        f"{API_PREFIX}/plans/{plan['plan_id']}", headers=admin_headers
    )
    assert deleted.json()["removed_entitlements"] == 0

    missing = await client.get(
        f"{API_PREFIX}/plans/{plan['plan_id']}", headers=admin_headers
    )
    assert missing.status_code == status.HTTP_404_NOT_FOUND
    assert missing.json()["code"] == "PLAN_NOT_FOUND"


@pytest.mark.asyncio
async def test_duplicate_plan_name_is_conflict(client, admin_headers):
    await _create_plan(client, admin_headers, "Pro")

    response = await client.post(
        f"{API_PREFIX}/plans",
        json={"name": "Pro", "slug": "pro-2"},
        headers=admin_headers,
    )

    assert response.status_code == status.HTTP_409_CONFLICT
    body = response.json()
    assert body["code"] == "PLAN_NAME_EXISTS"
    assert body["message"]


@pytest.mark.asyncio
async def test_malformed_body_is_validation_error(client, admin_headers):
    response = await client.post(
        f"{API_PREFIX}/plans",
        json={"name": "Pro", "slug": "Not A Slug"},
        headers=admin_headers,
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"]


@pytest.mark.asyncio
async def test_feature_delete_reports_outcome(client, admin_headers):
    plan = await _create_plan(client, admin_headers, "Pro")
    used = await _create_feature(client, admin_headers, "sso")
    unused = await _create_feature(client, admin_headers, "audit_log")
    await client.post(
        f"{API_PREFIX}/plan-features",
        json={"plan_id": plan["plan_id"], "feature_id": used["feature_id"]},
        headers=admin_headers,
    )

    soft = await client.delete(
        f"{API_PREFIX}/features/{used['feature_id']}", headers=admin_headers
    )
    assert soft.json() == {"status": "deactivated"}

    hard = await client.delete(
        f"{API_PREFIX}/features/{used['feature_id']}",
        params={"hard": "true"},
        headers=admin_headers,
    )
    assert hard.status_code == status.HTTP_409_CONFLICT
    assert hard.json()["code"] == "FEATURE_IN_USE"

    gone = await client.delete(
        f"{API_PREFIX}/features/{unused['feature_id']}", headers=admin_headers
    )
    assert gone.json() == {"status": "deleted"}


@pytest.mark.asyncio
async def test_plan_feature_create_and_errors(client, admin_headers):
    plan = await _create_plan(client, admin_headers, "Pro")
    seats = await _create_feature(client, admin_headers, "seats", is_boolean=False)

    created = await client.post(
        f"{API_PREFIX}/plan-features",
        json={
            "plan_id": plan["plan_id"],
            "feature_id": seats["feature_id"],
            "value": {"limit": 25},
        },
        headers=admin_headers,
    )
    assert created.status_code == status.HTTP_201_CREATED
    assert created.json()["value"] == {"limit": 25}

    duplicate = await client.post(
        f"{API_PREFIX}/plan-features",
        json={"plan_id": plan["plan_id"], "feature_id": seats["feature_id"]},
        headers=admin_headers,
    )
    assert duplicate.status_code == status.HTTP_409_CONFLICT
    assert duplicate.json()["code"] == "PLAN_FEATURE_ALREADY_EXISTS"

    not_an_object = await client.post(
        f"{API_PREFIX}/plan-features",
        json={"plan_id": plan["plan_id"], "feature_id": seats["feature_id"], "value": "25"},
        headers=admin_headers,
    )
    assert not_an_object.status_code == status.HTTP_400_BAD_REQUEST
    assert not_an_object.json()["code"] == "INVALID_VALUE"

    unknown_plan = await client.post(
        f"{API_PREFIX}/plan-features",
        json={"plan_id": "missing", "feature_id": seats["feature_id"]},
        headers=admin_headers,
    )
    assert unknown_plan.status_code == status.HTTP_404_NOT_FOUND
    assert unknown_plan.json()["code"] == "PLAN_NOT_FOUND"


@pytest.mark.asyncio
async def test_matrix_summary_and_copy(client, admin_headers):
    basic = await _create_plan(client, admin_headers, "Basic")
    pro = await _create_plan(client, admin_headers, "Pro")
    sso = await _create_feature(client, admin_headers, "sso", category="Security")
    seats = await _create_feature(client, admin_headers, "seats", is_boolean=False)

    replaced = await client.put(
        f"{API_PREFIX}/plan-features/plans/{basic['plan_id']}",
        json={
            "features": [
                {"feature_id": sso["feature_id"], "is_enabled": True},
                {"feature_id": seats["feature_id"], "is_enabled": True, "value": {"limit": 5}},
            ]
        },
        headers=admin_headers,
    )
    assert replaced.status_code == status.HTTP_200_OK
    assert len(replaced.json()) == 2

    copied = await client.post(
        f"{API_PREFIX}/plan-features/copy",
        json={"source_plan_id": basic["plan_id"], "target_plan_id": pro["plan_id"]},
        headers=admin_headers,
    )
    assert copied.status_code == status.HTTP_200_OK
    assert {row["feature_id"] for row in copied.json()} == {
        sso["feature_id"],
        seats["feature_id"],
    }

    matrix = await client.get(f"{API_PREFIX}/plan-features/matrix", headers=admin_headers)
    rows = {row["feature_key_name"]: row for row in matrix.json()}
    assert {entry["plan_name"] for entry in rows["seats"]["plans"]} == {"Basic", "Pro"}
    assert all(entry["value"] == {"limit": 5} for entry in rows["seats"]["plans"])

    summary = await client.get(
        f"{API_PREFIX}/plan-features/plans/{pro['plan_id']}/summary",
        headers=admin_headers,
    )
    body = summary.json()
    assert body["total_features"] == 2
    assert body["features_with_values"] == 1
    assert body["features_by_category"]["Security"] == {"total": 1, "enabled": 1}

    missing = await client.get(
        f"{API_PREFIX}/plan-features/plans/{pro['plan_id']}/missing",
        headers=admin_headers,
    )
    assert missing.json() == []


@pytest.mark.asyncio
async def test_plan_feature_listing_reports_total(client, admin_headers):
    plan = await _create_plan(client, admin_headers, "Pro")
    sso = await _create_feature(client, admin_headers, "sso")
    audit = await _create_feature(client, admin_headers, "audit_log")
    await client.put(
        f"{API_PREFIX}/plan-features/plans/{plan['plan_id']}",
        json={
            "features": [
                {"feature_id": sso["feature_id"], "is_enabled": True},
                {"feature_id": audit["feature_id"], "is_enabled": False},
            ]
        },
        headers=admin_headers,
    )

    page = await client.get(
        f"{API_PREFIX}/plan-features", params={"limit": 1}, headers=admin_headers
    )
    assert page.status_code == status.HTTP_200_OK
    body = page.json()
    assert len(body["items"]) == 1
    assert body["total"] == 2
    assert body["page"] == 1

    enabled = await client.get(
        f"{API_PREFIX}/plan-features",
        params={"is_enabled": "true"},
        headers=admin_headers,
    )
    assert enabled.json()["total"] == 1
