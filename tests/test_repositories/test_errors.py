from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from src.core.exceptions import ErrorCode
from src.repositories.errors import is_unique_violation, violated_constraint
from src.repositories.plan_repo import _plan_conflict

POSTGRES_NAME_CONFLICT = (
    "<class 'asyncpg.exceptions.UniqueViolationError'>: duplicate key value "
    'violates unique constraint "uq_plans_name"\n'
    "DETAIL:  Key (name)=(slug plus) already exists."
)


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT INTO plans", {}, Exception(message))


def test_constraint_is_read_from_the_first_line_only():
    exc = _integrity_error(POSTGRES_NAME_CONFLICT)

    assert is_unique_violation(exc)
    assert violated_constraint(exc, "uq_plans_slug", "plans.slug") is None
    assert violated_constraint(exc, "uq_plans_name") == "uq_plans_name"


def test_plan_name_containing_slug_is_a_name_conflict():
    conflict = _plan_conflict(_integrity_error(POSTGRES_NAME_CONFLICT))

    assert conflict.code is ErrorCode.PLAN_NAME_EXISTS


def test_plan_slug_conflicts_are_recognised_on_both_backends():
    postgres = _integrity_error(
        'duplicate key value violates unique constraint "uq_plans_slug"\n'
        "DETAIL:  Key (slug)=(pro) already exists."
    )
    sqlite = _integrity_error("UNIQUE constraint failed: plans.slug")

    assert _plan_conflict(postgres).code is ErrorCode.PLAN_SLUG_EXISTS
    assert _plan_conflict(sqlite).code is ErrorCode.PLAN_SLUG_EXISTS
    assert (
        _plan_conflict(_integrity_error("UNIQUE constraint failed: plans.name")).code
        is ErrorCode.PLAN_NAME_EXISTS
    )
