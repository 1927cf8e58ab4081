"""Translation of driver exceptions into domain errors."""
from __future__ import annotations

import logging
from typing import NoReturn

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.core.exceptions import StorageError

logger = logging.getLogger(__name__)


def _driver_message(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc).lower()


def is_unique_violation(exc: IntegrityError) -> bool:
    message = _driver_message(exc)
    return "unique" in message or "duplicate key" in message


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    return "foreign key" in _driver_message(exc)


def violated_constraint(exc: IntegrityError, *markers: str) -> str | None:
    """Return the first marker naming the violated constraint, if any.

    PostgreSQL names the constraint (``uq_plans_slug``) on the first line and
    echoes the offending values in a DETAIL line; SQLite reports
    ``table.column``. Only the first line is searched so that user data in
    the DETAIL cannot match.
    """

    headline = next(iter(_driver_message(exc).splitlines()), "")
    for marker in markers:
        if marker in headline:
            return marker
    return None


def raise_storage_error(exc: SQLAlchemyError, operation: str) -> NoReturn:
    logger.error("Database error during %s: %s", operation, exc)
    raise StorageError(
        f"Database error during {operation}",
        details={"operation": operation},
    ) from exc
