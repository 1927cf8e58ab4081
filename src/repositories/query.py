"""Shared pagination and ordering helpers for list queries."""
from __future__ import annotations

from typing import Collection

from sqlalchemy import Select

from src.core.config import settings
from src.core.exceptions import ErrorCode, ValidationFailedError


def apply_ordering(
    stmt: Select,
    model,
    sort_by: str,
    sort_order: str,
    allowed: Collection[str],
) -> Select:
    if sort_by not in allowed:
        raise ValidationFailedError(
            f"Invalid sort field: {sort_by}",
            ErrorCode.INVALID_SORT_FIELD,
            details={"allowed": sorted(allowed)},
        )
    column = getattr(model, sort_by)
    return stmt.order_by(column.desc() if sort_order == "desc" else column.asc())


def apply_paging(stmt: Select, page: int, limit: int | None) -> Select:
    limit = limit or settings.pagination.default_limit
    limit = max(1, min(limit, settings.pagination.max_limit))
    page = max(page, 1)
    return stmt.offset((page - 1) * limit).limit(limit)
