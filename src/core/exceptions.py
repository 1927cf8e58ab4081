"""Typed domain errors raised by the entitlement services."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable machine-readable error identifiers."""

    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    FEATURE_NOT_FOUND = "FEATURE_NOT_FOUND"
    PLAN_FEATURE_NOT_FOUND = "PLAN_FEATURE_NOT_FOUND"

    PLAN_FEATURE_ALREADY_EXISTS = "PLAN_FEATURE_ALREADY_EXISTS"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"
    BULK_DUPLICATE_ERROR = "BULK_DUPLICATE_ERROR"
    PLAN_NAME_EXISTS = "PLAN_NAME_EXISTS"
    PLAN_SLUG_EXISTS = "PLAN_SLUG_EXISTS"
    DUPLICATE_KEY_NAME = "DUPLICATE_KEY_NAME"
    FEATURE_IN_USE = "FEATURE_IN_USE"
    PLAN_HAS_FEATURES = "PLAN_HAS_FEATURES"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    BULK_VALIDATION_ERROR = "BULK_VALIDATION_ERROR"
    BULK_UPDATE_VALIDATION_ERROR = "BULK_UPDATE_VALIDATION_ERROR"
    NO_FEATURES_TO_COPY = "NO_FEATURES_TO_COPY"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_SORT_FIELD = "INVALID_SORT_FIELD"
    PLAN_ID_MISMATCH = "PLAN_ID_MISMATCH"

    DATABASE_ERROR = "DATABASE_ERROR"


class EntitlementError(Exception):
    """Base class for every recoverable domain error."""

    status_code: int = 400
    default_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<{type(self).__name__} {self.code.value}: {self.message}>"


class NotFoundError(EntitlementError):
    """A referenced plan, feature, or entitlement does not exist."""

    status_code = 404


class ConflictError(EntitlementError):
    """A uniqueness or reference rule blocks the write."""

    status_code = 409


class ValidationFailedError(EntitlementError):
    """Input was rejected before reaching storage."""

    status_code = 400


class StorageError(EntitlementError):
    """The database failed for a reason other than a constraint."""

    status_code = 503
    default_code = ErrorCode.DATABASE_ERROR
