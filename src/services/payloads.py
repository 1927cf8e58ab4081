"""Coercion of caller input into validated schema instances."""
from __future__ import annotations

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from src.core.exceptions import ErrorCode, ValidationFailedError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: Type[ModelT], data: Any) -> ModelT:
    """Accept either a schema instance or a mapping of its fields."""

    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        errors = [
            {"loc": list(error["loc"]), "msg": error["msg"]}
            for error in exc.errors(include_url=False)
        ]
        raise ValidationFailedError(
            f"Invalid {model.__name__} payload",
            ErrorCode.VALIDATION_ERROR,
            details={"errors": errors},
        ) from exc
