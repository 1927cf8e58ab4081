"""Best-effort structural checks of entitlement values against a feature schema.

Only a small subset of JSON Schema keywords is understood: ``type``,
``properties``, ``required``, ``enum``, ``minimum``/``maximum``,
``minLength``/``maxLength`` and ``additionalProperties: false``. Unknown
keywords are ignored.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

_TYPE_CHECKS = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "null": lambda v: v is None,
}


def _matches_type(value: Any, expected: Any) -> bool:
    types = expected if isinstance(expected, list) else [expected]
    for name in types:
        check = _TYPE_CHECKS.get(name)
        if check is None or check(value):
            return True
    return False


def _check(value: Any, schema: Mapping[str, Any], path: str, problems: List[str]) -> None:
    expected = schema.get("type")
    if expected is not None and not _matches_type(value, expected):
        problems.append(f"{path}: expected {expected}")
        return

    enum = schema.get("enum")
    if isinstance(enum, list) and value not in enum:
        problems.append(f"{path}: must be one of {enum}")

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        minimum = schema.get("minimum")
        maximum = schema.get("maximum")
        if isinstance(minimum, (int, float)) and value < minimum:
            problems.append(f"{path}: must be >= {minimum}")
        if isinstance(maximum, (int, float)) and value > maximum:
            problems.append(f"{path}: must be <= {maximum}")

    if isinstance(value, str):
        min_length = schema.get("minLength")
        max_length = schema.get("maxLength")
        if isinstance(min_length, int) and len(value) < min_length:
            problems.append(f"{path}: shorter than {min_length}")
        if isinstance(max_length, int) and len(value) > max_length:
            problems.append(f"{path}: longer than {max_length}")

    if isinstance(value, dict):
        properties = schema.get("properties")
        properties = properties if isinstance(properties, dict) else {}
        for name in schema.get("required") or []:
            if name not in value:
                problems.append(f"{path}.{name}: is required")
        for name, item in value.items():
            sub_schema = properties.get(name)
            if isinstance(sub_schema, dict):
                _check(item, sub_schema, f"{path}.{name}", problems)
            elif schema.get("additionalProperties") is False:
                problems.append(f"{path}.{name}: is not allowed")


def schema_violations(
    value: Dict[str, Any], schema: Optional[Mapping[str, Any]]
) -> List[str]:
    """Return human readable problems; an empty list means the value conforms."""

    if not schema:
        return []
    problems: List[str] = []
    _check(value, schema, "value", problems)
    return problems
