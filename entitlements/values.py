"""Type checks for system feature values and character limits.

Each check returns a reason string when the value is rejected and ``None``
when it is accepted, so callers can collect every problem before failing.
"""

from __future__ import annotations

from typing import Any

from .constants import (
    CUSTOM_VALUE_MAX_LENGTH,
    FEATURE_TYPE_BOOLEAN,
    FEATURE_TYPE_LIMIT,
    FEATURE_TYPE_LIST,
    LIMIT_MAX,
    PRIORITY_MAX,
    PRIORITY_MIN,
    RATE_LIMIT_MAX,
    RATE_LIMIT_MIN,
    UNLIMITED,
)


def is_unlimited(value: Any) -> bool:
    return isinstance(value, str) and value == UNLIMITED


def is_strict_int(value: Any) -> bool:
    # bool is a subclass of int and must not pass as a number
    return isinstance(value, int) and not isinstance(value, bool)


def flag_error(value: Any) -> str | None:
    if not isinstance(value, bool):
        return "must be true or false"
    return None


def limit_error(value: Any) -> str | None:
    if is_unlimited(value):
        return None
    if not is_strict_int(value):
        return f"must be a non-negative integer or '{UNLIMITED}'"
    if value < 0:
        return f"must be non-negative or '{UNLIMITED}'"
    if value > LIMIT_MAX:
        return f"must be at most {LIMIT_MAX} or '{UNLIMITED}'"
    return None


def bounded_int_error(value: Any, low: int, high: int) -> str | None:
    if not is_strict_int(value):
        return "must be an integer"
    if not low <= value <= high:
        return f"must be between {low} and {high}"
    return None


def priority_error(value: Any) -> str | None:
    return bounded_int_error(value, PRIORITY_MIN, PRIORITY_MAX)


def rate_limit_error(value: Any) -> str | None:
    return bounded_int_error(value, RATE_LIMIT_MIN, RATE_LIMIT_MAX)


def custom_value_error(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return "must be a string or null"
    if len(value.strip()) > CUSTOM_VALUE_MAX_LENGTH:
        return f"must be at most {CUSTOM_VALUE_MAX_LENGTH} characters"
    return None


def clean_custom_value(value: str | None) -> str | None:
    """Blank labels are stored as no label."""
    if value is None:
        return None
    return value.strip() or None


def token_list_error(value: Any, allowed_values: list[str] | None = None) -> str | None:
    if not isinstance(value, list) or not all(isinstance(token, str) for token in value):
        return "must be a list of strings"
    if len(set(value)) != len(value):
        return "must not contain duplicate tokens"
    if allowed_values is not None:
        unknown = [token for token in value if token not in allowed_values]
        if unknown:
            return f"contains tokens outside the allowed values: {', '.join(unknown)}"
    return None


def feature_value_error(feature_type: str, value: Any, allowed_values: list[str] | None = None) -> str | None:
    if feature_type == FEATURE_TYPE_BOOLEAN:
        return flag_error(value)
    if feature_type == FEATURE_TYPE_LIMIT:
        return limit_error(value)
    if feature_type == FEATURE_TYPE_LIST:
        return token_list_error(value, allowed_values)
    return f"unsupported feature type '{feature_type}'"


def default_for_type(feature_type: str) -> Any:
    if feature_type == FEATURE_TYPE_BOOLEAN:
        return False
    if feature_type == FEATURE_TYPE_LIMIT:
        return 0
    return []


def limit_to_column(value: Any) -> int | None:
    return None if is_unlimited(value) else value


def limit_from_column(value: int | None) -> int | str:
    return UNLIMITED if value is None else value
