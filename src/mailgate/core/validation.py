"""Input validation helpers shared by the executor, operations and tools."""

from __future__ import annotations

from typing import Any

from mailgate.core.errors import ValidationError


def validate_required(value: Any, field: str) -> Any:
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field, value)
    return value


def validate_string(value: Any, field: str, max_length: int = 1000) -> str:
    validated = validate_required(value, field)
    if not isinstance(validated, str):
        raise ValidationError(f"{field} must be a string", field, validated)
    if not validated.strip():
        raise ValidationError(f"{field} must not be blank", field, validated)
    if len(validated) > max_length:
        raise ValidationError(
            f"{field} exceeds maximum length of {max_length}", field, validated
        )
    return validated


def validate_array(value: Any, field: str, min_length: int = 0) -> list[Any]:
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be an array", field, value)
    if len(value) < min_length:
        raise ValidationError(
            f"{field} must have at least {min_length} items", field, value
        )
    return value


def validate_string_list(value: Any, field: str, min_length: int = 1) -> list[str]:
    items = validate_array(value, field, min_length)
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"{field} must contain only non-empty strings", field, value)
    return items


def validate_positive_int(value: Any, field: str) -> int:
    """Accept ints and numeric strings; reject bools, zero and negatives."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", field, value)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer", field, value) from None
    if number < 1:
        raise ValidationError(f"{field} must be a positive integer", field, value)
    return number
