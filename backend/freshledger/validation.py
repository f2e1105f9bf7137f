from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported)
from .time_utils import normalize_datetime, normalize_day


# Upper bound for any single quantity or amount; catches unit mix-ups (g vs kg)
MAX_QUANTITY = Decimal("1000000")


@dataclass(frozen=True)
class PayloadPolicy:
    """Which JSON keys a route accepts (fields) and which a create must send (required)."""
    fields: frozenset
    required: frozenset = frozenset()


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce JSON-ish numbers to Decimal; floats go through str() to keep their printed value."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(result) > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return result


def positive_decimal(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result <= 0:
        raise ValidationError(f"{field} must be a positive number")
    return result


def non_negative_decimal(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f"{field} must be a non-negative number")
    return result


def optional_non_negative(value: Any, field: str) -> Decimal | None:
    """None and "" mean "not provided"."""
    if value is None or value == "":
        return None
    return non_negative_decimal(value, field)


def required_text(value: Any, field: str) -> str:
    """Stripped, non-blank string; anything else is a ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", {"field": field})
    return value.strip()


def coerce_datetime(value: Any, field: str) -> datetime | None:
    try:
        return normalize_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def coerce_day(value: Any, field: str):
    try:
        return normalize_day(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")


def _column_map(model) -> dict[str, Any]:
    return {column.key: column for column in model.__mapper__.columns}


def _coerce_integer(value: Any, field: str) -> int:
    # floats, bools and "1e3" are refused; "12" is accepted
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def _coerce_boolean(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def _coerce_text(value: Any, field: str) -> str:
    return str(value).strip()


# DateTime is listed before Date; the first isinstance match wins
_COERCERS = (
    (Integer, _coerce_integer),
    (Numeric, to_decimal),
    (Boolean, _coerce_boolean),
    (DateTime, coerce_datetime),
    (Date, coerce_day),
    ((String, Text), _coerce_text),
)


def coerce_column_value(column, value: Any):
    """Convert one JSON value to the Python type the column stores."""
    for column_type, coerce in _COERCERS:
        if isinstance(column.type, column_type):
            return coerce(value, column.key)
    return value


def validate_payload(*, model, payload: dict, policy: PayloadPolicy, partial: bool) -> dict:
    """
    Clean a JSON body for `model` under `policy`.

    Keys outside policy.fields are refused, values are coerced by column type,
    NOT NULL columns refuse null and blank strings, and String lengths are
    enforced. With partial=False every policy.required key must be present.
    Returns only the keys that were sent.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    if not partial:
        absent = sorted(name for name in policy.required if payload.get(name) in (None, ""))
        if absent:
            raise ValidationError(f"Missing required fields: {', '.join(absent)}", {"fields": absent})

    columns = _column_map(model)
    cleaned: dict = {}
    for name, raw in payload.items():
        column = columns.get(name)
        if name not in policy.fields or column is None:
            raise ValidationError(f"Field not allowed: {name}", {"field": name})

        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{name} is required", {"field": name})
            cleaned[name] = None
            continue

        value = coerce_column_value(column, raw)
        if isinstance(value, str):
            if value == "" and not column.nullable:
                raise ValidationError(f"{name} is required", {"field": name})
            max_length = getattr(column.type, "length", None)
            if max_length and len(value) > max_length:
                raise ValidationError(f"{name} is longer than {max_length} characters", {"field": name})
        cleaned[name] = value

    return cleaned
