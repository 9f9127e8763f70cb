from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from .errors import InvalidQuantity, ValidationError
from .periods import Period
from .time_utils import parse_iso_date


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for caller input.

    Accepts ints (not bools) and plain digit strings. Rejects floats,
    decimals and scientific notation instead of silently truncating.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                {"field": field},
            )
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {"field": field})
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def require_positive_int(value: Any, field: str) -> int:
    """Coerce and require > 0; zero or negative raises InvalidQuantity."""
    number = coerce_int(value, field)
    if number <= 0:
        raise InvalidQuantity(field, number)
    return number


def require_price_cents(value: Any, field: str = "unit_price_cents") -> int:
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative", {"field": field, "value": cents})
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(
            f"{field} exceeds maximum of {MAX_PRICE_CENTS}",
            {"field": field, "value": cents},
        )
    return cents


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def optional_date(value: Any, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)", {"field": field})


def require_period(value: Any, field: str = "period") -> Period:
    """
    Accept a Period, "YYYY-MM", or a mapping with month and year.
    """
    if isinstance(value, Period):
        return value
    try:
        if isinstance(value, str):
            return Period.parse(value)
        if isinstance(value, Mapping):
            return Period.of(
                coerce_int(value.get("month"), f"{field}.month"),
                coerce_int(value.get("year"), f"{field}.year"),
            )
    except ValueError as exc:
        raise ValidationError(str(exc), {"field": field})
    raise ValidationError(f"{field} must be YYYY-MM", {"field": field})


def optional_period(value: Any, field: str = "period") -> Period | None:
    if value is None or value == "":
        return None
    return require_period(value, field)


def require_mapping(data: Any, field: str = "body") -> Mapping:
    if not isinstance(data, Mapping):
        raise ValidationError(f"{field} must be a JSON object", {"field": field})
    return data


def require_fields(data: Mapping, *names: str) -> None:
    missing = [name for name in names if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} required",
            {"missing": missing},
        )


def optional_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be true or false", {"field": field})


def require_int(data: Mapping, field: str) -> int:
    value = data.get(field)
    if value is None or value == "":
        raise ValidationError(f"{field} required", {"missing": [field]})
    return coerce_int(value, field)
