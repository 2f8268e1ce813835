from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar


# Largest amount accepted for any price, fee or budget (whole dollars)
MAX_AMOUNT = 10_000_000

E = TypeVar("E", bound=Enum)


class ValidationError(ValueError):
    """400-level input problem (malformed request, not a business-rule rejection)."""


class NotFoundError(LookupError):
    """404-level: the referenced listing or approval does not exist."""


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats with a fractional
    part, scientific notation and empty strings.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def coerce_amount(value: Any, field: str, *, allow_none: bool = False) -> Optional[int]:
    """Whole-dollar amount in [0, MAX_AMOUNT]."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    amount = coerce_int(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT:,}")
    return amount


def coerce_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    """Map a raw string (case-insensitive) onto a closed enum."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {choices}")


def require_fields(data: Mapping[str, Any], fields: tuple[str, ...]) -> None:
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
