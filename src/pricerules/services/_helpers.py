"""Shared service-layer helper functions."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pricerules.domain.errors import FieldError, ValidationError


def now_utc() -> datetime:
    """Current instant, timezone-aware UTC."""
    return datetime.now(UTC)


def now_iso() -> str:
    """Current UTC time as standard ISO 8601."""
    return now_utc().isoformat()


def parse_money(value: Any, *, field: str = "price") -> Decimal:
    """Parse a strictly positive monetary value from form input.

    Examples:
        >>> parse_money("12.50")
        Decimal('12.50')
    """
    if isinstance(value, bool):
        raise ValidationError.single(field, "must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError.single(field, f"must be a number, got {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError.single(field, "must be a finite number")
    if amount <= 0:
        raise ValidationError.single(field, "must be greater than 0")
    return amount


def parse_id(value: Any, *, field: str) -> int:
    """A positive integer id from JSON or form input.

    Whole-number floats (``7.0``) and digit strings pass; ``7.9``,
    booleans and anything else are rejected rather than truncated.
    """
    number: int | None = None
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    if number is None:
        raise ValidationError.single(field, f"must be an integer id, got {value!r}")
    if number <= 0:
        raise ValidationError.single(field, "must be a positive integer")
    return number


def require_name(value: str | None, *, field: str = "name") -> list[FieldError]:
    if value is None or not value.strip():
        return [FieldError(field, "is required")]
    return []


def fmt_money(value: Decimal) -> str:
    """Plain decimal notation for JSON payloads (no exponent)."""
    return format(value, "f")
