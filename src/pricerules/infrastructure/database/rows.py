"""Conversions between database rows and domain records."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pricerules.domain.details import DETAIL_ADAPTER, AnyDetail
from pricerules.domain.records import (
    PriceHeader,
    ProductUnit,
    PromotionHeader,
    PromotionLine,
    UnitPrice,
)

_DECIMAL_COLUMNS = ("discount_percent", "discount_amount", "min_amount", "max_discount")
_DETAIL_COLUMNS = (
    *_DECIMAL_COLUMNS,
    "condition_product_unit_id",
    "condition_quantity",
    "gift_product_unit_id",
    "free_quantity",
)


def encode_ts(value: datetime | None) -> str | None:
    """UTC ISO-8601 text for an aware datetime."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


def decode_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _required_ts(value: str) -> datetime:
    parsed = decode_ts(value)
    assert parsed is not None
    return parsed


def unit_from_row(row: Any) -> ProductUnit:
    return ProductUnit(
        id=row.id,
        product_id=row.product_id,
        unit_id=row.unit_id,
        category_id=row.category_id,
        name=row.name,
    )


def price_header_from_row(row: Any) -> PriceHeader:
    return PriceHeader(
        id=row.id,
        name=row.name,
        description=row.description,
        time_start=_required_ts(row.time_start),
        time_end=decode_ts(row.time_end),
        active=bool(row.active),
    )


def price_from_row(row: Any) -> UnitPrice:
    return UnitPrice(
        id=row.id,
        product_unit_id=row.product_unit_id,
        price=Decimal(row.price),
        price_header_id=row.price_header_id,
        time_start=_required_ts(row.time_start),
        time_end=decode_ts(row.time_end),
        active=bool(row.active),
    )


def promotion_header_from_row(row: Any) -> PromotionHeader:
    return PromotionHeader(
        id=row.id,
        name=row.name,
        start_date=_required_ts(row.start_date),
        end_date=_required_ts(row.end_date),
        active=bool(row.active),
    )


def line_from_row(row: Any) -> PromotionLine:
    return PromotionLine(
        id=row.id,
        promotion_header_id=row.promotion_header_id,
        target_type=row.target_type,
        target_id=row.target_id,
        type=row.type,
        start_date=_required_ts(row.start_date),
        end_date=_required_ts(row.end_date),
        active=bool(row.active),
    )


def detail_from_row(row: Any) -> AnyDetail:
    """Build the variant named by the row's ``type`` from its populated columns."""
    data: dict[str, Any] = {
        "id": row.id,
        "promotion_line_id": row.promotion_line_id,
        "type": row.type,
        "active": bool(row.active),
    }
    for column in _DETAIL_COLUMNS:
        value = getattr(row, column)
        if value is None:
            continue
        data[column] = Decimal(value) if column in _DECIMAL_COLUMNS else value
    return DETAIL_ADAPTER.validate_python(data)


def detail_values(fields: dict[str, Any], *, clear_others: bool = False) -> dict[str, Any]:
    """Column values for a detail's variant fields (decimals as text).

    With *clear_others*, every variant column not in *fields* is set to
    NULL, for rewriting a stored detail in place.
    """
    values: dict[str, Any] = dict.fromkeys(_DETAIL_COLUMNS) if clear_others else {}
    for name, value in fields.items():
        values[name] = str(value) if isinstance(value, Decimal) else value
    return values

