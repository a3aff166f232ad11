"""Tests for row <-> record conversions."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from pricerules.domain.details import AmountDetail, BuyXGetYDetail
from pricerules.domain.types import PromotionType
from pricerules.infrastructure.database.rows import (
    decode_ts,
    detail_from_row,
    detail_values,
    encode_ts,
    price_from_row,
)


def _detail_row(**kw: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "id": 1,
        "promotion_line_id": 2,
        "type": "DISCOUNT_AMOUNT",
        "active": 1,
        "discount_percent": None,
        "discount_amount": None,
        "min_amount": None,
        "max_discount": None,
        "condition_product_unit_id": None,
        "condition_quantity": None,
        "gift_product_unit_id": None,
        "free_quantity": None,
    }
    values.update(kw)
    return SimpleNamespace(**values)


class TestTimestamps:
    def test_encode_normalizes_to_utc(self) -> None:
        local = datetime(2024, 6, 1, 7, tzinfo=timezone(timedelta(hours=7)))
        assert encode_ts(local) == "2024-06-01T00:00:00+00:00"

    def test_none_passthrough(self) -> None:
        assert encode_ts(None) is None
        assert decode_ts(None) is None

    def test_decode_naive_assumes_utc(self) -> None:
        assert decode_ts("2024-06-01T00:00:00") == datetime(2024, 6, 1, tzinfo=UTC)


class TestRecords:
    def test_price_keeps_exact_decimal(self) -> None:
        row = SimpleNamespace(
            id=1,
            product_unit_id=7,
            price="19999.995",
            price_header_id=1,
            time_start="2024-01-01T00:00:00+00:00",
            time_end=None,
            active=0,
        )
        price = price_from_row(row)
        assert price.price == Decimal("19999.995")
        assert price.active is False
        assert price.time_end is None

    def test_detail_variant_from_type(self) -> None:
        detail = detail_from_row(_detail_row(discount_amount="2500", max_discount="3000"))
        assert isinstance(detail, AmountDetail)
        assert detail.discount_amount == Decimal(2500)
        assert detail.min_amount is None

    def test_gift_detail(self) -> None:
        row = _detail_row(
            type="BUY_X_GET_Y",
            condition_product_unit_id=7,
            condition_quantity=3,
            gift_product_unit_id=8,
            free_quantity=1,
        )
        detail = detail_from_row(row)
        assert isinstance(detail, BuyXGetYDetail)
        assert detail.type == PromotionType.BUY_X_GET_Y

    def test_detail_values_stores_decimals_as_text(self) -> None:
        values = detail_values({"discount_percent": Decimal("12.5"), "free_quantity": 2})
        assert values == {"discount_percent": "12.5", "free_quantity": 2}
