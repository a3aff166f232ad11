"""Tests for EvaluationService: order evaluation against the live catalog."""

from __future__ import annotations

from typing import Any

import pytest

from pricerules.domain.errors import ValidationError
from pricerules.domain.records import OrderLine
from pricerules.infrastructure.catalog import Catalog
from pricerules.services.evaluation import EvaluationService, parse_order_lines
from pricerules.services.prices import PriceCatalogService
from tests.conftest import Seeder

AT = "2024-06-01T10:00:00Z"


def _seed_shop(seed: Seeder) -> dict[str, Any]:
    """Two units under one category, both priced; one percent rule on unit 7's product."""
    seed.unit(7, product_id=70, category_id=9)
    seed.unit(8, product_id=80, category_id=9)
    header = seed.price_header()
    seed.price(7, "50000", header["id"])
    seed.price(8, "20000", header["id"])
    promo = seed.promo_header()
    line = seed.line(promo["id"], "PRODUCT", 70, "DISCOUNT_PERCENT")
    seed.detail(line["id"], discount_percent="20", min_amount="50000", max_discount="15000")
    return {"price_header": header, "promo": promo, "line": line}


class TestParseOrderLines:
    def test_snake_and_camel(self) -> None:
        lines = parse_order_lines(
            [
                {"id": 1, "product_unit_id": 7, "quantity": 2},
                {"id": 2, "productUnitId": 8, "quantity": 1, "unitPrice": "10.5"},
            ]
        )
        assert [ln.product_unit_id for ln in lines] == [7, 8]
        assert str(lines[1].unit_price) == "10.5"

    def test_passes_records_through(self) -> None:
        line = OrderLine(id=1, product_unit_id=7, quantity=1)
        assert parse_order_lines([line]) == [line]

    def test_collects_errors_per_line(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_order_lines([{"id": 1, "product_unit_id": 7, "quantity": "many"}, {"id": 2}])
        fields = [e.field for e in exc_info.value.errors]
        assert fields[0] == "lines[0].quantity"
        assert all(f.startswith("lines[1].") for f in fields[1:])
        assert len(fields) == 3


class TestEvaluate:
    def test_percent_capped(self, catalog: Catalog, seed: Seeder) -> None:
        ctx = _seed_shop(seed)
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 7, "quantity": 2}], AT
        )
        assert result.ok, result.error
        assert result.data["count"] == 1
        assert result.data["total_amount"] == "15000.00"
        discount = result.data["discounts"][0]
        assert discount["amount"] == "15000.00"
        assert discount["rule_line_id"] == ctx["line"]["id"]
        assert discount["order_line_id"] == 1
        assert result.data["catalog_version"] == catalog.version()
        assert result.meta == {"catalog_version": catalog.version()}

    def test_below_minimum(self, catalog: Catalog, seed: Seeder) -> None:
        _seed_shop(seed)
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "productUnitId": 7, "quantity": 0}], AT
        )
        assert result.data["discounts"][0]["amount"] == "0.00"

    def test_no_rules_no_discounts(self, catalog: Catalog, seed: Seeder) -> None:
        _seed_shop(seed)
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 8, "quantity": 3}], AT
        )
        assert result.ok
        assert result.data["count"] == 0
        assert result.data["total_amount"] == "0"

    def test_local_instant(self, make_catalog) -> None:
        catalog = make_catalog(time={"timezone": "Asia/Ho_Chi_Minh"})
        _seed_shop(Seeder(catalog))
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 7, "quantity": 1}], "2024-06-01T07:00"
        )
        assert result.data["at"] == "2024-06-01T00:00:00+00:00"

    def test_price_change_seen_by_next_evaluation(self, catalog: Catalog, seed: Seeder) -> None:
        ctx = _seed_shop(seed)
        svc = EvaluationService(catalog)
        order = [{"id": 1, "product_unit_id": 7, "quantity": 1}]
        first = svc.evaluate(order, AT)
        assert first.data["total_amount"] == "10000.00"

        prices = PriceCatalogService(catalog)
        listed = prices.list_prices(ctx["price_header"]["id"]).data["items"]
        prices.deactivate_price(listed[0]["id"])
        seed.price(7, "60000", ctx["price_header"]["id"])

        second = svc.evaluate(order, AT)
        assert second.data["total_amount"] == "12000.00"
        assert second.data["catalog_version"] > first.data["catalog_version"]

    def test_deterministic(self, catalog: Catalog, seed: Seeder) -> None:
        _seed_shop(seed)
        svc = EvaluationService(catalog)
        order = [
            {"id": 2, "product_unit_id": 8, "quantity": 1},
            {"id": 1, "product_unit_id": 7, "quantity": 3},
        ]
        assert svc.evaluate(order, AT).data == svc.evaluate(order, AT).data


class TestEvaluateErrors:
    def test_unknown_unit(self, catalog: Catalog) -> None:
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 99, "quantity": 1}], AT
        )
        assert result.error.code == "NOT_FOUND"
        assert result.error.detail["order_line_id"] == 1

    def test_missing_price_for_rule(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7, product_id=70)
        promo = seed.promo_header()
        line = seed.line(promo["id"], "PRODUCT", 70, "DISCOUNT_AMOUNT")
        seed.detail(line["id"], discount_amount="100")
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 7, "quantity": 1}], AT
        )
        assert result.error.code == "NOT_FOUND"
        assert result.error.detail["kind"] == "price"

    def test_bad_instant(self, catalog: Catalog) -> None:
        result = EvaluationService(catalog).evaluate([], "whenever")
        assert result.error.detail["errors"][0]["field"] == "at"

    def test_negative_quantity(self, catalog: Catalog, seed: Seeder) -> None:
        _seed_shop(seed)
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 7, "quantity": -2}], AT
        )
        assert result.error.detail["errors"] == [
            {"field": "lines[0].quantity", "message": "must not be negative"}
        ]


class TestGiftPolicy:
    def _seed(self, seed: Seeder) -> None:
        seed.unit(7, product_id=70)
        seed.unit(8, product_id=80)
        promo = seed.promo_header()
        line = seed.line(promo["id"], "PRODUCT", 70, "BUY_X_GET_Y")
        seed.detail(
            line["id"],
            condition_product_unit_id=7,
            condition_quantity=3,
            gift_product_unit_id=8,
            free_quantity=1,
        )

    def test_cap_limits_to_gift_in_order(self, catalog: Catalog, seed: Seeder) -> None:
        self._seed(seed)
        result = EvaluationService(catalog).evaluate(
            [
                {"id": 1, "product_unit_id": 7, "quantity": 7},
                {"id": 2, "product_unit_id": 8, "quantity": 1},
            ],
            AT,
        )
        discount = result.data["discounts"][0]
        assert discount["free_units"] == 1
        assert discount["order_line_id"] == 2
        assert discount["amount"] is None
        assert result.data["total_amount"] == "0"

    def test_grant_ignores_gift_presence(self, make_catalog) -> None:
        catalog = make_catalog(evaluation={"gift_policy": "grant"})
        self._seed(Seeder(catalog))
        result = EvaluationService(catalog).evaluate(
            [{"id": 1, "product_unit_id": 7, "quantity": 7}], AT
        )
        discount = result.data["discounts"][0]
        assert discount["free_units"] == 2
        assert discount["order_line_id"] is None
        assert discount["gift_product_unit_id"] == 8
