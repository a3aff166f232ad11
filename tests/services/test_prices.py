"""Tests for PriceCatalogService: headers, prices, bulk insert, conflicts."""

from __future__ import annotations

from sqlalchemy import func, select

from pricerules.infrastructure.catalog import Catalog
from pricerules.infrastructure.database.schema import unit_prices
from pricerules.services.prices import PriceCatalogService
from tests.conftest import Seeder


def _price_rows(catalog: Catalog) -> int:
    with catalog.engine.connect() as conn:
        return int(conn.execute(select(func.count()).select_from(unit_prices)).scalar_one())


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------


class TestCreateHeader:
    def test_creates_with_window(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).create_header(
            "Summer list", "2024-06-01", "2024-09-01", description="Seasonal"
        )
        assert result.ok, result.error
        assert result.op == "create_price_header"
        assert result.data["name"] == "Summer list"
        assert result.data["description"] == "Seasonal"
        assert result.data["time_start"] == "2024-06-01T00:00:00Z"
        assert result.data["time_end"] == "2024-09-01T00:00:00Z"
        assert result.data["status"] == "expired"
        assert result.meta == {"catalog_version": 1}

    def test_open_ended(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).create_header("Base", "2024-01-01")
        assert result.ok
        assert result.data["time_end"] is None
        assert result.data["status"] == "active"

    def test_name_trimmed(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).create_header("  Base  ", "2024-01-01")
        assert result.data["name"] == "Base"

    def test_collects_all_field_errors(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).create_header(" ", "not-a-date")
        assert not result.ok
        assert result.error is not None
        assert result.error.code == "VALIDATION_FAILED"
        fields = {e["field"] for e in result.error.detail["errors"]}
        assert fields == {"name", "time_start"}

    def test_end_before_start(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).create_header("X", "2024-06-01", "2024-05-01")
        assert not result.ok
        assert result.error.detail["errors"][0]["field"] == "time_end"

    def test_local_timezone_applied(self, make_catalog) -> None:
        catalog = make_catalog(time={"timezone": "Asia/Ho_Chi_Minh"})
        result = PriceCatalogService(catalog).create_header("Base", "2024-06-01")
        assert result.data["time_start"] == "2024-05-31T17:00:00Z"


class TestDeactivateHeader:
    def test_cascades_to_prices(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        header = seed.price_header()
        seed.price(7, "100", header["id"])
        seed.price(8, "200", header["id"])

        svc = PriceCatalogService(catalog)
        result = svc.deactivate_header(header["id"])
        assert result.ok
        assert result.data == {"id": header["id"], "active": False, "deactivated_prices": 2}

        listed = svc.list_prices(header["id"])
        assert listed.data["header"]["status"] == "inactive"
        assert all(not item["active"] for item in listed.data["items"])

    def test_frees_windows_for_new_header(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        old = seed.price_header("Old")
        seed.price(7, "100", old["id"])
        PriceCatalogService(catalog).deactivate_header(old["id"])
        new = seed.price_header("New")
        assert seed.price(7, "90", new["id"])["price"] == "90"

    def test_unknown_header(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).deactivate_header(404)
        assert result.error.code == "NOT_FOUND"


class TestActivateHeader:
    def test_restores_prices(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        header = seed.price_header()
        seed.price(7, "100", header["id"])
        seed.price(8, "200", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_header(header["id"])

        result = svc.activate_header(header["id"])
        assert result.ok, result.error
        assert result.op == "activate_price_header"
        assert result.data == {"id": header["id"], "active": True, "activated_prices": 2}
        assert svc.resolve_price(7, "2024-06-01").data["price"]["price"] == "100"

    def test_header_only(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_header(header["id"])

        result = svc.activate_header(header["id"], with_prices=False)
        assert result.data["activated_prices"] == 0
        assert svc.resolve_price(7, "2024-06-01").data["price"] is None

    def test_conflict_restores_nothing(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        old = seed.price_header("Old")
        seed.price(8, "80", old["id"])
        seed.price(7, "70", old["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_header(old["id"])
        new = seed.price_header("New", start="2024-03-01")
        blocker = seed.price(7, "75", new["id"])

        result = svc.activate_header(old["id"])
        assert result.error.code == "CONFLICT"
        assert result.error.detail["existing_id"] == blocker["id"]
        assert result.error.detail["existing_header_name"] == "New"
        listed = svc.list_prices(old["id"])
        assert listed.data["header"]["active"] is False
        assert all(not item["active"] for item in listed.data["items"])

    def test_restored_prices_checked_against_each_other(
        self, catalog: Catalog, seed: Seeder
    ) -> None:
        seed.unit(7)
        header = seed.price_header()
        svc = PriceCatalogService(catalog)
        first = seed.price(7, "100", header["id"])
        svc.deactivate_price(first["id"])
        seed.price(7, "110", header["id"], time_start="2024-06-01")
        svc.deactivate_header(header["id"])

        result = svc.activate_header(header["id"])
        assert result.error.code == "CONFLICT"
        assert result.error.detail["existing_id"] == first["id"]

    def test_active_header_left_alone(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        price = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_price(price["id"])

        assert svc.activate_header(header["id"]).data["activated_prices"] == 0
        assert svc.resolve_price(7, "2024-06-01").data["price"] is None

    def test_unknown_header(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).activate_header(404)
        assert result.error.detail["kind"] == "price header"


class TestUpdateHeader:
    def test_rename_and_describe(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        result = PriceCatalogService(catalog).update_header(
            header["id"], name="  Retail ", description="Shop floor"
        )
        assert result.ok, result.error
        assert result.op == "update_price_header"
        assert result.data["name"] == "Retail"
        assert result.data["description"] == "Shop floor"
        assert result.data["time_start"] == header["time_start"]

    def test_empty_description_clears(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        svc = PriceCatalogService(catalog)
        svc.update_header(header["id"], description="temp")
        assert svc.update_header(header["id"], description="").data["description"] is None

    def test_window_seeds_new_prices_only(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        header = seed.price_header()
        stored = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)

        result = svc.update_header(header["id"], time_end="2024-07-01")
        assert result.data["time_end"] == "2024-07-01T00:00:00Z"
        listed = svc.list_prices(header["id"]).data["items"]
        assert listed[0]["time_end"] == stored["time_end"] is None
        assert seed.price(8, "200", header["id"])["time_end"] == "2024-07-01T00:00:00Z"

    def test_open_ended(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header(end="2024-07-01")
        result = PriceCatalogService(catalog).update_header(header["id"], open_ended=True)
        assert result.data["time_end"] is None
        assert result.data["time_start"] == header["time_start"]

    def test_open_ended_with_end_rejected(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        result = PriceCatalogService(catalog).update_header(
            header["id"], time_end="2024-07-01", open_ended=True
        )
        assert result.error.detail["errors"][0]["field"] == "time_end"

    def test_end_before_start(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        result = PriceCatalogService(catalog).update_header(header["id"], time_end="2023-01-01")
        assert result.error.code == "VALIDATION_FAILED"

    def test_unknown_header(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).update_header(404, name="x")
        assert result.error.code == "NOT_FOUND"


class TestListPrices:
    def test_lists_in_id_order(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        header = seed.price_header()
        first = seed.price(8, "200", header["id"])
        second = seed.price(7, "100", header["id"])
        result = PriceCatalogService(catalog).list_prices(header["id"])
        assert result.ok
        assert result.data["count"] == 2
        assert [i["id"] for i in result.data["items"]] == [first["id"], second["id"]]
        assert result.data["header"]["name"] == "Base list"


# ---------------------------------------------------------------------------
# insert_price
# ---------------------------------------------------------------------------


class TestInsertPrice:
    def test_inherits_header_window(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header(start="2024-01-01", end="2025-01-01")
        result = PriceCatalogService(catalog).insert_price(7, "19.90", header["id"])
        assert result.ok, result.error
        assert result.data["price"] == "19.90"
        assert result.data["time_start"] == "2024-01-01T00:00:00Z"
        assert result.data["time_end"] == "2025-01-01T00:00:00Z"
        assert result.data["active"] is True

    def test_explicit_bound_overrides_header(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header(start="2024-01-01", end="2025-01-01")
        result = PriceCatalogService(catalog).insert_price(
            7, 10, header["id"], time_end="2024-03-01"
        )
        assert result.data["time_start"] == "2024-01-01T00:00:00Z"
        assert result.data["time_end"] == "2024-03-01T00:00:00Z"

    def test_overlap_rejected_with_existing_record(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header("Base list")
        existing = seed.price(7, "100", header["id"])
        result = PriceCatalogService(catalog).insert_price(
            7, "90", header["id"], time_start="2024-06-01"
        )
        assert not result.ok
        assert result.error.code == "CONFLICT"
        assert f"overlaps price #{existing['id']} in 'Base list'" in result.error.message
        detail = result.error.detail
        assert detail["existing_id"] == existing["id"]
        assert detail["key"] == 7
        assert detail["existing_header_id"] == header["id"]
        assert detail["existing_header_name"] == "Base list"
        assert _price_rows(catalog) == 1

    def test_adjacent_windows_allowed(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        seed.price(7, "100", header["id"], time_end="2024-06-01")
        result = PriceCatalogService(catalog).insert_price(
            7, "110", header["id"], time_start="2024-06-01"
        )
        assert result.ok, result.error

    def test_other_units_independent(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        seed.unit(8)
        header = seed.price_header()
        seed.price(7, "100", header["id"])
        assert PriceCatalogService(catalog).insert_price(8, "100", header["id"]).ok

    def test_inactive_price_does_not_block(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        old = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_price(old["id"])
        assert svc.insert_price(7, "120", header["id"]).ok

    def test_unknown_unit(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        result = PriceCatalogService(catalog).insert_price(99, "1", header["id"])
        assert result.error.code == "NOT_FOUND"
        assert result.error.detail["kind"] == "product unit"

    def test_inactive_header_is_state_error(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        svc = PriceCatalogService(catalog)
        svc.deactivate_header(header["id"])
        result = svc.insert_price(7, "1", header["id"])
        assert result.error.code == "STATE_ERROR"

    def test_price_must_be_positive(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        result = PriceCatalogService(catalog).insert_price(7, "0", header["id"])
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.detail["errors"] == [
            {"field": "price", "message": "must be greater than 0"}
        ]

    def test_version_advances(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        before = catalog.version()
        result = PriceCatalogService(catalog).insert_price(7, "5", header["id"])
        assert result.meta["catalog_version"] == before + 1


# ---------------------------------------------------------------------------
# bulk_insert_prices
# ---------------------------------------------------------------------------


class TestBulkInsert:
    def test_inserts_all(self, catalog: Catalog, seed: Seeder) -> None:
        for unit in (1, 2, 3):
            seed.unit(unit)
        header = seed.price_header()
        items = [{"product_unit_id": u, "price": f"{u}0"} for u in (1, 2, 3)]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.ok, result.error
        assert result.data["count"] == 3
        assert [i["price"] for i in result.data["items"]] == ["10", "20", "30"]
        assert result.meta["catalog_version"] == catalog.version()

    def test_third_item_conflict_commits_nothing(self, catalog: Catalog, seed: Seeder) -> None:
        for unit in range(1, 6):
            seed.unit(unit)
        header = seed.price_header()
        existing = seed.price(3, "30", header["id"])
        version = catalog.version()

        items = [{"productUnitId": u, "price": "9.99"} for u in range(1, 6)]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert not result.ok
        assert result.error.code == "CONFLICT"
        assert result.error.detail["item_index"] == 2
        assert result.error.detail["existing_id"] == existing["id"]
        assert result.error.message.startswith("Item 2: price for unit 3")
        assert _price_rows(catalog) == 1
        assert catalog.version() == version

    def test_conflict_within_batch(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(1)
        header = seed.price_header()
        items = [
            {"product_unit_id": 1, "price": "10", "time_end": "2024-06-01"},
            {"product_unit_id": 1, "price": "11", "time_start": "2024-06-01"},
            {"product_unit_id": 1, "price": "12", "time_start": "2024-07-01"},
        ]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert not result.ok
        assert result.error.detail["item_index"] == 2
        assert result.error.detail["in_batch"] is True
        assert result.error.detail["existing_id"] == 1
        assert "overlaps batch item 1" in result.error.message
        assert _price_rows(catalog) == 0

    def test_item_validation_errors_carry_index(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        items = [{"product_unit_id": 1, "price": "5"}, {"product_unit_id": "x", "price": "-1"}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.detail["item_index"] == 1
        fields = [e["field"] for e in result.error.detail["errors"]]
        assert fields == ["items[1].product_unit_id", "items[1].price"]

    def test_unknown_unit_carries_index(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(1)
        header = seed.price_header()
        items = [{"product_unit_id": 1, "price": "5"}, {"product_unit_id": 404, "price": "5"}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.code == "NOT_FOUND"
        assert result.error.detail["item_index"] == 1
        assert _price_rows(catalog) == 0

    def test_empty_batch(self, catalog: Catalog, seed: Seeder) -> None:
        header = seed.price_header()
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], [])
        assert result.error.detail["errors"][0]["field"] == "items"

    def test_non_object_item_rejected(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        items = [{"product_unit_id": 7, "price": "5"}, 7]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.detail["item_index"] == 1
        assert result.error.detail["errors"] == [
            {"field": "items[1]", "message": "must be an object, got int"}
        ]
        assert _price_rows(catalog) == 0

    def test_numeric_bound_rejected(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        items = [{"product_unit_id": 7, "price": "5", "time_start": 20240101}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.detail["item_index"] == 0
        assert result.error.detail["errors"][0]["field"] == "items[0].time_start"

    def test_fractional_unit_id_rejected(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        items = [{"product_unit_id": 7.9, "price": "5"}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.detail["item_index"] == 0
        assert result.error.detail["errors"][0]["field"] == "items[0].product_unit_id"
        assert _price_rows(catalog) == 0

    def test_whole_float_unit_id_accepted(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        items = [{"productUnitId": 7.0, "price": "5", "timeStart": "2024-02-01"}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.ok, result.error
        assert result.data["items"][0]["product_unit_id"] == 7

    def test_bad_window_carries_index(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        items = [{"product_unit_id": 7, "price": "5", "time_start": "not a date"}]
        result = PriceCatalogService(catalog).bulk_insert_prices(header["id"], items)
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.detail["item_index"] == 0


# ---------------------------------------------------------------------------
# check_conflict / resolve_price
# ---------------------------------------------------------------------------


class TestCheckConflict:
    def test_clear(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        result = PriceCatalogService(catalog).check_conflict(7, header["id"])
        assert result.ok
        assert result.data["clear"] is True
        assert result.data["count"] == 0

    def test_reports_every_overlap(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        base = seed.price_header("Base")
        first = seed.price(7, "1", base["id"], time_end="2024-03-01")
        second = seed.price(7, "2", base["id"], time_start="2024-03-01")
        promo = seed.price_header("Promo", start="2024-02-01", end="2024-04-01")

        result = PriceCatalogService(catalog).check_conflict(7, promo["id"])
        assert result.data["clear"] is False
        assert [c["existing_id"] for c in result.data["conflicts"]] == [first["id"], second["id"]]
        assert result.data["conflicts"][0]["header_name"] == "Base"
        assert _price_rows(catalog) == 2


class TestResolvePrice:
    def test_effective_price_at_instant(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        seed.price(7, "100", header["id"], time_end="2024-06-01")
        later = seed.price(7, "120", header["id"], time_start="2024-06-01")

        svc = PriceCatalogService(catalog)
        assert svc.resolve_price(7, "2024-05-31T23:59:59Z").data["price"]["price"] == "100"
        result = svc.resolve_price(7, "2024-06-01")
        assert result.data["price"]["id"] == later["id"]
        assert result.data["at"] == "2024-06-01T00:00:00+00:00"

    def test_no_price(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        result = PriceCatalogService(catalog).resolve_price(7, "2024-06-01")
        assert result.ok
        assert result.data["price"] is None

    def test_unknown_unit(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).resolve_price(7, "2024-06-01")
        assert result.error.code == "NOT_FOUND"

    def test_bad_instant(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        result = PriceCatalogService(catalog).resolve_price(7, "soon")
        assert result.error.detail["errors"][0]["field"] == "at"


# ---------------------------------------------------------------------------
# Activation
# ---------------------------------------------------------------------------


class TestActivation:
    def test_reactivation_rechecks_conflicts(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        old = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        assert svc.deactivate_price(old["id"]).ok
        replacement = seed.price(7, "110", header["id"])

        result = svc.activate_price(old["id"])
        assert result.error.code == "CONFLICT"
        assert result.error.detail["existing_id"] == replacement["id"]

    def test_reactivation_without_conflict(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        price = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_price(price["id"])
        result = svc.activate_price(price["id"])
        assert result.ok
        assert result.data == {"id": price["id"], "active": True}

    def test_activating_active_price_is_noop(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        price = seed.price(7, "100", header["id"])
        assert PriceCatalogService(catalog).activate_price(price["id"]).ok

    def test_reactivation_needs_active_header(self, catalog: Catalog, seed: Seeder) -> None:
        seed.unit(7)
        header = seed.price_header()
        price = seed.price(7, "100", header["id"])
        svc = PriceCatalogService(catalog)
        svc.deactivate_header(header["id"])
        result = svc.activate_price(price["id"])
        assert result.error.code == "STATE_ERROR"

    def test_unknown_price(self, catalog: Catalog) -> None:
        result = PriceCatalogService(catalog).deactivate_price(404)
        assert result.error.code == "NOT_FOUND"
        assert result.error.detail["kind"] == "price"
