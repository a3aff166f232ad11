"""Tests for Catalog: transactions, version bumps, snapshots and key locks."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import Connection, func, select

from pricerules.domain.intervals import TemporalInterval
from pricerules.domain.records import ProductUnit
from pricerules.domain.types import PromotionType, TargetType
from pricerules.infrastructure import catalog as catalog_module
from pricerules.infrastructure.catalog import Catalog
from pricerules.infrastructure.database.schema import promotion_lines, unit_prices
from pricerules.services.prices import PriceCatalogService
from pricerules.services.result import ServiceResult
from tests.conftest import Seeder

JAN = datetime(2024, 1, 1, tzinfo=UTC)
JUL = datetime(2024, 7, 1, tzinfo=UTC)


def _add_price(catalog: Catalog, unit_id: int = 7) -> int:
    with catalog.transaction() as txn:
        txn.upsert_unit(ProductUnit(id=unit_id, product_id=70, unit_id=1))
        header = txn.insert_price_header(name="Base", window=TemporalInterval(start=JAN))
        price = txn.insert_price(
            product_unit_id=unit_id,
            price=Decimal("100.50"),
            header_id=header.id,
            window=TemporalInterval(start=JAN, end=JUL),
        )
    return price.id


class TestTransaction:
    def test_one_version_bump_per_transaction(self, catalog: Catalog) -> None:
        assert catalog.version() == 0
        _add_price(catalog)
        assert catalog.version() == 1

    def test_touch_is_idempotent(self, catalog: Catalog) -> None:
        with catalog.transaction() as txn:
            first = txn.touch()
            second = txn.touch()
        assert first == second == 1

    def test_rollback_on_error(self, catalog: Catalog) -> None:
        with pytest.raises(RuntimeError), catalog.transaction() as txn:
            txn.upsert_unit(ProductUnit(id=7, product_id=70, unit_id=1))
            raise RuntimeError("boom")
        assert catalog.version() == 0
        assert catalog.snapshot().unit(7) is None

    def test_reads_see_own_writes(self, catalog: Catalog) -> None:
        with catalog.transaction() as txn:
            txn.upsert_unit(ProductUnit(id=7, product_id=70, unit_id=1))
            assert txn.get_unit(7) is not None

    def test_upsert_replaces(self, catalog: Catalog) -> None:
        with catalog.transaction() as txn:
            txn.upsert_unit(ProductUnit(id=7, product_id=70, unit_id=1))
        with catalog.transaction() as txn:
            txn.upsert_unit(ProductUnit(id=7, product_id=70, unit_id=2, category_id=9))
        unit = catalog.snapshot().unit(7)
        assert unit is not None
        assert unit.unit_id == 2
        assert unit.category_id == 9

    def test_active_entries_skip_inactive(self, catalog: Catalog) -> None:
        price_id = _add_price(catalog)
        with catalog.transaction() as txn:
            entries = txn.active_price_entries(7)
            assert [e.record_id for e in entries] == [price_id]
            assert entries[0].window == TemporalInterval(start=JAN, end=JUL)
            txn.set_active(unit_prices, price_id, False)
            assert txn.active_price_entries(7) == []

    def test_deactivate_children_counts(self, catalog: Catalog) -> None:
        with catalog.transaction() as txn:
            header = txn.insert_promotion_header(
                name="Sale", window=TemporalInterval(start=JAN, end=JUL)
            )
            for target in (1, 2):
                txn.insert_line(
                    header_id=header.id,
                    target_type=TargetType.PRODUCT,
                    target_id=target,
                    promotion_type=PromotionType.DISCOUNT_PERCENT,
                    window=header.window,
                )
        with catalog.transaction() as txn:
            assert txn.deactivate_children(promotion_lines, "promotion_header_id", header.id) == 2
            assert txn.deactivate_children(promotion_lines, "promotion_header_id", header.id) == 0
            assert txn.active_line_entries(TargetType.PRODUCT, 1) == []


class TestSnapshot:
    def test_cached_per_version(self, catalog: Catalog) -> None:
        first = catalog.snapshot()
        assert catalog.snapshot() is first
        _add_price(catalog)
        second = catalog.snapshot()
        assert second is not first
        assert second.version == 1

    def test_contents(self, catalog: Catalog) -> None:
        price_id = _add_price(catalog)
        snap = catalog.snapshot()
        price = snap.effective_price(7, datetime(2024, 3, 1, tzinfo=UTC))
        assert price is not None
        assert price.id == price_id
        assert price.price == Decimal("100.50")

    def test_snapshot_unaffected_by_later_writes(self, catalog: Catalog) -> None:
        snap = catalog.snapshot()
        _add_price(catalog)
        assert snap.prices == ()

    def test_shared_across_catalog_instances(self, catalog: Catalog, make_catalog) -> None:
        other = make_catalog()
        _add_price(other)
        assert catalog.snapshot().version == 1


class TestKeyLocks:
    def test_same_key_serialized(self, catalog: Catalog) -> None:
        events: list[str] = []

        def worker(name: str) -> None:
            with catalog.key_locks([("price", 7)]):
                events.append(f"{name}-in")
                time.sleep(0.05)
                events.append(f"{name}-out")

        threads = [threading.Thread(target=worker, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert events[0].endswith("-in")
        assert events[1].endswith("-out")
        assert events[0][0] == events[1][0]

    def test_distinct_keys_do_not_block(self, catalog: Catalog) -> None:
        with catalog.key_locks([("price", 7)]):
            acquired = threading.Event()

            def worker() -> None:
                with catalog.key_locks([("price", 8)]):
                    acquired.set()

            t = threading.Thread(target=worker)
            t.start()
            assert acquired.wait(timeout=2)
            t.join()

    def test_duplicate_keys_acquired_once(self, catalog: Catalog) -> None:
        with catalog.key_locks([("price", 7), ("price", 7)]):
            pass


class TestSharedFile:
    """Two catalogs on one file behave like two processes: no shared key locks."""

    def test_writer_waits_then_sees_conflict(
        self, catalog: Catalog, make_catalog, seed: Seeder
    ) -> None:
        seed.unit(7)
        header = seed.price_header()
        other = make_catalog()
        results: list[ServiceResult] = []

        def writer() -> None:
            results.append(PriceCatalogService(other).insert_price(7, "90", header["id"]))

        thread = threading.Thread(target=writer)
        with catalog.transaction() as txn:
            thread.start()
            thread.join(timeout=0.2)
            assert thread.is_alive()
            txn.insert_price(
                product_unit_id=7,
                price=Decimal("100"),
                header_id=header["id"],
                window=TemporalInterval(start=JAN),
            )
            txn.touch()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert results[0].error is not None
        assert results[0].error.code == "CONFLICT"
        with catalog.engine.connect() as conn:
            assert conn.execute(select(func.count()).select_from(unit_prices)).scalar() == 1

    def test_snapshot_reads_one_committed_state(
        self, catalog: Catalog, make_catalog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        other = make_catalog()
        real_version = catalog_module.current_version
        calls: list[int] = []

        def version_then_commit(conn: Connection) -> int:
            value = real_version(conn)
            if not calls:
                calls.append(value)
                _add_price(other)
            return value

        monkeypatch.setattr(catalog_module, "current_version", version_then_commit)
        snap = catalog.snapshot()
        assert snap.version == 0
        assert snap.prices == ()
        assert snap.units == ()

        fresh = catalog.snapshot()
        assert fresh.version == 1
        assert len(fresh.prices) == 1
