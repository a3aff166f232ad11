"""Shared pytest fixtures and test helpers for pricerules tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from pricerules.config.settings import RulesSettings
from pricerules.infrastructure.catalog import Catalog
from pricerules.infrastructure.database.engine import init_database
from pricerules.services.telemetry import disable_telemetry


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of the settings chain."""
    for name in ("PRICERULES_CONFIG", "PRICERULES_CATALOG_ROOT", "PRICERULES_VERBOSE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Iterator[None]:
    """Undo the global telemetry switch flipped by ``-v`` invocations."""
    yield
    disable_telemetry()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_engine(tmp_path: Path) -> Iterator[Engine]:
    """Initialized SQLite engine with all tables created."""
    engine = init_database(tmp_path)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def catalog_root(tmp_path: Path) -> Path:
    """Temporary catalog directory.

    Single source of truth for the catalog directory; ``catalog`` and
    ``_isolated_catalog`` both build on it.
    """
    return tmp_path


@pytest.fixture
def catalog(catalog_root: Path) -> Iterator[Catalog]:
    """Fully initialized catalog on a temp directory."""
    settings = RulesSettings.from_cli(catalog_root=catalog_root)
    c = Catalog(settings)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def make_catalog(catalog_root: Path) -> Iterator[Any]:
    """Factory for catalogs with settings overrides (same directory)."""
    opened: list[Catalog] = []

    def _make(**overrides: Any) -> Catalog:
        settings = RulesSettings.from_cli(catalog_root=catalog_root, **overrides)
        c = Catalog(settings)
        opened.append(c)
        return c

    try:
        yield _make
    finally:
        for c in opened:
            c.close()


@pytest.fixture
def _isolated_catalog(catalog_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp catalog root so the CLI creates an isolated catalog.

    Use via ``@pytest.mark.usefixtures("_isolated_catalog")`` on command test
    classes.
    """
    monkeypatch.chdir(catalog_root)


# ---------------------------------------------------------------------------
# Seeding helpers (shared across service test modules)
# ---------------------------------------------------------------------------


class Seeder:
    """Creates catalog records through the services, asserting success."""

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog

    def unit(
        self,
        product_unit_id: int,
        *,
        product_id: int | None = None,
        unit_id: int = 1,
        category_id: int | None = None,
    ) -> dict[str, Any]:
        from pricerules.services.units import UnitService

        result = UnitService(self.catalog).register_unit(
            product_unit_id,
            product_id=product_id if product_id is not None else product_unit_id,
            unit_id=unit_id,
            category_id=category_id,
        )
        assert result.ok, result.error
        return result.data

    def price_header(
        self, name: str = "Base list", start: str = "2024-01-01", end: str | None = None
    ) -> dict[str, Any]:
        from pricerules.services.prices import PriceCatalogService

        result = PriceCatalogService(self.catalog).create_header(name, start, end)
        assert result.ok, result.error
        return result.data

    def price(self, unit_id: int, amount: str, header_id: int, **kwargs: Any) -> dict[str, Any]:
        from pricerules.services.prices import PriceCatalogService

        result = PriceCatalogService(self.catalog).insert_price(
            unit_id, amount, header_id, **kwargs
        )
        assert result.ok, result.error
        return result.data

    def promo_header(
        self, name: str = "Sale", start: str = "2024-01-01", end: str = "2024-12-31"
    ) -> dict[str, Any]:
        from pricerules.services.promotions import PromotionCatalogService

        result = PromotionCatalogService(self.catalog).create_header(name, start, end)
        assert result.ok, result.error
        return result.data

    def line(
        self,
        header_id: int,
        target_type: str,
        target_id: int,
        promotion_type: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        from pricerules.services.promotions import PromotionCatalogService

        result = PromotionCatalogService(self.catalog).insert_line(
            header_id, target_type, target_id, promotion_type, **kwargs
        )
        assert result.ok, result.error
        return result.data

    def detail(self, line_id: int, **payload: Any) -> dict[str, Any]:
        from pricerules.services.promotions import PromotionCatalogService

        result = PromotionCatalogService(self.catalog).insert_detail(line_id, payload)
        assert result.ok, result.error
        return result.data


@pytest.fixture
def seed(catalog: Catalog) -> Seeder:
    """Record factory bound to the ``catalog`` fixture."""
    return Seeder(catalog)
