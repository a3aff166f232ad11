"""SQLite database engine, schema, and catalog version counter via SQLAlchemy Core."""

from pricerules.infrastructure.database.counters import bump_version, current_version
from pricerules.infrastructure.database.engine import (
    create_db_engine,
    init_database,
    write_connection,
)
from pricerules.infrastructure.database.schema import (
    catalog_counters,
    metadata,
    price_headers,
    product_units,
    promotion_details,
    promotion_headers,
    promotion_lines,
    unit_prices,
)

__all__ = [
    "bump_version",
    "catalog_counters",
    "create_db_engine",
    "current_version",
    "init_database",
    "metadata",
    "price_headers",
    "product_units",
    "promotion_details",
    "promotion_headers",
    "promotion_lines",
    "unit_prices",
    "write_connection",
]
