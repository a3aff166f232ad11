"""SQLAlchemy Core table definitions for the catalog database.

Instants are stored as UTC ISO-8601 text and money as decimal text so
values round-trip exactly. ``active`` is 0/1.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()

product_units = Table(
    "product_units",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("product_id", Integer, nullable=False),
    Column("unit_id", Integer, nullable=False),
    Column("category_id", Integer),
    Column("name", Text),
)

price_headers = Table(
    "price_headers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("time_start", Text, nullable=False),
    Column("time_end", Text),
    Column("active", Integer, nullable=False, default=1, server_default="1"),
    Column("created", Text, nullable=False),
)

unit_prices = Table(
    "unit_prices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("product_unit_id", Integer, ForeignKey("product_units.id"), nullable=False),
    Column("price", Text, nullable=False),
    Column("price_header_id", Integer, ForeignKey("price_headers.id"), nullable=False),
    Column("time_start", Text, nullable=False),
    Column("time_end", Text),
    Column("active", Integer, nullable=False, default=1, server_default="1"),
    Column("created", Text, nullable=False),
    Index("ix_unit_prices_unit_active", "product_unit_id", "active"),
)

promotion_headers = Table(
    "promotion_headers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", Text, nullable=False),
    Column("start_date", Text, nullable=False),
    Column("end_date", Text, nullable=False),
    Column("active", Integer, nullable=False, default=1, server_default="1"),
    Column("created", Text, nullable=False),
)

promotion_lines = Table(
    "promotion_lines",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "promotion_header_id", Integer, ForeignKey("promotion_headers.id"), nullable=False
    ),
    Column("target_type", Text, nullable=False),  # PRODUCT | CATEGORY
    Column("target_id", Integer, nullable=False),
    Column("type", Text, nullable=False),
    Column("start_date", Text, nullable=False),
    Column("end_date", Text, nullable=False),
    Column("active", Integer, nullable=False, default=1, server_default="1"),
    Column("created", Text, nullable=False),
    Index("ix_promotion_lines_target_active", "target_type", "target_id", "active"),
)

# One row per detail; only the columns of the row's variant are populated.
promotion_details = Table(
    "promotion_details",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("promotion_line_id", Integer, ForeignKey("promotion_lines.id"), nullable=False),
    Column("type", Text, nullable=False),
    Column("discount_percent", Text),
    Column("discount_amount", Text),
    Column("min_amount", Text),
    Column("max_discount", Text),
    Column("condition_product_unit_id", Integer),
    Column("condition_quantity", Integer),
    Column("gift_product_unit_id", Integer),
    Column("free_quantity", Integer),
    Column("active", Integer, nullable=False, default=1, server_default="1"),
    Column("created", Text, nullable=False),
)

catalog_counters = Table(
    "catalog_counters",
    metadata,
    Column("name", Text, primary_key=True),
    Column("value", Integer, nullable=False),
)
