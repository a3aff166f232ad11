"""Catalog version counter.

Every committed mutation bumps the version inside its own transaction, so
a snapshot tagged with version N reflects exactly the writes up to N.

The caller owns the transaction; pass a ``Connection`` obtained from
``engine.begin()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from pricerules.infrastructure.database.engine import VERSION_COUNTER
from pricerules.infrastructure.database.schema import catalog_counters

if TYPE_CHECKING:
    from sqlalchemy import Connection


def current_version(conn: Connection) -> int:
    """Read the catalog version visible to *conn*."""
    row = conn.execute(
        select(catalog_counters.c.value).where(catalog_counters.c.name == VERSION_COUNTER)
    ).one()
    return int(row.value)


def bump_version(conn: Connection) -> int:
    """Increment the catalog version and return the new value.

    The increment becomes part of the caller's transaction; commit or
    rollback is the caller's responsibility.
    """
    new_value = current_version(conn) + 1
    conn.execute(
        update(catalog_counters)
        .where(catalog_counters.c.name == VERSION_COUNTER)
        .values(value=new_value)
    )
    return new_value
