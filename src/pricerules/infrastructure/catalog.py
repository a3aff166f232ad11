"""Catalog: the persistence collaborator injected into every service.

The Catalog owns the database engine and the two pieces of coordination
the engine needs from its host:

- **Per-key locks**: mutations keyed by ``product_unit_id`` or
  ``(target_type, target_id)`` are serialized between threads of this
  process; every write transaction also opens with ``BEGIN IMMEDIATE``,
  which serializes writers across processes sharing the file. Two
  concurrent inserts therefore cannot both pass the conflict check and
  then both commit.
- **Versioned snapshots**: every committed mutation bumps the catalog
  version; :meth:`Catalog.snapshot` returns one immutable
  :class:`CatalogSnapshot` per version.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable, Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import Table, insert, select, update

from pricerules.domain.conflicts import IntervalEntry
from pricerules.domain.details import AnyDetail
from pricerules.domain.intervals import TemporalInterval
from pricerules.domain.records import (
    PriceHeader,
    ProductUnit,
    PromotionHeader,
    PromotionLine,
    UnitPrice,
)
from pricerules.domain.snapshot import CatalogSnapshot
from pricerules.domain.types import PromotionType, TargetType
from pricerules.infrastructure.database.counters import bump_version, current_version
from pricerules.infrastructure.database.engine import init_database, write_connection
from pricerules.infrastructure.database.rows import (
    decode_ts,
    detail_from_row,
    detail_values,
    encode_ts,
    line_from_row,
    price_from_row,
    price_header_from_row,
    promotion_header_from_row,
    unit_from_row,
)
from pricerules.infrastructure.database.schema import (
    price_headers,
    product_units,
    promotion_details,
    promotion_headers,
    promotion_lines,
    unit_prices,
)

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine

    from pricerules.config.settings import RulesSettings

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# CatalogTransaction: yielded to callers within transaction()
# ---------------------------------------------------------------------------


@dataclass
class CatalogTransaction:
    """Active write transaction with typed record access.

    Reads see the transaction's own writes. Call :meth:`touch` once per
    mutation so the catalog version advances with the commit.
    """

    conn: Connection
    _touched: bool = False

    # --- reads -------------------------------------------------------

    def get_unit(self, unit_id: int) -> ProductUnit | None:
        row = self.conn.execute(select(product_units).where(product_units.c.id == unit_id)).first()
        return unit_from_row(row) if row else None

    def get_price_header(self, header_id: int) -> PriceHeader | None:
        row = self.conn.execute(
            select(price_headers).where(price_headers.c.id == header_id)
        ).first()
        return price_header_from_row(row) if row else None

    def get_price(self, price_id: int) -> UnitPrice | None:
        row = self.conn.execute(select(unit_prices).where(unit_prices.c.id == price_id)).first()
        return price_from_row(row) if row else None

    def get_promotion_header(self, header_id: int) -> PromotionHeader | None:
        row = self.conn.execute(
            select(promotion_headers).where(promotion_headers.c.id == header_id)
        ).first()
        return promotion_header_from_row(row) if row else None

    def get_line(self, line_id: int) -> PromotionLine | None:
        row = self.conn.execute(
            select(promotion_lines).where(promotion_lines.c.id == line_id)
        ).first()
        return line_from_row(row) if row else None

    def get_detail(self, detail_id: int) -> AnyDetail | None:
        row = self.conn.execute(
            select(promotion_details).where(promotion_details.c.id == detail_id)
        ).first()
        return detail_from_row(row) if row else None

    def active_price_entries(self, product_unit_id: int) -> list[IntervalEntry]:
        """Windows of the active prices registered for one unit."""
        rows = self.conn.execute(
            select(unit_prices.c.id, unit_prices.c.time_start, unit_prices.c.time_end).where(
                unit_prices.c.product_unit_id == product_unit_id,
                unit_prices.c.active == 1,
            )
        ).all()
        return [_entry(row.id, row.time_start, row.time_end) for row in rows]

    def active_line_entries(self, target_type: TargetType, target_id: int) -> list[IntervalEntry]:
        """Windows of the active lines registered for one target."""
        rows = self.conn.execute(
            select(
                promotion_lines.c.id, promotion_lines.c.start_date, promotion_lines.c.end_date
            ).where(
                promotion_lines.c.target_type == str(target_type),
                promotion_lines.c.target_id == target_id,
                promotion_lines.c.active == 1,
            )
        ).all()
        return [_entry(row.id, row.start_date, row.end_date) for row in rows]

    def prices_for_header(self, header_id: int) -> list[UnitPrice]:
        rows = self.conn.execute(
            select(unit_prices)
            .where(unit_prices.c.price_header_id == header_id)
            .order_by(unit_prices.c.id)
        ).all()
        return [price_from_row(row) for row in rows]

    def lines_for_header(self, header_id: int) -> list[PromotionLine]:
        rows = self.conn.execute(
            select(promotion_lines)
            .where(promotion_lines.c.promotion_header_id == header_id)
            .order_by(promotion_lines.c.id)
        ).all()
        return [line_from_row(row) for row in rows]

    def details_for_line(self, line_id: int) -> list[AnyDetail]:
        rows = self.conn.execute(
            select(promotion_details)
            .where(promotion_details.c.promotion_line_id == line_id)
            .order_by(promotion_details.c.id)
        ).all()
        return [detail_from_row(row) for row in rows]

    def has_product(self, product_id: int) -> bool:
        """Whether any registered unit belongs to *product_id*."""
        row = self.conn.execute(
            select(product_units.c.id).where(product_units.c.product_id == product_id).limit(1)
        ).first()
        return row is not None

    def has_category(self, category_id: int) -> bool:
        """Whether any registered unit is filed under *category_id*."""
        row = self.conn.execute(
            select(product_units.c.id).where(product_units.c.category_id == category_id).limit(1)
        ).first()
        return row is not None

    # --- writes ------------------------------------------------------

    def touch(self) -> int:
        """Bump the catalog version once for this transaction."""
        if self._touched:
            return current_version(self.conn)
        self._touched = True
        return bump_version(self.conn)

    def upsert_unit(self, unit: ProductUnit) -> ProductUnit:
        values = unit.model_dump(exclude={"id"})
        if self.get_unit(unit.id) is None:
            self.conn.execute(insert(product_units).values(id=unit.id, **values))
        else:
            self.conn.execute(
                update(product_units).where(product_units.c.id == unit.id).values(**values)
            )
        self.touch()
        return unit

    def insert_price_header(
        self,
        *,
        name: str,
        window: TemporalInterval,
        description: str | None = None,
    ) -> PriceHeader:
        result = self.conn.execute(
            insert(price_headers).values(
                name=name,
                description=description,
                time_start=encode_ts(window.start),
                time_end=encode_ts(window.end),
                active=1,
                created=_now(),
            )
        )
        self.touch()
        header = self.get_price_header(_pk(result))
        assert header is not None
        return header

    def insert_price(
        self,
        *,
        product_unit_id: int,
        price: Decimal,
        header_id: int,
        window: TemporalInterval,
    ) -> UnitPrice:
        result = self.conn.execute(
            insert(unit_prices).values(
                product_unit_id=product_unit_id,
                price=str(price),
                price_header_id=header_id,
                time_start=encode_ts(window.start),
                time_end=encode_ts(window.end),
                active=1,
                created=_now(),
            )
        )
        self.touch()
        record = self.get_price(_pk(result))
        assert record is not None
        return record

    def insert_promotion_header(self, *, name: str, window: TemporalInterval) -> PromotionHeader:
        result = self.conn.execute(
            insert(promotion_headers).values(
                name=name,
                start_date=encode_ts(window.start),
                end_date=encode_ts(window.end),
                active=1,
                created=_now(),
            )
        )
        self.touch()
        header = self.get_promotion_header(_pk(result))
        assert header is not None
        return header

    def insert_line(
        self,
        *,
        header_id: int,
        target_type: TargetType,
        target_id: int,
        promotion_type: PromotionType,
        window: TemporalInterval,
    ) -> PromotionLine:
        result = self.conn.execute(
            insert(promotion_lines).values(
                promotion_header_id=header_id,
                target_type=str(target_type),
                target_id=target_id,
                type=str(promotion_type),
                start_date=encode_ts(window.start),
                end_date=encode_ts(window.end),
                active=1,
                created=_now(),
            )
        )
        self.touch()
        line = self.get_line(_pk(result))
        assert line is not None
        return line

    def insert_detail(
        self,
        *,
        line_id: int,
        promotion_type: PromotionType,
        fields: dict[str, Any],
    ) -> AnyDetail:
        result = self.conn.execute(
            insert(promotion_details).values(
                promotion_line_id=line_id,
                type=str(promotion_type),
                active=1,
                created=_now(),
                **detail_values(fields),
            )
        )
        self.touch()
        detail = self.get_detail(_pk(result))
        assert detail is not None
        return detail

    def set_line_type(self, line_id: int, promotion_type: PromotionType) -> None:
        self.conn.execute(
            update(promotion_lines)
            .where(promotion_lines.c.id == line_id)
            .values(type=str(promotion_type))
        )
        self.touch()

    def update_price_header(
        self,
        header_id: int,
        *,
        name: str,
        description: str | None,
        window: TemporalInterval,
    ) -> PriceHeader:
        self.conn.execute(
            update(price_headers)
            .where(price_headers.c.id == header_id)
            .values(
                name=name,
                description=description,
                time_start=encode_ts(window.start),
                time_end=encode_ts(window.end),
            )
        )
        self.touch()
        header = self.get_price_header(header_id)
        assert header is not None
        return header

    def update_promotion_header(
        self, header_id: int, *, name: str, window: TemporalInterval
    ) -> PromotionHeader:
        self.conn.execute(
            update(promotion_headers)
            .where(promotion_headers.c.id == header_id)
            .values(
                name=name,
                start_date=encode_ts(window.start),
                end_date=encode_ts(window.end),
            )
        )
        self.touch()
        header = self.get_promotion_header(header_id)
        assert header is not None
        return header

    def update_line(
        self,
        line_id: int,
        *,
        target_type: TargetType,
        target_id: int,
        window: TemporalInterval,
    ) -> PromotionLine:
        self.conn.execute(
            update(promotion_lines)
            .where(promotion_lines.c.id == line_id)
            .values(
                target_type=str(target_type),
                target_id=target_id,
                start_date=encode_ts(window.start),
                end_date=encode_ts(window.end),
            )
        )
        self.touch()
        line = self.get_line(line_id)
        assert line is not None
        return line

    def update_detail(self, detail_id: int, fields: dict[str, Any]) -> AnyDetail:
        """Replace a detail's variant fields; columns absent from *fields* are cleared."""
        self.conn.execute(
            update(promotion_details)
            .where(promotion_details.c.id == detail_id)
            .values(**detail_values(fields, clear_others=True))
        )
        self.touch()
        detail = self.get_detail(detail_id)
        assert detail is not None
        return detail

    def set_active(self, table: Table, record_id: int, active: bool) -> None:
        self.conn.execute(update(table).where(table.c.id == record_id).values(active=int(active)))
        self.touch()

    def deactivate_children(self, table: Table, parent_column: str, parent_id: int) -> int:
        """Soft-disable every active child row of a header; returns the count."""
        column = table.c[parent_column]
        result = self.conn.execute(
            update(table).where(column == parent_id, table.c.active == 1).values(active=0)
        )
        self.touch()
        return int(result.rowcount or 0)


def _pk(result: Any) -> int:
    return int(result.inserted_primary_key[0])


def _entry(record_id: int, start: str, end: str | None) -> IntervalEntry:
    start_at = decode_ts(start)
    assert start_at is not None
    return IntervalEntry(
        record_id=record_id,
        window=TemporalInterval(start=start_at, end=decode_ts(end)),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Catalog:
    """SQLite-backed catalog store with per-key mutation locks."""

    def __init__(self, settings: RulesSettings) -> None:
        self._settings = settings
        self._engine: Engine = init_database(
            settings.catalog_root,
            settings.catalog.db_filename,
            busy_timeout_ms=settings.catalog.busy_timeout_ms,
        )
        self._locks: dict[Hashable, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._snapshot: CatalogSnapshot | None = None
        self._snapshot_guard = threading.Lock()

    @property
    def settings(self) -> RulesSettings:
        return self._settings

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def root(self) -> Path:
        return self._settings.catalog_root

    def close(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Mutation coordination
    # ------------------------------------------------------------------

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def key_locks(self, keys: Iterable[Hashable]) -> Iterator[None]:
        """Hold the mutation locks of every key in *keys*.

        Locks are taken in a fixed order so two batches touching the same
        keys cannot deadlock.
        """
        ordered = sorted(set(keys), key=repr)
        with ExitStack() as stack:
            for key in ordered:
                stack.enter_context(self._lock_for(key))
            yield

    @contextmanager
    def transaction(self) -> Iterator[CatalogTransaction]:
        """Atomic write transaction; any exception rolls every write back.

        Opens with ``BEGIN IMMEDIATE``: reads made for a conflict check and
        the writes that follow hold one database-wide write lock, so a
        writer in another process cannot commit in between.
        """
        with write_connection(self._engine) as conn:
            txn = CatalogTransaction(conn=conn)
            yield txn
        if txn._touched:
            logger.debug("Catalog transaction committed with a version bump")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @contextmanager
    def reading(self) -> Iterator[Connection]:
        """Read-only transaction; every SELECT in it sees one committed state."""
        with self._engine.connect() as conn, conn.begin():
            yield conn

    def version(self) -> int:
        with self.reading() as conn:
            return current_version(conn)

    def snapshot(self) -> CatalogSnapshot:
        """The snapshot for the current catalog version.

        Reloaded only when the version has moved since the cached one.
        """
        with self._snapshot_guard:
            cached = self._snapshot
            if cached is not None and cached.version == self.version():
                return cached
            self._snapshot = self._load_snapshot()
            logger.debug("Loaded catalog snapshot v%s", self._snapshot.version)
            return self._snapshot

    def _load_snapshot(self) -> CatalogSnapshot:
        with self.reading() as conn:
            version = current_version(conn)
            units = conn.execute(select(product_units).order_by(product_units.c.id)).all()
            p_headers = conn.execute(select(price_headers).order_by(price_headers.c.id)).all()
            prices = conn.execute(select(unit_prices).order_by(unit_prices.c.id)).all()
            pr_headers = conn.execute(
                select(promotion_headers).order_by(promotion_headers.c.id)
            ).all()
            lines = conn.execute(select(promotion_lines).order_by(promotion_lines.c.id)).all()
            details = conn.execute(
                select(promotion_details).order_by(promotion_details.c.id)
            ).all()

        return CatalogSnapshot(
            version=version,
            taken_at=datetime.now(UTC),
            units=tuple(unit_from_row(r) for r in units),
            price_headers=tuple(price_header_from_row(r) for r in p_headers),
            prices=tuple(price_from_row(r) for r in prices),
            promotion_headers=tuple(promotion_header_from_row(r) for r in pr_headers),
            lines=tuple(line_from_row(r) for r in lines),
            details=tuple(detail_from_row(r) for r in details),
        )
