"""Database engine setup for SQLite with WAL mode.

WAL mode lets evaluations read a consistent catalog while a mutation
commits. The DB is stored at {catalog_root}/.pricerules/{db_filename}.

pysqlite's own transaction handling is switched off (it would defer BEGIN
until the first write, leaving every earlier SELECT in autocommit). The
``begin`` listener emits the BEGIN itself:

- ``BEGIN IMMEDIATE`` for connections opened through :func:`write_connection`,
  so the conflict check and the insert run under one write lock shared by
  every process using the file;
- plain ``BEGIN`` otherwise, which in WAL mode pins one read snapshot for
  the whole transaction.

SQLAlchemy Core (not ORM) is used: the services work with frozen domain
records, so there is nothing for an identity map to track.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Connection, create_engine, event, insert, select
from sqlalchemy.engine import Engine

from pricerules.infrastructure.database.schema import catalog_counters, metadata

VERSION_COUNTER = "version"
BUSY_TIMEOUT_MS = 10_000

# Connection execution option selecting the BEGIN flavour.
BEGIN_MODE = "pricerules_begin"


def create_db_engine(db_path: Path, *, busy_timeout_ms: int = BUSY_TIMEOUT_MS) -> Engine:
    """Create a SQLite engine with WAL mode, foreign keys and explicit BEGINs."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"isolation_level": None},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get(BEGIN_MODE, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")

    return engine


@contextmanager
def write_connection(engine: Engine) -> Iterator[Connection]:
    """A connection inside ``BEGIN IMMEDIATE``; commits on clean exit.

    The write lock is taken before the first read, so another writer
    (thread or process) waits until this transaction ends.
    """
    with engine.connect() as conn:
        conn.execution_options(**{BEGIN_MODE: "IMMEDIATE"})
        with conn.begin():
            yield conn


def init_database(
    catalog_root: Path,
    db_filename: str = "catalog.db",
    *,
    busy_timeout_ms: int = BUSY_TIMEOUT_MS,
) -> Engine:
    """Initialize the catalog database under ``{catalog_root}/.pricerules/``.

    Creates the directory, all tables from :data:`schema.metadata`, and
    seeds the catalog version counter. Idempotent.
    """
    data_dir = catalog_root / ".pricerules"
    data_dir.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(data_dir / db_filename, busy_timeout_ms=busy_timeout_ms)
    metadata.create_all(engine)
    _seed_counters(engine)
    return engine


def _seed_counters(engine: Engine) -> None:
    with write_connection(engine) as conn:
        row = conn.execute(
            select(catalog_counters.c.name).where(catalog_counters.c.name == VERSION_COUNTER)
        ).first()
        if row is None:
            conn.execute(insert(catalog_counters).values(name=VERSION_COUNTER, value=0))
