"""Tests for the catalog version counter."""

from sqlalchemy.engine import Engine

from pricerules.infrastructure.database.counters import bump_version, current_version


class TestVersionCounter:
    def test_starts_at_zero(self, db_engine: Engine) -> None:
        with db_engine.connect() as conn:
            assert current_version(conn) == 0

    def test_bump_increments(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            versions = [bump_version(conn) for _ in range(3)]
        assert versions == [1, 2, 3]
        with db_engine.connect() as conn:
            assert current_version(conn) == 3

    def test_bump_rolls_back_with_transaction(self, db_engine: Engine) -> None:
        conn = db_engine.connect()
        trans = conn.begin()
        bump_version(conn)
        trans.rollback()
        conn.close()
        with db_engine.connect() as conn:
            assert current_version(conn) == 0
