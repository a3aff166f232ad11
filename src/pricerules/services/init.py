"""InitService: lay down a new catalog directory.

Writes ``pricerules.toml`` with the chosen name and timezone and creates
the SQLite database under ``.pricerules/``. Runs before any settings
exist, so it is a static entry point rather than a :class:`BaseService`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pricerules.config.discovery import CONFIG_FILENAME
from pricerules.config.models import CatalogConfig
from pricerules.domain.errors import RuleEngineError, StateError, ValidationError
from pricerules.domain.timeparse import resolve_timezone
from pricerules.infrastructure.database.counters import current_version
from pricerules.infrastructure.database.engine import init_database
from pricerules.services.result import ServiceError, ServiceResult
from pricerules.services.telemetry import traced

logger = logging.getLogger(__name__)

_CONFIG_TEMPLATE = """\
[catalog]
name = "{name}"
db_filename = "{db_filename}"

[time]
timezone = "{timezone}"

[promotions]
precedence = "product_over_category"
enforce_header_window = true

[evaluation]
gift_policy = "cap"
amount_places = 2
"""


class InitService:
    """Creates catalog directories."""

    @staticmethod
    @traced
    def init_catalog(
        path: Path,
        *,
        name: str,
        timezone: str = "UTC",
    ) -> ServiceResult:
        """Create ``pricerules.toml`` and an empty catalog database at *path*."""
        op = "init"
        try:
            try:
                resolve_timezone(timezone)
            except ValueError as exc:
                raise ValidationError.single("timezone", str(exc)) from exc
            if not name.strip() or '"' in name or "\\" in name:
                raise ValidationError.single("name", "must be non-empty plain text")

            config_file = path / CONFIG_FILENAME
            if config_file.exists():
                raise StateError(
                    f"{config_file} already exists; refusing to overwrite",
                    detail={"path": str(config_file)},
                )

            db_filename = CatalogConfig().db_filename
            path.mkdir(parents=True, exist_ok=True)
            config_file.write_text(
                _CONFIG_TEMPLATE.format(
                    name=name.strip(), db_filename=db_filename, timezone=timezone
                ),
                encoding="utf-8",
            )

            engine = init_database(path, db_filename)
            try:
                with engine.connect() as conn:
                    version = current_version(conn)
            finally:
                engine.dispose()
        except RuleEngineError as exc:
            return ServiceResult(ok=False, op=op, error=ServiceError.from_exception(exc))

        logger.info("Initialized catalog %r at %s", name, path)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "name": name.strip(),
                "path": str(path),
                "config": str(config_file),
                "database": str(path / ".pricerules" / db_filename),
                "timezone": timezone,
                "catalog_version": version,
            },
        )
