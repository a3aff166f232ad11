"""BaseService: foundation for all pricerules services.

Every service receives a :class:`Catalog` at construction time. Services
own their transaction boundaries via ``self._catalog.transaction()`` and
their lock scopes via ``self._catalog.key_locks()``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from pricerules.domain.timeparse import parse_instant, parse_window
from pricerules.services.result import ServiceError, ServiceResult

if TYPE_CHECKING:
    from pricerules.config.settings import RulesSettings
    from pricerules.domain.errors import RuleEngineError
    from pricerules.domain.intervals import TemporalInterval
    from pricerules.infrastructure.catalog import Catalog

logger = logging.getLogger(__name__)

DateInput = str | datetime | date


class BaseService:
    """Base for all service-layer classes.

    Usage::

        class PriceCatalogService(BaseService):
            def insert_price(self, ...) -> ServiceResult:
                try:
                    with self._catalog.transaction() as txn:
                        ...
                except RuleEngineError as exc:
                    return self._fail("insert_price", exc)
    """

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    @property
    def _settings(self) -> RulesSettings:
        return self._catalog.settings

    def _instant(self, value: DateInput, *, field: str = "at") -> datetime:
        return parse_instant(value, tz=self._settings.tz, field=field)

    def _window(
        self,
        start: DateInput,
        end: DateInput | None,
        *,
        start_field: str = "start",
        end_field: str = "end",
    ) -> TemporalInterval:
        return parse_window(
            start,
            end,
            tz=self._settings.tz,
            start_field=start_field,
            end_field=end_field,
        )

    def _ok(
        self,
        op: str,
        data: dict[str, Any],
        *,
        version: int | None = None,
        warnings: list[str] | None = None,
    ) -> ServiceResult:
        meta = {"catalog_version": version} if version is not None else None
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings or [], meta=meta)

    def _fail(self, op: str, exc: RuleEngineError) -> ServiceResult:
        logger.debug("%s failed: %s %s", op, exc.code, exc.message)
        return ServiceResult(ok=False, op=op, error=ServiceError.from_exception(exc))
