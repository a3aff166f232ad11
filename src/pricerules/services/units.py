"""UnitService: registers the product units prices and rules refer to.

Product units are owned by the product catalog; pricerules keeps a copy
of the fields it needs (product, category) so evaluation can resolve
category rules without a second lookup.
"""

from __future__ import annotations

import logging

from pricerules.domain.errors import FieldError, RuleEngineError, ValidationError
from pricerules.domain.records import ProductUnit
from pricerules.services.base import BaseService
from pricerules.services.contracts import record_payload
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import traced

logger = logging.getLogger(__name__)


class UnitService(BaseService):
    """Registers and updates product units."""

    @traced
    def register_unit(
        self,
        product_unit_id: int,
        *,
        product_id: int,
        unit_id: int,
        category_id: int | None = None,
        name: str | None = None,
    ) -> ServiceResult:
        """Insert or replace one product unit."""
        op = "register_unit"
        try:
            errors = [
                FieldError(field, "must be a positive integer")
                for field, value in (
                    ("product_unit_id", product_unit_id),
                    ("product_id", product_id),
                    ("unit_id", unit_id),
                    ("category_id", category_id),
                )
                if value is not None and value <= 0
            ]
            if errors:
                raise ValidationError(errors)

            unit = ProductUnit(
                id=product_unit_id,
                product_id=product_id,
                unit_id=unit_id,
                category_id=category_id,
                name=name,
            )
            with self._catalog.transaction() as txn:
                txn.upsert_unit(unit)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Registered product unit %s (product %s)", unit.id, unit.product_id)
        return self._ok(op, record_payload(unit), version=version)

    @traced
    def list_units(self) -> ServiceResult:
        snapshot = self._catalog.snapshot()
        items = [record_payload(u) for u in snapshot.units]
        return self._ok(
            "list_units", {"count": len(items), "items": items}, version=snapshot.version
        )
