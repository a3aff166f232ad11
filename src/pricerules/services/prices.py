"""PriceCatalogService: price headers and unit prices.

Pipeline for every price mutation: PARSE → LOCK KEY → CONFLICT CHECK →
PERSIST (+ version bump) → RESPOND. At any instant a product unit has at
most one active price.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from pricerules.domain.conflicts import Conflict, IntervalEntry, IntervalIndex, check_conflict
from pricerules.domain.errors import (
    ConflictError,
    FieldError,
    NotFoundError,
    RuleEngineError,
    StateError,
    ValidationError,
)
from pricerules.domain.records import PriceHeader, UnitPrice, header_status
from pricerules.infrastructure.database.schema import price_headers, unit_prices
from pricerules.services._helpers import now_utc, parse_id, parse_money, require_name
from pricerules.services.base import BaseService, DateInput
from pricerules.services.contracts import (
    BulkInsertData,
    ConflictCheckData,
    PriceListData,
    dump_validated,
    record_payload,
)
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from pricerules.domain.intervals import TemporalInterval
    from pricerules.infrastructure.catalog import CatalogTransaction

logger = logging.getLogger(__name__)


def _price_key(product_unit_id: int) -> tuple[str, int]:
    return ("price", product_unit_id)


class PriceCatalogService(BaseService):
    """Maintains price headers and the unit prices grouped under them."""

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    @traced
    def create_header(
        self,
        name: str,
        time_start: DateInput,
        time_end: DateInput | None = None,
        *,
        description: str | None = None,
    ) -> ServiceResult:
        """Create a price header (campaign) with its default window."""
        op = "create_price_header"
        try:
            errors = require_name(name)
            window: TemporalInterval | None = None
            try:
                window = self._window(
                    time_start, time_end, start_field="time_start", end_field="time_end"
                )
            except ValidationError as exc:
                errors.extend(exc.errors)
            if errors:
                raise ValidationError(errors)
            assert window is not None

            with self._catalog.transaction() as txn:
                header = txn.insert_price_header(
                    name=name.strip(), window=window, description=description
                )
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Created price header %s (%s) %s", header.id, header.name, window)
        return self._ok(op, self._header_payload(header), version=version)

    @traced
    def deactivate_header(self, header_id: int) -> ServiceResult:
        """Deactivate a header and every active price under it."""
        op = "deactivate_price_header"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                txn.set_active(price_headers, header.id, False)
                cascaded = txn.deactivate_children(unit_prices, "price_header_id", header.id)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Deactivated price header %s and %d price(s)", header_id, cascaded)
        return self._ok(
            op,
            {"id": header_id, "active": False, "deactivated_prices": cascaded},
            version=version,
        )

    @traced
    def activate_header(self, header_id: int, *, with_prices: bool = True) -> ServiceResult:
        """Reactivate a header and, with *with_prices*, its inactive prices.

        Restored prices are checked like a bulk insert: against the active
        catalog and against each other. Any conflict aborts the whole
        restore. An already active header is left as it is.
        """
        op = "activate_price_header"
        try:
            with self._catalog.transaction() as txn:
                peek = self._require_header(txn, header_id)
                pending = self._restorable_prices(txn, peek) if with_prices else []

            keys = [_price_key(p.product_unit_id) for p in pending]
            with self._catalog.key_locks(keys), self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                restored = self._restorable_prices(txn, header) if with_prices else []

                index = IntervalIndex()
                loaded: set[int] = set()
                with trace_span("conflict_check"):
                    for price in restored:
                        unit_id = price.product_unit_id
                        if unit_id not in loaded:
                            index.extend(unit_id, txn.active_price_entries(unit_id))
                            loaded.add(unit_id)
                        conflict = index.check(unit_id, price.window, exclude_id=price.id)
                        if conflict is not None:
                            raise self._conflict_error(txn, unit_id, conflict)
                        index.add(unit_id, IntervalEntry(record_id=price.id, window=price.window))

                for price in restored:
                    txn.set_active(unit_prices, price.id, True)
                txn.set_active(price_headers, header.id, True)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Activated price header %s and %d price(s)", header_id, len(restored))
        return self._ok(
            op,
            {"id": header_id, "active": True, "activated_prices": len(restored)},
            version=version,
        )

    @traced
    def update_header(
        self,
        header_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        time_start: DateInput | None = None,
        time_end: DateInput | None = None,
        open_ended: bool = False,
    ) -> ServiceResult:
        """Rename a header or change its default window.

        The window only seeds prices inserted afterwards; stored prices
        keep their own windows. *open_ended* drops the end bound and an
        empty *description* clears it.
        """
        op = "update_price_header"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                errors = require_name(name) if name is not None else []
                if open_ended and time_end not in (None, ""):
                    errors.append(FieldError("time_end", "cannot be combined with open_ended"))
                window = header.window
                if time_start is not None or time_end is not None or open_ended:
                    end: DateInput | None = header.time_end
                    if open_ended:
                        end = None
                    elif time_end not in (None, ""):
                        end = time_end
                    try:
                        window = self._window(
                            time_start if time_start is not None else header.time_start,
                            end,
                            start_field="time_start",
                            end_field="time_end",
                        )
                    except ValidationError as exc:
                        errors.extend(exc.errors)
                if errors:
                    raise ValidationError(errors)

                if description is None:
                    description = header.description
                elif not description.strip():
                    description = None
                updated = txn.update_price_header(
                    header_id,
                    name=name.strip() if name is not None else header.name,
                    description=description.strip() if description is not None else None,
                    window=window,
                )
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Updated price header %s (%s) %s", header_id, updated.name, window)
        return self._ok(op, self._header_payload(updated), version=version)

    @traced
    def list_prices(self, header_id: int) -> ServiceResult:
        """Every price under a header, with the header's status right now."""
        op = "list_prices"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                prices = txn.prices_for_header(header_id)
        except RuleEngineError as exc:
            return self._fail(op, exc)

        items = [record_payload(p) for p in prices]
        data = {"header": self._header_payload(header), "count": len(items), "items": items}
        return self._ok(op, dump_validated(PriceListData, data))

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    @traced
    def insert_price(
        self,
        product_unit_id: int,
        price: Any,
        header_id: int,
        *,
        time_start: DateInput | None = None,
        time_end: DateInput | None = None,
    ) -> ServiceResult:
        """Add a price for one unit under *header_id*.

        The window defaults to the header's window; a bound given
        explicitly overrides the header's.
        """
        op = "insert_price"
        try:
            with trace_span("validate"):
                amount = parse_money(price)

            with self._catalog.key_locks([_price_key(product_unit_id)]):
                with self._catalog.transaction() as txn:
                    header = self._require_writable_header(txn, header_id)
                    self._require_unit(txn, product_unit_id)
                    window = self._price_window(header, time_start, time_end)

                    with trace_span("conflict_check"):
                        conflict = check_conflict(
                            product_unit_id,
                            txn.active_price_entries(product_unit_id),
                            window,
                        )
                        if conflict is not None:
                            raise self._conflict_error(txn, product_unit_id, conflict)

                    with trace_span("persist"):
                        record = txn.insert_price(
                            product_unit_id=product_unit_id,
                            price=amount,
                            header_id=header_id,
                            window=window,
                        )
                        version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info(
            "Inserted price %s for unit %s: %s %s",
            record.id,
            product_unit_id,
            amount,
            record.window,
        )
        return self._ok(op, record_payload(record), version=version)

    @traced
    def bulk_insert_prices(
        self,
        header_id: int,
        items: Sequence[Any],
    ) -> ServiceResult:
        """Insert many prices under one header, all or nothing.

        Items are checked in order against the stored prices and against
        the earlier items of the same batch. The first failing item aborts
        the whole batch and its index is reported in the error detail.
        """
        op = "bulk_insert_prices"
        try:
            with trace_span("validate"):
                if not items:
                    raise ValidationError.single("items", "must not be empty")
                parsed = [self._parse_item(i, item) for i, item in enumerate(items)]

            keys = [_price_key(unit_id) for unit_id, _, _, _ in parsed]
            with self._catalog.key_locks(keys), self._catalog.transaction() as txn:
                header = self._require_writable_header(txn, header_id)

                index = IntervalIndex()
                loaded: set[int] = set()
                created: list[UnitPrice] = []
                for i, (unit_id, amount, start, end) in enumerate(parsed):
                    if unit_id not in loaded:
                        self._require_unit(txn, unit_id, detail={"item_index": i})
                        index.extend(unit_id, txn.active_price_entries(unit_id))
                        loaded.add(unit_id)
                    try:
                        window = self._price_window(
                            header, start, end, field_prefix=f"items[{i}]."
                        )
                    except ValidationError as exc:
                        raise ValidationError(exc.errors, detail={"item_index": i}) from exc

                    with trace_span("conflict_check"):
                        conflict = index.check(unit_id, window)
                        if conflict is not None:
                            raise self._conflict_error(txn, unit_id, conflict, item_index=i)

                    record = txn.insert_price(
                        product_unit_id=unit_id,
                        price=amount,
                        header_id=header_id,
                        window=window,
                    )
                    # In-batch entries carry the item index as their id.
                    index.add(unit_id, IntervalEntry(record_id=i, window=window, in_batch=True))
                    created.append(record)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Bulk inserted %d price(s) under header %s", len(created), header_id)
        data = {
            "header_id": header_id,
            "count": len(created),
            "items": [record_payload(p) for p in created],
        }
        return self._ok(op, dump_validated(BulkInsertData, data), version=version)

    @traced
    def check_conflict(
        self,
        product_unit_id: int,
        header_id: int,
        *,
        time_start: DateInput | None = None,
        time_end: DateInput | None = None,
    ) -> ServiceResult:
        """Report every active price a candidate window would collide with.

        Read-only pre-flight for :meth:`insert_price`.
        """
        op = "check_conflict"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                self._require_unit(txn, product_unit_id)
                window = self._price_window(header, time_start, time_end)
                index = IntervalIndex()
                index.extend(product_unit_id, txn.active_price_entries(product_unit_id))
                conflicts = [
                    self._conflict_payload(txn, conflict)
                    for conflict in index.find_all(product_unit_id, window)
                ]
        except RuleEngineError as exc:
            return self._fail(op, exc)

        data = {
            "product_unit_id": product_unit_id,
            "window": window.to_dict(),
            "clear": not conflicts,
            "count": len(conflicts),
            "conflicts": conflicts,
        }
        return self._ok(op, dump_validated(ConflictCheckData, data))

    @traced
    def resolve_price(self, product_unit_id: int, at: DateInput) -> ServiceResult:
        """The effective price of a unit at *at*, or ``None``."""
        op = "resolve_price"
        try:
            instant = self._instant(at)
            snapshot = self._catalog.snapshot()
            if snapshot.unit(product_unit_id) is None:
                raise NotFoundError("product unit", product_unit_id)
        except RuleEngineError as exc:
            return self._fail(op, exc)

        price = snapshot.effective_price(product_unit_id, instant)
        data = {
            "product_unit_id": product_unit_id,
            "at": instant.isoformat(),
            "price": record_payload(price) if price is not None else None,
        }
        return self._ok(op, data, version=snapshot.version)

    @traced
    def deactivate_price(self, price_id: int) -> ServiceResult:
        op = "deactivate_price"
        try:
            with self._catalog.transaction() as txn:
                price = self._require_price(txn, price_id)
                txn.set_active(unit_prices, price.id, False)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Deactivated price %s", price_id)
        return self._ok(op, {"id": price_id, "active": False}, version=version)

    @traced
    def activate_price(self, price_id: int) -> ServiceResult:
        """Reactivate a price; its window is conflict-checked again."""
        op = "activate_price"
        try:
            with self._catalog.transaction() as txn:
                unit_id = self._require_price(txn, price_id).product_unit_id

            with self._catalog.key_locks([_price_key(unit_id)]):
                with self._catalog.transaction() as txn:
                    price = self._require_price(txn, price_id)
                    header = self._require_header(txn, price.price_header_id)
                    if not header.active:
                        raise StateError(
                            f"Price header #{header.id} ('{header.name}') is inactive",
                            detail={"header_id": header.id},
                        )
                    conflict = check_conflict(
                        unit_id,
                        txn.active_price_entries(unit_id),
                        price.window,
                        exclude_id=price.id,
                    )
                    if conflict is not None:
                        raise self._conflict_error(txn, unit_id, conflict)
                    txn.set_active(unit_prices, price.id, True)
                    version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Reactivated price %s", price_id)
        return self._ok(op, {"id": price_id, "active": True}, version=version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _parse_item(
        self, index: int, item: Any
    ) -> tuple[int, Decimal, DateInput | None, DateInput | None]:
        prefix = f"items[{index}]."
        if not isinstance(item, Mapping):
            raise ValidationError(
                [FieldError(f"items[{index}]", f"must be an object, got {type(item).__name__}")],
                detail={"item_index": index},
            )
        errors: list[FieldError] = []

        raw_unit = item.get("product_unit_id", item.get("productUnitId"))
        unit_id: int | None = None
        if raw_unit is None or raw_unit == "":
            errors.append(FieldError(f"{prefix}product_unit_id", "is required"))
        else:
            try:
                unit_id = parse_id(raw_unit, field=f"{prefix}product_unit_id")
            except ValidationError as exc:
                errors.extend(exc.errors)

        amount: Decimal | None = None
        try:
            amount = parse_money(item.get("price"), field=f"{prefix}price")
        except ValidationError as exc:
            errors.extend(exc.errors)

        bounds: dict[str, DateInput | None] = {}
        for name, camel in (("time_start", "timeStart"), ("time_end", "timeEnd")):
            raw = item.get(name, item.get(camel))
            if raw is None or raw == "":
                bounds[name] = None
            elif isinstance(raw, str | date):
                bounds[name] = raw
            else:
                errors.append(
                    FieldError(f"{prefix}{name}", f"must be a date string, got {raw!r}")
                )

        if errors:
            raise ValidationError(errors, detail={"item_index": index})
        assert unit_id is not None and amount is not None
        return unit_id, amount, bounds.get("time_start"), bounds.get("time_end")

    @staticmethod
    def _restorable_prices(txn: CatalogTransaction, header: PriceHeader) -> list[UnitPrice]:
        if header.active:
            return []
        return [p for p in txn.prices_for_header(header.id) if not p.active]

    def _price_window(
        self,
        header: PriceHeader,
        time_start: DateInput | None,
        time_end: DateInput | None,
        *,
        field_prefix: str = "",
    ) -> TemporalInterval:
        if time_start is None and time_end is None:
            return header.window
        return self._window(
            time_start if time_start is not None else header.time_start,
            time_end if time_end is not None else header.time_end,
            start_field=f"{field_prefix}time_start",
            end_field=f"{field_prefix}time_end",
        )

    def _conflict_payload(self, txn: CatalogTransaction, conflict: Conflict) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "key": conflict.key_repr(),
            "existing_id": conflict.existing_id,
            "existing_window": conflict.existing_window.to_dict(),
        }
        if not conflict.in_batch:
            existing = txn.get_price(conflict.existing_id)
            header = txn.get_price_header(existing.price_header_id) if existing else None
            if header is not None:
                payload["header_id"] = header.id
                payload["header_name"] = header.name
        return payload

    def _conflict_error(
        self,
        txn: CatalogTransaction,
        product_unit_id: int,
        conflict: Conflict,
        *,
        item_index: int | None = None,
    ) -> ConflictError:
        where = f"Item {item_index}: price" if item_index is not None else "Price"
        if conflict.in_batch:
            message = (
                f"{where} for unit {product_unit_id} overlaps batch item "
                f"{conflict.existing_id} {conflict.existing_window}"
            )
            return ConflictError(message, conflict=conflict, item_index=item_index)

        payload = self._conflict_payload(txn, conflict)
        header_name = payload.get("header_name", "?")
        message = (
            f"{where} for unit {product_unit_id} overlaps price #{conflict.existing_id} "
            f"in '{header_name}' {conflict.existing_window}"
        )
        return ConflictError(
            message,
            conflict=conflict,
            item_index=item_index,
            detail={
                "existing_header_id": payload.get("header_id"),
                "existing_header_name": payload.get("header_name"),
            },
        )

    def _header_payload(self, header: PriceHeader) -> dict[str, Any]:
        payload = record_payload(header)
        payload["status"] = str(header_status(header.active, header.window, now_utc()))
        return payload

    @staticmethod
    def _require_unit(
        txn: CatalogTransaction, unit_id: int, *, detail: dict[str, Any] | None = None
    ) -> None:
        if txn.get_unit(unit_id) is None:
            raise NotFoundError("product unit", unit_id, detail=detail)

    @staticmethod
    def _require_header(txn: CatalogTransaction, header_id: int) -> PriceHeader:
        header = txn.get_price_header(header_id)
        if header is None:
            raise NotFoundError("price header", header_id)
        return header

    def _require_writable_header(self, txn: CatalogTransaction, header_id: int) -> PriceHeader:
        header = self._require_header(txn, header_id)
        if not header.active:
            raise StateError(
                f"Price header #{header.id} ('{header.name}') is inactive",
                detail={"header_id": header.id},
            )
        return header

    @staticmethod
    def _require_price(txn: CatalogTransaction, price_id: int) -> UnitPrice:
        price = txn.get_price(price_id)
        if price is None:
            raise NotFoundError("price", price_id)
        return price
