"""PromotionCatalogService: promotion headers, lines, and details.

A line aims one promotion type at a product or a category for a window;
its details carry the discount parameters. At any instant a target has at
most one active line.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pricerules.domain.conflicts import Conflict, IntervalEntry, IntervalIndex, check_conflict
from pricerules.domain.details import clean_detail, merge_detail_payload
from pricerules.domain.errors import (
    ConflictError,
    FieldError,
    NotFoundError,
    RuleEngineError,
    StateError,
    ValidationError,
)
from pricerules.domain.intervals import within
from pricerules.domain.records import PromotionHeader, PromotionLine, header_status
from pricerules.domain.types import PromotionType, TargetType
from pricerules.infrastructure.database.schema import (
    promotion_details,
    promotion_headers,
    promotion_lines,
)
from pricerules.services._helpers import now_utc, require_name
from pricerules.services.base import BaseService, DateInput
from pricerules.services.contracts import (
    ActiveLinesData,
    LineListData,
    dump_validated,
    record_payload,
)
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from pricerules.domain.details import AnyDetail
    from pricerules.domain.intervals import TemporalInterval
    from pricerules.infrastructure.catalog import CatalogTransaction

logger = logging.getLogger(__name__)

# Detail fields that reference product units.
_UNIT_FIELDS = ("condition_product_unit_id", "gift_product_unit_id")


def _line_key(target_type: TargetType, target_id: int) -> tuple[str, str, int]:
    return ("line", str(target_type), target_id)


def _parse_enum[E: (TargetType, PromotionType)](enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError.single(field, f"must be one of {choices}, got {value!r}") from exc


class PromotionCatalogService(BaseService):
    """Maintains promotion campaigns and the rules inside them."""

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    @traced
    def create_header(
        self,
        name: str,
        start_date: DateInput,
        end_date: DateInput,
    ) -> ServiceResult:
        """Create a promotion header; unlike price headers it must end."""
        op = "create_promotion_header"
        try:
            errors = require_name(name)
            window: TemporalInterval | None = None
            if end_date is None or end_date == "":
                errors.extend(ValidationError.single("end_date", "is required").errors)
            try:
                window = self._window(
                    start_date, end_date or None, start_field="start_date", end_field="end_date"
                )
            except ValidationError as exc:
                errors.extend(exc.errors)
            if errors:
                raise ValidationError(errors)
            assert window is not None

            with self._catalog.transaction() as txn:
                header = txn.insert_promotion_header(name=name.strip(), window=window)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Created promotion header %s (%s) %s", header.id, header.name, window)
        return self._ok(op, self._header_payload(header), version=version)

    @traced
    def deactivate_header(self, header_id: int) -> ServiceResult:
        """Deactivate a header and every active line under it."""
        op = "deactivate_promotion_header"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                txn.set_active(promotion_headers, header.id, False)
                cascaded = txn.deactivate_children(
                    promotion_lines, "promotion_header_id", header.id
                )
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Deactivated promotion header %s and %d line(s)", header_id, cascaded)
        return self._ok(
            op,
            {"id": header_id, "active": False, "deactivated_lines": cascaded},
            version=version,
        )

    @traced
    def activate_header(self, header_id: int, *, with_lines: bool = True) -> ServiceResult:
        """Reactivate a header and, with *with_lines*, its inactive lines.

        Every restored line is conflict-checked against the active catalog
        and against the lines restored before it. One conflict leaves the
        header and all of its lines as they were. Activating a header that
        is already active changes nothing.
        """
        op = "activate_promotion_header"
        try:
            with self._catalog.transaction() as txn:
                peek = self._require_header(txn, header_id)
                pending = self._restorable_lines(txn, peek) if with_lines else []

            keys = [_line_key(line.target_type, line.target_id) for line in pending]
            with self._catalog.key_locks(keys), self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                restored = self._restorable_lines(txn, header) if with_lines else []

                index = IntervalIndex()
                loaded: set[tuple[str, int]] = set()
                with trace_span("conflict_check"):
                    for line in restored:
                        if line.key not in loaded:
                            index.extend(
                                line.key,
                                txn.active_line_entries(line.target_type, line.target_id),
                            )
                            loaded.add(line.key)
                        conflict = index.check(line.key, line.window, exclude_id=line.id)
                        if conflict is not None:
                            raise self._conflict_error(
                                txn, line.target_type, line.target_id, conflict
                            )
                        entry = IntervalEntry(record_id=line.id, window=line.window)
                        index.add(line.key, entry)

                for line in restored:
                    txn.set_active(promotion_lines, line.id, True)
                txn.set_active(promotion_headers, header.id, True)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Activated promotion header %s and %d line(s)", header_id, len(restored))
        return self._ok(
            op,
            {"id": header_id, "active": True, "activated_lines": len(restored)},
            version=version,
        )

    @traced
    def update_header(
        self,
        header_id: int,
        *,
        name: str | None = None,
        start_date: DateInput | None = None,
        end_date: DateInput | None = None,
    ) -> ServiceResult:
        """Rename a header or move its window.

        With ``[promotions] enforce_header_window`` every active line must
        still lie inside the new window. Lines keep their own windows.
        """
        op = "update_promotion_header"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                errors = require_name(name) if name is not None else []
                window = header.window
                if start_date is not None or end_date is not None:
                    try:
                        window = self._window(
                            start_date if start_date is not None else header.start_date,
                            end_date if end_date not in (None, "") else header.end_date,
                            start_field="start_date",
                            end_field="end_date",
                        )
                    except ValidationError as exc:
                        errors.extend(exc.errors)
                if errors:
                    raise ValidationError(errors)

                if self._settings.promotions.enforce_header_window:
                    outside = [
                        line.id
                        for line in txn.lines_for_header(header_id)
                        if line.active and not within(line.window, window)
                    ]
                    if outside:
                        ids = ", ".join(f"#{line_id}" for line_id in outside)
                        raise ValidationError(
                            [FieldError("window", f"line(s) {ids} would fall outside {window}")],
                            detail={"line_ids": outside},
                        )

                updated = txn.update_promotion_header(
                    header_id,
                    name=name.strip() if name is not None else header.name,
                    window=window,
                )
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Updated promotion header %s (%s) %s", header_id, updated.name, window)
        return self._ok(op, self._header_payload(updated), version=version)

    @traced
    def list_lines(self, header_id: int, *, with_details: bool = True) -> ServiceResult:
        """Every line under a header, with the header's status right now."""
        op = "list_lines"
        try:
            with self._catalog.transaction() as txn:
                header = self._require_header(txn, header_id)
                items = [
                    self._line_payload(txn, line, with_details=with_details)
                    for line in txn.lines_for_header(header_id)
                ]
        except RuleEngineError as exc:
            return self._fail(op, exc)

        data = {"header": self._header_payload(header), "count": len(items), "items": items}
        return self._ok(op, dump_validated(LineListData, data))

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    @traced
    def insert_line(
        self,
        header_id: int,
        target_type: TargetType | str,
        target_id: int,
        promotion_type: PromotionType | str,
        *,
        start_date: DateInput | None = None,
        end_date: DateInput | None = None,
    ) -> ServiceResult:
        """Add a rule line under *header_id*.

        The window defaults to the header's window. With
        ``[promotions] enforce_header_window`` the line must also lie
        inside it.
        """
        op = "insert_line"
        try:
            with trace_span("validate"):
                target = _parse_enum(TargetType, target_type, "target_type")
                kind = _parse_enum(PromotionType, promotion_type, "type")
                if target_id <= 0:
                    raise ValidationError.single("target_id", "must be a positive integer")

            with self._catalog.key_locks([_line_key(target, target_id)]):
                with self._catalog.transaction() as txn:
                    header = self._require_writable_header(txn, header_id)
                    self._require_target(txn, target, target_id)
                    window = self._line_window(header, start_date, end_date)

                    with trace_span("conflict_check"):
                        conflict = check_conflict(
                            (str(target), target_id),
                            txn.active_line_entries(target, target_id),
                            window,
                        )
                        if conflict is not None:
                            raise self._conflict_error(txn, target, target_id, conflict)

                    with trace_span("persist"):
                        line = txn.insert_line(
                            header_id=header_id,
                            target_type=target,
                            target_id=target_id,
                            promotion_type=kind,
                            window=window,
                        )
                        version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info(
            "Inserted line %s: %s on %s %s %s",
            line.id,
            kind,
            target,
            target_id,
            line.window,
        )
        return self._ok(op, record_payload(line), version=version)

    @traced
    def update_line_type(
        self,
        line_id: int,
        promotion_type: PromotionType | str,
    ) -> ServiceResult:
        """Change a line's promotion type.

        Refused while the line still has active details of another type.
        """
        op = "update_line_type"
        try:
            kind = _parse_enum(PromotionType, promotion_type, "type")
            with self._catalog.transaction() as txn:
                line = self._require_line(txn, line_id)
                blocking = [
                    d.id for d in txn.details_for_line(line_id) if d.active and d.type != kind
                ]
                if blocking:
                    raise StateError(
                        f"Line #{line_id} has {len(blocking)} active detail(s) of type "
                        f"{line.type}; deactivate them before changing the type to {kind}",
                        detail={"line_id": line_id, "detail_ids": blocking},
                    )
                txn.set_line_type(line_id, kind)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Line %s type changed %s -> %s", line_id, line.type, kind)
        return self._ok(
            op,
            {"id": line_id, "previous_type": str(line.type), "type": str(kind)},
            version=version,
        )

    @traced
    def update_line(
        self,
        line_id: int,
        *,
        target_type: TargetType | str | None = None,
        target_id: int | None = None,
        start_date: DateInput | None = None,
        end_date: DateInput | None = None,
    ) -> ServiceResult:
        """Retarget a line or move its window.

        Omitted fields keep their stored values. An active line is
        conflict-checked at its new target and window, ignoring itself.
        """
        op = "update_line"
        try:
            with trace_span("validate"):
                target = (
                    _parse_enum(TargetType, target_type, "target_type")
                    if target_type is not None
                    else None
                )
                if target_id is not None and target_id <= 0:
                    raise ValidationError.single("target_id", "must be a positive integer")

            with self._catalog.transaction() as txn:
                peek = self._require_line(txn, line_id)
            new_target = target if target is not None else peek.target_type
            new_id = target_id if target_id is not None else peek.target_id
            keys = [
                _line_key(peek.target_type, peek.target_id),
                _line_key(new_target, new_id),
            ]

            with self._catalog.key_locks(keys), self._catalog.transaction() as txn:
                line = self._require_line(txn, line_id)
                header = self._require_writable_header(txn, line.promotion_header_id)
                self._require_target(txn, new_target, new_id)
                window = line.window
                if start_date is not None or end_date is not None:
                    window = self._line_window(
                        header,
                        start_date if start_date is not None else line.start_date,
                        end_date if end_date not in (None, "") else line.end_date,
                    )

                if line.active:
                    with trace_span("conflict_check"):
                        conflict = check_conflict(
                            (str(new_target), new_id),
                            txn.active_line_entries(new_target, new_id),
                            window,
                            exclude_id=line.id,
                        )
                        if conflict is not None:
                            raise self._conflict_error(txn, new_target, new_id, conflict)

                updated = txn.update_line(
                    line_id, target_type=new_target, target_id=new_id, window=window
                )
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Updated line %s: %s %s %s", line_id, new_target, new_id, updated.window)
        return self._ok(op, record_payload(updated), version=version)

    @traced
    def resolve_active_lines(
        self,
        target_type: TargetType | str,
        target_id: int,
        at: DateInput,
        *,
        category_id: int | None = None,
    ) -> ServiceResult:
        """Active lines covering a target at *at*, with their active details.

        For a product query that names its *category_id*, category lines
        are merged in according to ``[promotions] precedence``.
        """
        op = "resolve_active_lines"
        try:
            target = _parse_enum(TargetType, target_type, "target_type")
            instant = self._instant(at)
        except RuleEngineError as exc:
            return self._fail(op, exc)

        snapshot = self._catalog.snapshot()
        if target == TargetType.PRODUCT and category_id is not None:
            lines = snapshot.lines_for_product(
                target_id,
                category_id,
                instant,
                precedence=self._settings.promotions.precedence,
            )
        else:
            lines = snapshot.active_lines(target, target_id, instant)

        items = []
        for line in lines:
            payload = record_payload(line)
            payload["details"] = [record_payload(d) for d in snapshot.details_for(line.id)]
            items.append(payload)

        data = {
            "target_type": str(target),
            "target_id": target_id,
            "category_id": category_id,
            "at": instant.isoformat(),
            "count": len(items),
            "items": items,
        }
        return self._ok(op, dump_validated(ActiveLinesData, data), version=snapshot.version)

    @traced
    def deactivate_line(self, line_id: int) -> ServiceResult:
        op = "deactivate_line"
        try:
            with self._catalog.transaction() as txn:
                self._require_line(txn, line_id)
                txn.set_active(promotion_lines, line_id, False)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Deactivated line %s", line_id)
        return self._ok(op, {"id": line_id, "active": False}, version=version)

    @traced
    def activate_line(self, line_id: int) -> ServiceResult:
        """Reactivate a line; its window is conflict-checked again."""
        op = "activate_line"
        try:
            with self._catalog.transaction() as txn:
                peek = self._require_line(txn, line_id)

            with self._catalog.key_locks([_line_key(peek.target_type, peek.target_id)]):
                with self._catalog.transaction() as txn:
                    line = self._require_line(txn, line_id)
                    self._require_writable_header(txn, line.promotion_header_id)
                    conflict = check_conflict(
                        line.key,
                        txn.active_line_entries(line.target_type, line.target_id),
                        line.window,
                        exclude_id=line.id,
                    )
                    if conflict is not None:
                        raise self._conflict_error(
                            txn, line.target_type, line.target_id, conflict
                        )
                    txn.set_active(promotion_lines, line_id, True)
                    version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Reactivated line %s", line_id)
        return self._ok(op, {"id": line_id, "active": True}, version=version)

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    @traced
    def insert_detail(self, line_id: int, payload: Mapping[str, Any]) -> ServiceResult:
        """Attach discount parameters to a line.

        *payload* is raw form input; every field error is reported at once.
        """
        op = "insert_detail"
        try:
            with self._catalog.transaction() as txn:
                line = self._require_line(txn, line_id)
                with trace_span("validate"):
                    fields = clean_detail(payload, line.type)
                    self._require_detail_units(txn, fields)
                with trace_span("persist"):
                    detail = txn.insert_detail(
                        line_id=line_id, promotion_type=line.type, fields=fields
                    )
                    version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Inserted %s detail %s on line %s", detail.type, detail.id, line_id)
        return self._ok(op, record_payload(detail), version=version)

    @traced
    def deactivate_detail(self, detail_id: int) -> ServiceResult:
        op = "deactivate_detail"
        try:
            with self._catalog.transaction() as txn:
                self._require_detail(txn, detail_id)
                txn.set_active(promotion_details, detail_id, False)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Deactivated detail %s", detail_id)
        return self._ok(op, {"id": detail_id, "active": False}, version=version)

    @traced
    def update_detail(self, detail_id: int, payload: Mapping[str, Any]) -> ServiceResult:
        """Change some parameters of a detail.

        *payload* is laid over the stored fields and the result validated
        as a whole; a blank value clears an optional field.
        """
        op = "update_detail"
        try:
            with self._catalog.transaction() as txn:
                detail = self._require_detail(txn, detail_id)
                line = self._require_line(txn, detail.promotion_line_id)
                self._require_matching_type(detail, line)
                with trace_span("validate"):
                    fields = clean_detail(merge_detail_payload(detail, payload), line.type)
                    self._require_detail_units(txn, fields)
                with trace_span("persist"):
                    updated = txn.update_detail(detail_id, fields)
                    version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Updated %s detail %s on line %s", updated.type, detail_id, line.id)
        return self._ok(op, record_payload(updated), version=version)

    @traced
    def activate_detail(self, detail_id: int) -> ServiceResult:
        """Reactivate a detail whose type still matches its line."""
        op = "activate_detail"
        try:
            with self._catalog.transaction() as txn:
                detail = self._require_detail(txn, detail_id)
                line = self._require_line(txn, detail.promotion_line_id)
                self._require_matching_type(detail, line)
                txn.set_active(promotion_details, detail_id, True)
                version = txn.touch()
        except RuleEngineError as exc:
            return self._fail(op, exc)

        logger.info("Reactivated detail %s", detail_id)
        return self._ok(op, {"id": detail_id, "active": True}, version=version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _line_window(
        self,
        header: PromotionHeader,
        start_date: DateInput | None,
        end_date: DateInput | None,
    ) -> TemporalInterval:
        if start_date is None and end_date is None:
            return header.window
        window = self._window(
            start_date if start_date is not None else header.start_date,
            end_date if end_date is not None and end_date != "" else header.end_date,
            start_field="start_date",
            end_field="end_date",
        )
        if self._settings.promotions.enforce_header_window and not within(
            window, header.window
        ):
            raise ValidationError.single(
                "window",
                f"line window {window} must lie within header #{header.id} window "
                f"{header.window}",
            )
        return window

    def _conflict_error(
        self,
        txn: CatalogTransaction,
        target_type: TargetType,
        target_id: int,
        conflict: Conflict,
    ) -> ConflictError:
        existing = txn.get_line(conflict.existing_id)
        header = txn.get_promotion_header(existing.promotion_header_id) if existing else None
        header_name = header.name if header is not None else "?"
        message = (
            f"Line for {target_type} {target_id} overlaps line #{conflict.existing_id} "
            f"in '{header_name}' {conflict.existing_window}"
        )
        return ConflictError(
            message,
            conflict=conflict,
            detail={
                "existing_header_id": header.id if header is not None else None,
                "existing_header_name": header.name if header is not None else None,
            },
        )

    def _line_payload(
        self,
        txn: CatalogTransaction,
        line: PromotionLine,
        *,
        with_details: bool,
    ) -> dict[str, Any]:
        payload = record_payload(line)
        if with_details:
            payload["details"] = [record_payload(d) for d in txn.details_for_line(line.id)]
        return payload

    def _header_payload(self, header: PromotionHeader) -> dict[str, Any]:
        payload = record_payload(header)
        payload["status"] = str(header_status(header.active, header.window, now_utc()))
        return payload

    @staticmethod
    def _require_header(txn: CatalogTransaction, header_id: int) -> PromotionHeader:
        header = txn.get_promotion_header(header_id)
        if header is None:
            raise NotFoundError("promotion header", header_id)
        return header

    def _require_writable_header(
        self, txn: CatalogTransaction, header_id: int
    ) -> PromotionHeader:
        header = self._require_header(txn, header_id)
        if not header.active:
            raise StateError(
                f"Promotion header #{header.id} ('{header.name}') is inactive",
                detail={"header_id": header.id},
            )
        return header

    @staticmethod
    def _require_line(txn: CatalogTransaction, line_id: int) -> PromotionLine:
        line = txn.get_line(line_id)
        if line is None:
            raise NotFoundError("promotion line", line_id)
        return line

    @staticmethod
    def _require_detail(txn: CatalogTransaction, detail_id: int) -> AnyDetail:
        detail = txn.get_detail(detail_id)
        if detail is None:
            raise NotFoundError("promotion detail", detail_id)
        return detail

    @staticmethod
    def _require_matching_type(detail: AnyDetail, line: PromotionLine) -> None:
        if detail.type != line.type:
            raise StateError(
                f"Detail #{detail.id} is {detail.type} but line #{line.id} is {line.type}",
                detail={"detail_id": detail.id, "line_id": line.id},
            )

    @staticmethod
    def _require_target(txn: CatalogTransaction, target_type: TargetType, target_id: int) -> None:
        """A line target must name a product or category some unit belongs to."""
        if target_type == TargetType.PRODUCT:
            if not txn.has_product(target_id):
                raise NotFoundError("product", target_id)
        elif not txn.has_category(target_id):
            raise NotFoundError("category", target_id)

    @staticmethod
    def _require_detail_units(txn: CatalogTransaction, fields: Mapping[str, Any]) -> None:
        for name in _UNIT_FIELDS:
            unit_id = fields.get(name)
            if unit_id is not None and txn.get_unit(unit_id) is None:
                raise NotFoundError("product unit", unit_id, detail={"field": name})

    @staticmethod
    def _restorable_lines(
        txn: CatalogTransaction, header: PromotionHeader
    ) -> list[PromotionLine]:
        if header.active:
            return []
        return [line for line in txn.lines_for_header(header.id) if not line.active]
