"""CheckService: catalog integrity scan.

Single command following the linter pattern. The mutation paths keep the
catalog consistent; this scan finds what they cannot guard against, such
as rows imported straight into the database or a config change to
``enforce_header_window`` after lines were stored.
"""

from __future__ import annotations

import itertools
from collections import defaultdict
from collections.abc import Hashable, Sequence
from typing import TYPE_CHECKING, Any

from pricerules.domain.details import BuyXGetYDetail
from pricerules.domain.intervals import TemporalInterval, overlaps, within
from pricerules.services.base import BaseService
from pricerules.services.contracts import CheckResultData, dump_validated
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from pricerules.domain.snapshot import CatalogSnapshot


# ---------------------------------------------------------------------------
# Issue severity and category constants
# ---------------------------------------------------------------------------

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

CAT_PRICE_OVERLAP = "price_overlap"
CAT_LINE_OVERLAP = "line_overlap"
CAT_DETAIL_MISMATCH = "detail_type_mismatch"
CAT_LINE_OUTSIDE_HEADER = "line_outside_header"
CAT_DANGLING = "dangling_reference"


def _issue(
    category: str,
    severity: str,
    record_kind: str,
    record_id: int,
    message: str,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "category": category,
        "severity": severity,
        "record_kind": record_kind,
        "record_id": record_id,
        "message": message,
        **extra,
    }


def _overlapping_pairs(
    windows: Sequence[tuple[int, TemporalInterval]],
) -> list[tuple[int, int]]:
    """Every pair of ids whose windows overlap, lower id first."""
    ordered = sorted(windows, key=lambda item: (item[1].start, item[0]))
    pairs: list[tuple[int, int]] = []
    for (a_id, a), (b_id, b) in itertools.combinations(ordered, 2):
        if overlaps(a, b):
            pairs.append((min(a_id, b_id), max(a_id, b_id)))
    return sorted(pairs)


# ---------------------------------------------------------------------------
# CheckService
# ---------------------------------------------------------------------------


class CheckService(BaseService):
    """Reports catalog integrity issues without modifying anything."""

    @traced
    def check(self, *, min_severity: str = SEVERITY_WARNING) -> ServiceResult:
        """Scan the current snapshot; issues below *min_severity* are hidden."""
        snapshot = self._catalog.snapshot()
        issues: list[dict[str, Any]] = []
        with trace_span("price_overlap"):
            issues.extend(self._check_price_overlaps(snapshot))
        with trace_span("line_overlap"):
            issues.extend(self._check_line_overlaps(snapshot))
        with trace_span("detail_type_mismatch"):
            issues.extend(self._check_detail_types(snapshot))
        with trace_span("line_outside_header"):
            issues.extend(self._check_line_windows(snapshot))
        with trace_span("dangling_reference"):
            issues.extend(self._check_references(snapshot))

        errors = sum(1 for i in issues if i["severity"] == SEVERITY_ERROR)
        if min_severity == SEVERITY_ERROR:
            shown = [i for i in issues if i["severity"] == SEVERITY_ERROR]
        else:
            shown = issues
        data = {
            "issues": shown,
            "count": len(shown),
            "errors": errors,
            "warnings": len(issues) - errors,
            "healthy": errors == 0,
        }
        return self._ok("check", dump_validated(CheckResultData, data), version=snapshot.version)

    # ------------------------------------------------------------------
    # Overlaps among active records
    # ------------------------------------------------------------------

    def _check_price_overlaps(self, snapshot: CatalogSnapshot) -> list[dict[str, Any]]:
        by_unit: dict[Hashable, list[tuple[int, TemporalInterval]]] = defaultdict(list)
        for price in snapshot.prices:
            header = snapshot.price_header(price.price_header_id)
            if price.active and header is not None and header.active:
                by_unit[price.product_unit_id].append((price.id, price.window))

        issues: list[dict[str, Any]] = []
        for unit_id in sorted(by_unit):
            for first, second in _overlapping_pairs(by_unit[unit_id]):
                issues.append(
                    _issue(
                        CAT_PRICE_OVERLAP,
                        SEVERITY_ERROR,
                        "price",
                        second,
                        f"Active price #{second} overlaps price #{first} for unit {unit_id}",
                        conflicts_with=first,
                    )
                )
        return issues

    def _check_line_overlaps(self, snapshot: CatalogSnapshot) -> list[dict[str, Any]]:
        by_target: dict[tuple[str, int], list[tuple[int, TemporalInterval]]] = defaultdict(list)
        for line in snapshot.lines:
            header = snapshot.promotion_header(line.promotion_header_id)
            if line.active and header is not None and header.active:
                by_target[line.key].append((line.id, line.window))

        issues: list[dict[str, Any]] = []
        for target_type, target_id in sorted(by_target):
            for first, second in _overlapping_pairs(by_target[(target_type, target_id)]):
                issues.append(
                    _issue(
                        CAT_LINE_OVERLAP,
                        SEVERITY_ERROR,
                        "line",
                        second,
                        f"Active line #{second} overlaps line #{first} "
                        f"for {target_type} {target_id}",
                        conflicts_with=first,
                    )
                )
        return issues

    # ------------------------------------------------------------------
    # Structural checks
    # ------------------------------------------------------------------

    def _check_detail_types(self, snapshot: CatalogSnapshot) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        for detail in snapshot.details:
            line = snapshot.line(detail.promotion_line_id)
            if not detail.active or line is None or detail.type == line.type:
                continue
            issues.append(
                _issue(
                    CAT_DETAIL_MISMATCH,
                    SEVERITY_ERROR,
                    "detail",
                    detail.id,
                    f"Detail #{detail.id} is {detail.type} but line #{line.id} is {line.type}; "
                    "evaluation skips it",
                )
            )
        return issues

    def _check_line_windows(self, snapshot: CatalogSnapshot) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []
        for line in snapshot.lines:
            header = snapshot.promotion_header(line.promotion_header_id)
            if header is None or within(line.window, header.window):
                continue
            issues.append(
                _issue(
                    CAT_LINE_OUTSIDE_HEADER,
                    SEVERITY_WARNING,
                    "line",
                    line.id,
                    f"Line #{line.id} window {line.window} extends past header "
                    f"#{header.id} window {header.window}",
                )
            )
        return issues

    def _check_references(self, snapshot: CatalogSnapshot) -> list[dict[str, Any]]:
        issues: list[dict[str, Any]] = []

        for price in snapshot.prices:
            if snapshot.unit(price.product_unit_id) is None:
                issues.append(
                    _issue(
                        CAT_DANGLING,
                        SEVERITY_ERROR,
                        "price",
                        price.id,
                        f"Price #{price.id} references unknown unit {price.product_unit_id}",
                    )
                )
            if snapshot.price_header(price.price_header_id) is None:
                issues.append(
                    _issue(
                        CAT_DANGLING,
                        SEVERITY_ERROR,
                        "price",
                        price.id,
                        f"Price #{price.id} references unknown header {price.price_header_id}",
                    )
                )

        for line in snapshot.lines:
            if snapshot.promotion_header(line.promotion_header_id) is None:
                issues.append(
                    _issue(
                        CAT_DANGLING,
                        SEVERITY_ERROR,
                        "line",
                        line.id,
                        f"Line #{line.id} references unknown header {line.promotion_header_id}",
                    )
                )

        for detail in snapshot.details:
            if snapshot.line(detail.promotion_line_id) is None:
                issues.append(
                    _issue(
                        CAT_DANGLING,
                        SEVERITY_ERROR,
                        "detail",
                        detail.id,
                        f"Detail #{detail.id} references unknown line {detail.promotion_line_id}",
                    )
                )
            if not isinstance(detail, BuyXGetYDetail) or not detail.active:
                continue
            for role, unit_id in (
                ("condition", detail.condition_product_unit_id),
                ("gift", detail.gift_product_unit_id),
            ):
                if snapshot.unit(unit_id) is None:
                    issues.append(
                        _issue(
                            CAT_DANGLING,
                            SEVERITY_WARNING,
                            "detail",
                            detail.id,
                            f"Detail #{detail.id} {role} unit {unit_id} is not registered",
                        )
                    )
        return issues
