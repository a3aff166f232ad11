"""EvaluationService: adapter between the order subsystem and the evaluator.

Parses order-line payloads, pins one catalog snapshot for the whole run,
and delegates to the pure :func:`pricerules.domain.evaluator.evaluate`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

import pydantic

from pricerules.domain.errors import FieldError, RuleEngineError, ValidationError
from pricerules.domain.evaluator import evaluate
from pricerules.domain.records import OrderLine
from pricerules.services._helpers import fmt_money
from pricerules.services.base import BaseService, DateInput
from pricerules.services.contracts import EvaluationData, dump_validated, record_payload
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import get_current_span, trace_span, traced

logger = logging.getLogger(__name__)


def parse_order_lines(payload: Sequence[Mapping[str, Any] | OrderLine]) -> list[OrderLine]:
    """Build :class:`OrderLine` records, collecting every field error.

    Keys may be snake_case or camelCase.
    """
    lines: list[OrderLine] = []
    errors: list[FieldError] = []
    for pos, item in enumerate(payload):
        if isinstance(item, OrderLine):
            lines.append(item)
            continue
        try:
            lines.append(OrderLine.model_validate(item))
        except pydantic.ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(part) for part in err["loc"]) or "line"
                errors.append(FieldError(f"lines[{pos}].{loc}", err["msg"]))
    if errors:
        raise ValidationError(errors)
    return lines


class EvaluationService(BaseService):
    """Computes the discounts active rules grant an order."""

    @traced
    def evaluate(
        self,
        order_lines: Sequence[Mapping[str, Any] | OrderLine],
        at: DateInput,
    ) -> ServiceResult:
        """Evaluate *order_lines* at instant *at* against the current snapshot."""
        op = "evaluate"
        evaluation = self._settings.evaluation
        try:
            with trace_span("validate"):
                lines = parse_order_lines(order_lines)
                instant = self._instant(at)

            snapshot = self._catalog.snapshot()
            with trace_span("evaluate") as span:
                results = evaluate(
                    lines,
                    instant,
                    snapshot,
                    precedence=self._settings.promotions.precedence,
                    gift_policy=evaluation.gift_policy,
                    amount_places=evaluation.amount_places,
                )
                if span is not None:
                    span.annotate("results", len(results))
        except RuleEngineError as exc:
            return self._fail(op, exc)

        total = sum((r.amount for r in results if r.amount is not None), Decimal(0))
        root = get_current_span()
        if root is not None:
            root.annotate("catalog_version", snapshot.version)
        logger.debug(
            "Evaluated %d line(s) at %s: %d discount(s) from catalog v%s",
            len(lines),
            instant.isoformat(),
            len(results),
            snapshot.version,
        )
        data = {
            "at": instant.isoformat(),
            "catalog_version": snapshot.version,
            "count": len(results),
            "total_amount": fmt_money(total),
            "discounts": [record_payload(r) for r in results],
        }
        return self._ok(op, dump_validated(EvaluationData, data), version=snapshot.version)
