"""DiscountEvaluator: order lines + catalog snapshot + instant -> discounts.

``evaluate`` is a pure function: it reads only its arguments, never the
clock or the store, and returns results in a fixed order, so identical
inputs always produce identical output.

Percent and amount rules:

- ``raw = percent / 100 * subtotal`` (or ``raw = discount_amount``)
- ``subtotal < min_amount`` gates the discount to 0
- otherwise ``min(raw, max_discount)`` when a cap is set

BUY_X_GET_Y: ``floor(purchased / condition_quantity) * free_quantity`` gift
units, capped to the gift units present in the order unless the gift
policy grants them outright.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pricerules.domain.details import AmountDetail, AnyDetail, BuyXGetYDetail, PercentDetail
from pricerules.domain.errors import FieldError, NotFoundError, ValidationError
from pricerules.domain.records import DiscountResult, OrderLine, PromotionLine
from pricerules.domain.snapshot import CatalogSnapshot
from pricerules.domain.types import GiftPolicy, Precedence

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


def quantize_amount(amount: Decimal, places: int) -> Decimal:
    """Round *amount* half-up to *places* decimal places."""
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def gated_discount(
    raw: Decimal,
    subtotal: Decimal,
    *,
    min_amount: Decimal | None,
    max_discount: Decimal | None,
) -> Decimal:
    """Apply the minimum-subtotal gate and the maximum-discount clamp."""
    if min_amount is not None and subtotal < min_amount:
        return Decimal(0)
    if max_discount is not None:
        return min(raw, max_discount)
    return raw


def free_units(
    purchased: int,
    *,
    condition_quantity: int,
    free_quantity: int,
    gift_present: int | None = None,
) -> int:
    """Gift units earned by *purchased* condition units.

    With *gift_present* the grant is capped to the gift units in the order.
    """
    earned = (purchased // condition_quantity) * free_quantity
    if gift_present is None:
        return earned
    return min(earned, gift_present)


def _check_order_lines(order_lines: Sequence[OrderLine], snapshot: CatalogSnapshot) -> None:
    errors: list[FieldError] = []
    seen: set[int] = set()
    for pos, line in enumerate(order_lines):
        if line.quantity < 0:
            errors.append(FieldError(f"lines[{pos}].quantity", "must not be negative"))
        if line.unit_price is not None and line.unit_price < 0:
            errors.append(FieldError(f"lines[{pos}].unit_price", "must not be negative"))
        if line.id in seen:
            errors.append(FieldError(f"lines[{pos}].id", f"duplicate order line id {line.id}"))
        seen.add(line.id)
    if errors:
        raise ValidationError(errors)

    for line in order_lines:
        if snapshot.unit(line.product_unit_id) is None:
            raise NotFoundError(
                "product unit", line.product_unit_id, detail={"order_line_id": line.id}
            )


class _Evaluation:
    """State for one ``evaluate`` call."""

    def __init__(
        self,
        order_lines: Sequence[OrderLine],
        at: datetime,
        snapshot: CatalogSnapshot,
        *,
        precedence: Precedence,
        gift_policy: GiftPolicy,
        amount_places: int,
    ) -> None:
        self.order_lines = order_lines
        self.at = at
        self.snapshot = snapshot
        self.precedence = precedence
        self.gift_policy = gift_policy
        self.amount_places = amount_places
        self.purchased: Counter[int] = Counter()
        self.first_line_for_unit: dict[int, OrderLine] = {}
        for line in order_lines:
            self.purchased[line.product_unit_id] += line.quantity
            self.first_line_for_unit.setdefault(line.product_unit_id, line)
        self.position = {line.id: pos for pos, line in enumerate(order_lines)}
        self.gifts_done: set[int] = set()
        self.results: list[DiscountResult] = []

    def run(self) -> list[DiscountResult]:
        for order_line in self.order_lines:
            unit = self.snapshot.unit(order_line.product_unit_id)
            assert unit is not None
            for rule_line in self.snapshot.lines_for_product(
                unit.product_id, unit.category_id, self.at, precedence=self.precedence
            ):
                for detail in self.snapshot.details_for(rule_line.id):
                    if detail.type != rule_line.type:
                        logger.warning(
                            "Skipping detail %s: variant %s does not match line %s type %s",
                            detail.id,
                            detail.type,
                            rule_line.id,
                            rule_line.type,
                        )
                        continue
                    self._apply(order_line, rule_line, detail)

        last = len(self.order_lines)
        self.results.sort(
            key=lambda r: (
                self.position.get(r.order_line_id, last) if r.order_line_id is not None else last,
                r.rule_line_id,
                r.detail_id,
            )
        )
        return self.results

    def _apply(
        self,
        order_line: OrderLine,
        rule_line: PromotionLine,
        detail: AnyDetail,
    ) -> None:
        if isinstance(detail, PercentDetail):
            subtotal = self._subtotal(order_line)
            raw = detail.discount_percent / _HUNDRED * subtotal
            self._money(order_line, rule_line, detail, raw, subtotal)
        elif isinstance(detail, AmountDetail):
            subtotal = self._subtotal(order_line)
            self._money(order_line, rule_line, detail, detail.discount_amount, subtotal)
        elif isinstance(detail, BuyXGetYDetail):
            self._gift(order_line, rule_line, detail)

    def _subtotal(self, order_line: OrderLine) -> Decimal:
        unit_price = order_line.unit_price
        if unit_price is None:
            price = self.snapshot.effective_price(order_line.product_unit_id, self.at)
            if price is None:
                raise NotFoundError(
                    "price",
                    order_line.product_unit_id,
                    detail={"order_line_id": order_line.id, "at": self.at.isoformat()},
                )
            unit_price = price.price
        return unit_price * order_line.quantity

    def _money(
        self,
        order_line: OrderLine,
        rule_line: PromotionLine,
        detail: PercentDetail | AmountDetail,
        raw: Decimal,
        subtotal: Decimal,
    ) -> None:
        amount = gated_discount(
            raw,
            subtotal,
            min_amount=detail.min_amount,
            max_discount=detail.max_discount,
        )
        self.results.append(
            DiscountResult(
                order_line_id=order_line.id,
                rule_line_id=rule_line.id,
                detail_id=detail.id,
                type=detail.type,
                amount=quantize_amount(amount, self.amount_places),
            )
        )

    def _gift(
        self,
        order_line: OrderLine,
        rule_line: PromotionLine,
        detail: BuyXGetYDetail,
    ) -> None:
        # The rule is evaluated once, through the line of its condition unit.
        if order_line.product_unit_id != detail.condition_product_unit_id:
            return
        if detail.id in self.gifts_done:
            return
        self.gifts_done.add(detail.id)

        gift_line = self.first_line_for_unit.get(detail.gift_product_unit_id)
        capped = self.gift_policy == GiftPolicy.CAP
        granted = free_units(
            self.purchased[detail.condition_product_unit_id],
            condition_quantity=detail.condition_quantity,
            free_quantity=detail.free_quantity,
            gift_present=self.purchased[detail.gift_product_unit_id] if capped else None,
        )
        if gift_line is not None:
            target_id: int | None = gift_line.id
        elif capped:
            target_id = order_line.id
        else:
            target_id = None

        self.results.append(
            DiscountResult(
                order_line_id=target_id,
                rule_line_id=rule_line.id,
                detail_id=detail.id,
                type=detail.type,
                free_units=granted,
                gift_product_unit_id=detail.gift_product_unit_id,
            )
        )


def evaluate(
    order_lines: Sequence[OrderLine],
    at: datetime,
    snapshot: CatalogSnapshot,
    *,
    precedence: Precedence = Precedence.PRODUCT_OVER_CATEGORY,
    gift_policy: GiftPolicy = GiftPolicy.CAP,
    amount_places: int = 2,
) -> list[DiscountResult]:
    """Compute every discount the snapshot's active rules grant the order at *at*.

    Multiple rules for one order line are all reported; choosing between
    them is the caller's policy.

    Raises:
        ValidationError: Negative quantity or price, or duplicate order line ids.
        NotFoundError: Unknown product unit, or no price for a line that a
            percent/amount rule needs to price.
    """
    _check_order_lines(order_lines, snapshot)
    return _Evaluation(
        order_lines,
        at,
        snapshot,
        precedence=precedence,
        gift_policy=gift_policy,
        amount_places=amount_places,
    ).run()
