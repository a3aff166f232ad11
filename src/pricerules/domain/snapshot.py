"""CatalogSnapshot: an immutable, versioned view of the whole catalog.

The persistence collaborator builds one snapshot per catalog version. An
evaluation holds a single snapshot for its whole run, so a concurrent price
change can never show one order two catalog states. Snapshots are never
mutated, so any number of evaluations may share one without locking.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pricerules.domain.details import AnyDetail
from pricerules.domain.intervals import contains
from pricerules.domain.records import (
    PriceHeader,
    ProductUnit,
    PromotionHeader,
    PromotionLine,
    UnitPrice,
)
from pricerules.domain.types import Precedence, TargetType


@dataclass(frozen=True)
class CatalogSnapshot:
    """All catalog records as of ``version``, with lookup indexes."""

    version: int
    taken_at: datetime
    units: tuple[ProductUnit, ...] = ()
    price_headers: tuple[PriceHeader, ...] = ()
    prices: tuple[UnitPrice, ...] = ()
    promotion_headers: tuple[PromotionHeader, ...] = ()
    lines: tuple[PromotionLine, ...] = ()
    details: tuple[AnyDetail, ...] = ()

    _units: dict[int, ProductUnit] = field(init=False, repr=False, compare=False)
    _price_headers: dict[int, PriceHeader] = field(init=False, repr=False, compare=False)
    _promotion_headers: dict[int, PromotionHeader] = field(init=False, repr=False, compare=False)
    _lines: dict[int, PromotionLine] = field(init=False, repr=False, compare=False)
    _prices_by_unit: dict[int, list[UnitPrice]] = field(init=False, repr=False, compare=False)
    _lines_by_target: dict[tuple[str, int], list[PromotionLine]] = field(
        init=False, repr=False, compare=False
    )
    _details_by_line: dict[int, list[AnyDetail]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        prices_by_unit: dict[int, list[UnitPrice]] = defaultdict(list)
        for price in sorted(self.prices, key=lambda p: (p.time_start, p.id)):
            prices_by_unit[price.product_unit_id].append(price)

        lines_by_target: dict[tuple[str, int], list[PromotionLine]] = defaultdict(list)
        for line in sorted(self.lines, key=lambda ln: ln.id):
            lines_by_target[line.key].append(line)

        details_by_line: dict[int, list[AnyDetail]] = defaultdict(list)
        for detail in sorted(self.details, key=lambda d: d.id):
            details_by_line[detail.promotion_line_id].append(detail)

        object.__setattr__(self, "_units", {u.id: u for u in self.units})
        object.__setattr__(self, "_price_headers", {h.id: h for h in self.price_headers})
        object.__setattr__(self, "_promotion_headers", {h.id: h for h in self.promotion_headers})
        object.__setattr__(self, "_lines", {ln.id: ln for ln in self.lines})
        object.__setattr__(self, "_prices_by_unit", dict(prices_by_unit))
        object.__setattr__(self, "_lines_by_target", dict(lines_by_target))
        object.__setattr__(self, "_details_by_line", dict(details_by_line))

    # ------------------------------------------------------------------
    # Record lookups
    # ------------------------------------------------------------------

    def unit(self, unit_id: int) -> ProductUnit | None:
        return self._units.get(unit_id)

    def price_header(self, header_id: int) -> PriceHeader | None:
        return self._price_headers.get(header_id)

    def promotion_header(self, header_id: int) -> PromotionHeader | None:
        return self._promotion_headers.get(header_id)

    def line(self, line_id: int) -> PromotionLine | None:
        return self._lines.get(line_id)

    # ------------------------------------------------------------------
    # Point-in-time resolution
    # ------------------------------------------------------------------

    def effective_price(self, unit_id: int, at: datetime) -> UnitPrice | None:
        """The active price of *unit_id* whose window contains *at*.

        Only prices under active headers count. Should two active windows
        ever overlap the earliest-starting one wins.
        """
        for price in self._prices_by_unit.get(unit_id, []):
            if not price.active or not contains(price.window, at):
                continue
            header = self._price_headers.get(price.price_header_id)
            if header is None or not header.active:
                continue
            return price
        return None

    def active_lines(
        self,
        target_type: TargetType,
        target_id: int,
        at: datetime,
    ) -> list[PromotionLine]:
        """Active lines for one target whose window contains *at*, by id."""
        matched: list[PromotionLine] = []
        for line in self._lines_by_target.get((str(target_type), target_id), []):
            if not line.active or not contains(line.window, at):
                continue
            header = self._promotion_headers.get(line.promotion_header_id)
            if header is None or not header.active:
                continue
            matched.append(line)
        return matched

    def lines_for_product(
        self,
        product_id: int,
        category_id: int | None,
        at: datetime,
        *,
        precedence: Precedence = Precedence.PRODUCT_OVER_CATEGORY,
    ) -> list[PromotionLine]:
        """Lines covering a product directly or through its category."""
        product_lines = self.active_lines(TargetType.PRODUCT, product_id, at)
        if category_id is None:
            return product_lines
        if product_lines and precedence == Precedence.PRODUCT_OVER_CATEGORY:
            return product_lines
        category_lines = self.active_lines(TargetType.CATEGORY, category_id, at)
        return sorted([*product_lines, *category_lines], key=lambda ln: ln.id)

    def details_for(self, line_id: int, *, include_inactive: bool = False) -> list[AnyDetail]:
        details = self._details_by_line.get(line_id, [])
        if include_inactive:
            return list(details)
        return [d for d in details if d.active]

    def summary(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "taken_at": self.taken_at.isoformat(),
            "units": len(self.units),
            "price_headers": len(self.price_headers),
            "prices": len(self.prices),
            "promotion_headers": len(self.promotion_headers),
            "lines": len(self.lines),
            "details": len(self.details),
        }
