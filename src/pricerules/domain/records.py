"""Catalog and order records.

Attribute names are snake_case; the wire shape used by the admin console
and the order subsystem is camelCase, produced with
``model_dump(by_alias=True)`` and accepted on input either way.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from pricerules.domain.intervals import TemporalInterval, contains
from pricerules.domain.types import HeaderStatus, PromotionType, TargetType


class Record(BaseModel):
    """Base for all frozen catalog records."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ProductUnit(Record):
    """A sellable unit of a product (referenced, not owned)."""

    id: int
    product_id: int
    unit_id: int
    category_id: int | None = None
    name: str | None = None


class PriceHeader(Record):
    """Named campaign grouping unit prices."""

    id: int
    name: str
    description: str | None = None
    time_start: datetime
    time_end: datetime | None = None
    active: bool = True

    @property
    def window(self) -> TemporalInterval:
        return TemporalInterval(start=self.time_start, end=self.time_end)


class UnitPrice(Record):
    """Price of one product unit valid during ``[time_start, time_end)``."""

    id: int
    product_unit_id: int
    price: Decimal
    price_header_id: int
    time_start: datetime
    time_end: datetime | None = None
    active: bool = True

    @property
    def window(self) -> TemporalInterval:
        return TemporalInterval(start=self.time_start, end=self.time_end)


class PromotionHeader(Record):
    """Named promotional campaign."""

    id: int
    name: str
    start_date: datetime
    end_date: datetime
    active: bool = True

    @property
    def window(self) -> TemporalInterval:
        return TemporalInterval(start=self.start_date, end=self.end_date)


class PromotionLine(Record):
    """One rule of a campaign: a discount type aimed at a product or category."""

    id: int
    promotion_header_id: int
    target_type: TargetType
    target_id: int
    type: PromotionType
    start_date: datetime
    end_date: datetime
    active: bool = True

    @property
    def window(self) -> TemporalInterval:
        return TemporalInterval(start=self.start_date, end=self.end_date)

    @property
    def key(self) -> tuple[str, int]:
        return (str(self.target_type), self.target_id)


class OrderLine(Record):
    """A line of an order submitted for evaluation.

    ``unit_price`` overrides the catalog price when the order subsystem has
    already priced the line.
    """

    id: int
    product_unit_id: int
    quantity: int
    unit_price: Decimal | None = None


class DiscountResult(Record):
    """One rule's effect on one order line.

    Percent/amount rules fill ``amount``; BUY_X_GET_Y fills ``free_units``
    and ``gift_product_unit_id``. ``order_line_id`` is None only for a
    granted gift the order does not contain yet.
    """

    order_line_id: int | None
    rule_line_id: int
    detail_id: int
    type: PromotionType
    amount: Decimal | None = None
    free_units: int | None = None
    gift_product_unit_id: int | None = None


def header_status(active: bool, window: TemporalInterval, at: datetime) -> HeaderStatus:
    """Status label for a header: the active flag first, then the window."""
    if not active:
        return HeaderStatus.INACTIVE
    if at < window.start:
        return HeaderStatus.UPCOMING
    if contains(window, at):
        return HeaderStatus.ACTIVE
    return HeaderStatus.EXPIRED
