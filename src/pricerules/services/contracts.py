"""Typed payload contracts for service and adapter boundaries.

These models validate operation payload shapes before they leave the
service layer, so a renamed key (for example ``items`` vs ``prices``)
fails fast in tests rather than in an admin screen.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from pricerules.domain.records import Record


def dump_validated[T: BaseModel](model_cls: type[T], data: dict[str, Any]) -> dict[str, Any]:
    """Validate *data* against *model_cls* and return a normalized payload dict."""
    model = model_cls.model_validate(data)
    return model.model_dump(mode="python")


def record_payload(record: Record) -> dict[str, Any]:
    """JSON-safe snake_case dict of a catalog record (decimals as strings)."""
    return record.model_dump(mode="json")


class PriceItem(BaseModel):
    """One unit price row."""

    model_config = ConfigDict(extra="allow")

    id: int
    product_unit_id: int
    price: str
    price_header_id: int
    time_start: str
    time_end: str | None = None
    active: bool


class HeaderItem(BaseModel):
    """A price or promotion header with its status at listing time."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str
    active: bool
    status: Literal["inactive", "upcoming", "active", "expired"]


class PriceListData(BaseModel):
    """Payload contract for ``PriceCatalogService.list_prices``."""

    header: HeaderItem
    count: int
    items: list[PriceItem]


class BulkInsertData(BaseModel):
    """Payload contract for ``PriceCatalogService.bulk_insert_prices``."""

    header_id: int
    count: int
    items: list[PriceItem]


class ConflictItem(BaseModel):
    """One existing record a candidate window collides with."""

    key: str | int
    existing_id: int
    existing_window: dict[str, str | None]
    header_id: int | None = None
    header_name: str | None = None


class ConflictCheckData(BaseModel):
    """Payload contract for ``PriceCatalogService.check_conflict``."""

    product_unit_id: int
    window: dict[str, str | None]
    clear: bool
    count: int
    conflicts: list[ConflictItem]


class DetailItem(BaseModel):
    """One promotion detail (variant fields vary by ``type``)."""

    model_config = ConfigDict(extra="allow")

    id: int
    promotion_line_id: int
    type: str
    active: bool


class LineItem(BaseModel):
    """One promotion line, optionally with its details."""

    model_config = ConfigDict(extra="allow")

    id: int
    promotion_header_id: int
    target_type: str
    target_id: int
    type: str
    start_date: str
    end_date: str
    active: bool
    details: list[DetailItem] | None = None


class LineListData(BaseModel):
    """Payload contract for ``PromotionCatalogService.list_lines``."""

    header: HeaderItem
    count: int
    items: list[LineItem]


class ActiveLinesData(BaseModel):
    """Payload contract for ``PromotionCatalogService.resolve_active_lines``."""

    target_type: str
    target_id: int
    category_id: int | None = None
    at: str
    count: int
    items: list[LineItem]


class DiscountItem(BaseModel):
    """One discount granted by one detail."""

    order_line_id: int | None = None
    rule_line_id: int
    detail_id: int
    type: str
    amount: str | None = None
    free_units: int | None = None
    gift_product_unit_id: int | None = None


class EvaluationData(BaseModel):
    """Payload contract for ``EvaluationService.evaluate``."""

    at: str
    catalog_version: int
    count: int
    total_amount: str
    discounts: list[DiscountItem]


class CheckIssue(BaseModel):
    """One integrity finding returned by ``CheckService.check``."""

    model_config = ConfigDict(extra="allow")

    category: str
    severity: Literal["warning", "error"]
    record_kind: str
    record_id: int
    message: str


class CheckResultData(BaseModel):
    """Payload contract for ``CheckService.check``."""

    issues: list[CheckIssue]
    count: int
    errors: int
    warnings: int
    healthy: bool
