"""Command group: promotion headers, lines, and details."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from pricerules.commands._base import RulesGroup
from pricerules.domain.types import PromotionType, TargetType
from pricerules.services.promotions import PromotionCatalogService

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext

_TARGET_CHOICE = click.Choice([t.value for t in TargetType], case_sensitive=False)
_TYPE_CHOICE = click.Choice([t.value for t in PromotionType], case_sensitive=False)

_PROMO_EXAMPLES = """\
  pricerules promo header-add "Tet sale" --start 2025-01-20 --end 2025-02-05
  pricerules promo line-add 1 --target PRODUCT --target-id 3 --type DISCOUNT_PERCENT
  pricerules promo detail-add 1 --percent 20 --min-amount 50000 --max-discount 15000
  pricerules promo lines PRODUCT 3 --category 12 --at 2025-01-25
  pricerules promo list 1"""


@click.group(cls=RulesGroup, examples=_PROMO_EXAMPLES)
@click.pass_obj
def promo(app: AppContext) -> None:
    """Manage promotion headers, lines, and details."""


@promo.command(
    "header-add",
    examples='  pricerules promo header-add "Tet sale" --start 2025-01-20 --end 2025-02-05',
)
@click.argument("name")
@click.option("--start", "start_date", required=True, help="Start date or datetime.")
@click.option("--end", "end_date", required=True, help="End date (inclusive day) or datetime.")
@click.pass_obj
def header_add(app: AppContext, name: str, start_date: str, end_date: str) -> None:
    """Create a promotion header."""
    app.emit(PromotionCatalogService(app.catalog).create_header(name, start_date, end_date))


@promo.command(
    "line-add",
    examples="""\
  pricerules promo line-add 1 --target PRODUCT --target-id 3 --type DISCOUNT_PERCENT
  pricerules promo line-add 1 --target CATEGORY --target-id 12 --type DISCOUNT_AMOUNT \\
      --start 2025-01-25 --end 2025-01-31
  pricerules promo line-add 1 --target PRODUCT --target-id 3 --type BUY_X_GET_Y""",
)
@click.argument("header_id", type=int)
@click.option("--target", "target_type", type=_TARGET_CHOICE, required=True, help="Target kind.")
@click.option("--target-id", type=int, required=True, help="Product or category id.")
@click.option("--type", "promotion_type", type=_TYPE_CHOICE, required=True, help="Rule type.")
@click.option("--start", "start_date", default=None, help="Override the header start.")
@click.option("--end", "end_date", default=None, help="Override the header end.")
@click.pass_obj
def line_add(
    app: AppContext,
    header_id: int,
    target_type: str,
    target_id: int,
    promotion_type: str,
    start_date: str | None,
    end_date: str | None,
) -> None:
    """Add a rule line to a promotion header."""
    app.emit(
        PromotionCatalogService(app.catalog).insert_line(
            header_id,
            target_type.upper(),
            target_id,
            promotion_type.upper(),
            start_date=start_date,
            end_date=end_date,
        )
    )


@promo.command(
    "detail-add",
    examples="""\
  pricerules promo detail-add 1 --percent 20 --max-discount 15000
  pricerules promo detail-add 2 --amount 10000 --min-amount 100000
  pricerules promo detail-add 3 --condition-unit 7 --condition-qty 3 \\
      --gift-unit 7 --free-qty 1""",
)
@click.argument("line_id", type=int)
@click.option("--percent", "discount_percent", default=None, help="Percent off (0-100].")
@click.option("--amount", "discount_amount", default=None, help="Fixed amount off.")
@click.option("--min-amount", default=None, help="Minimum line subtotal.")
@click.option("--max-discount", default=None, help="Cap on the discount.")
@click.option("--condition-unit", "condition_product_unit_id", default=None, help="Bought unit.")
@click.option("--condition-qty", "condition_quantity", default=None, help="Units to buy.")
@click.option("--gift-unit", "gift_product_unit_id", default=None, help="Gift unit.")
@click.option("--free-qty", "free_quantity", default=None, help="Gift units per multiple.")
@click.pass_obj
def detail_add(app: AppContext, line_id: int, **fields: str | None) -> None:
    """Attach discount parameters to a line.

    Only the options of the line's promotion type are accepted.
    """
    payload = {key: value for key, value in fields.items() if value is not None}
    app.emit(PromotionCatalogService(app.catalog).insert_detail(line_id, payload))


@promo.command(
    "line-type",
    examples="  pricerules promo line-type 4 DISCOUNT_AMOUNT",
)
@click.argument("line_id", type=int)
@click.argument("promotion_type", type=_TYPE_CHOICE)
@click.pass_obj
def line_type(app: AppContext, line_id: int, promotion_type: str) -> None:
    """Change a line's promotion type."""
    app.emit(
        PromotionCatalogService(app.catalog).update_line_type(line_id, promotion_type.upper())
    )


@promo.command(
    "lines",
    examples="""\
  pricerules promo lines PRODUCT 3
  pricerules promo lines PRODUCT 3 --category 12 --at 2025-01-25T09:00
  pricerules promo lines CATEGORY 12""",
)
@click.argument("target_type", type=_TARGET_CHOICE)
@click.argument("target_id", type=int)
@click.option("--at", "at", default=None, help="Instant to resolve at (default: now).")
@click.option("--category", "category_id", type=int, default=None, help="Product's category.")
@click.pass_obj
def lines(
    app: AppContext,
    target_type: str,
    target_id: int,
    at: str | None,
    category_id: int | None,
) -> None:
    """Show the lines active for a target."""
    from pricerules.services._helpers import now_utc

    app.emit(
        PromotionCatalogService(app.catalog).resolve_active_lines(
            target_type.upper(),
            target_id,
            at if at is not None else now_utc(),
            category_id=category_id,
        )
    )


@promo.command("list", examples="  pricerules promo list 1\n  pricerules -v promo list 1")
@click.argument("header_id", type=int)
@click.pass_obj
def list_cmd(app: AppContext, header_id: int) -> None:
    """List the lines of a promotion header."""
    app.emit(PromotionCatalogService(app.catalog).list_lines(header_id))


@promo.command(
    "deactivate-line",
    examples="""\
  pricerules promo deactivate-line 4
  pricerules promo deactivate-line 1 --header""",
)
@click.argument("record_id", type=int)
@click.option("--header", "is_header", is_flag=True, help="Deactivate a whole header.")
@click.pass_obj
def deactivate_line(app: AppContext, record_id: int, is_header: bool) -> None:
    """Deactivate a line, or a header and all its lines."""
    svc = PromotionCatalogService(app.catalog)
    if is_header:
        app.emit(svc.deactivate_header(record_id))
    else:
        app.emit(svc.deactivate_line(record_id))


@promo.command(
    "activate-line",
    examples="""\
  pricerules promo activate-line 4
  pricerules promo activate-line 1 --header
  pricerules promo activate-line 1 --header --header-only""",
)
@click.argument("record_id", type=int)
@click.option("--header", "is_header", is_flag=True, help="Reactivate a whole header.")
@click.option(
    "--header-only",
    is_flag=True,
    help="With --header, leave the header's inactive lines as they are.",
)
@click.pass_obj
def activate_line(app: AppContext, record_id: int, is_header: bool, header_only: bool) -> None:
    """Reactivate a line, or a header and its lines (conflict-checked again)."""
    svc = PromotionCatalogService(app.catalog)
    if is_header:
        app.emit(svc.activate_header(record_id, with_lines=not header_only))
    else:
        app.emit(svc.activate_line(record_id))


@promo.command("deactivate-detail", examples="  pricerules promo deactivate-detail 9")
@click.argument("detail_id", type=int)
@click.pass_obj
def deactivate_detail(app: AppContext, detail_id: int) -> None:
    """Deactivate a promotion detail."""
    app.emit(PromotionCatalogService(app.catalog).deactivate_detail(detail_id))


@promo.command("activate-detail", examples="  pricerules promo activate-detail 9")
@click.argument("detail_id", type=int)
@click.pass_obj
def activate_detail(app: AppContext, detail_id: int) -> None:
    """Reactivate a promotion detail."""
    app.emit(PromotionCatalogService(app.catalog).activate_detail(detail_id))


@promo.command(
    "header-edit",
    examples="""\
  pricerules promo header-edit 1 --name "Tet sale 2025"
  pricerules promo header-edit 1 --end 2025-02-10""",
)
@click.argument("header_id", type=int)
@click.option("--name", default=None, help="New name.")
@click.option("--start", "start_date", default=None, help="New start date or datetime.")
@click.option("--end", "end_date", default=None, help="New end date or datetime.")
@click.pass_obj
def header_edit(
    app: AppContext,
    header_id: int,
    name: str | None,
    start_date: str | None,
    end_date: str | None,
) -> None:
    """Rename a promotion header or move its window."""
    app.emit(
        PromotionCatalogService(app.catalog).update_header(
            header_id, name=name, start_date=start_date, end_date=end_date
        )
    )


@promo.command(
    "line-edit",
    examples="""\
  pricerules promo line-edit 4 --target CATEGORY --target-id 12
  pricerules promo line-edit 4 --start 2025-01-25 --end 2025-01-31""",
)
@click.argument("line_id", type=int)
@click.option("--target", "target_type", type=_TARGET_CHOICE, default=None, help="Target kind.")
@click.option("--target-id", type=int, default=None, help="Product or category id.")
@click.option("--start", "start_date", default=None, help="New start date or datetime.")
@click.option("--end", "end_date", default=None, help="New end date or datetime.")
@click.pass_obj
def line_edit(
    app: AppContext,
    line_id: int,
    target_type: str | None,
    target_id: int | None,
    start_date: str | None,
    end_date: str | None,
) -> None:
    """Retarget a line or move its window (conflict-checked again)."""
    app.emit(
        PromotionCatalogService(app.catalog).update_line(
            line_id,
            target_type=target_type.upper() if target_type else None,
            target_id=target_id,
            start_date=start_date,
            end_date=end_date,
        )
    )


@promo.command(
    "detail-edit",
    examples="""\
  pricerules promo detail-edit 9 --percent 25
  pricerules promo detail-edit 9 --max-discount ''""",
)
@click.argument("detail_id", type=int)
@click.option("--percent", "discount_percent", default=None, help="Percent off (0-100].")
@click.option("--amount", "discount_amount", default=None, help="Fixed amount off.")
@click.option("--min-amount", default=None, help="Minimum line subtotal ('' clears).")
@click.option("--max-discount", default=None, help="Cap on the discount ('' clears).")
@click.option("--condition-unit", "condition_product_unit_id", default=None, help="Bought unit.")
@click.option("--condition-qty", "condition_quantity", default=None, help="Units to buy.")
@click.option("--gift-unit", "gift_product_unit_id", default=None, help="Gift unit.")
@click.option("--free-qty", "free_quantity", default=None, help="Gift units per multiple.")
@click.pass_obj
def detail_edit(app: AppContext, detail_id: int, **fields: str | None) -> None:
    """Change some parameters of a detail; the rest keep their values."""
    payload = {key: value for key, value in fields.items() if value is not None}
    app.emit(PromotionCatalogService(app.catalog).update_detail(detail_id, payload))
