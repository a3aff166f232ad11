"""Command group: price headers and unit prices."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from pricerules.commands._base import RulesGroup
from pricerules.commands._io import load_json_array
from pricerules.services.prices import PriceCatalogService

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext

_PRICE_EXAMPLES = """\
  pricerules price header-add "Summer list" --start 2024-06-01 --end 2024-08-31
  pricerules price add 7 25000 --header 1
  pricerules price add 7 23000 --header 1 --start 2024-07-01
  pricerules price bulk prices.json --header 1
  pricerules price check 7 --header 2
  pricerules price resolve 7 --at 2024-07-15T10:00
  pricerules price list 1"""


@click.group(cls=RulesGroup, examples=_PRICE_EXAMPLES)
@click.pass_obj
def price(app: AppContext) -> None:
    """Manage price headers and unit prices."""


@price.command(
    "header-add",
    examples="""\
  pricerules price header-add "Base list" --start 2024-01-01
  pricerules price header-add "Summer list" --start 2024-06-01 --end 2024-08-31""",
)
@click.argument("name")
@click.option("--start", "time_start", required=True, help="Start date or datetime.")
@click.option("--end", "time_end", default=None, help="End date (inclusive day) or datetime.")
@click.option("--description", default=None, help="Free-text description.")
@click.pass_obj
def header_add(
    app: AppContext,
    name: str,
    time_start: str,
    time_end: str | None,
    description: str | None,
) -> None:
    """Create a price header."""
    app.emit(
        PriceCatalogService(app.catalog).create_header(
            name, time_start, time_end, description=description
        )
    )


@price.command(
    "add",
    examples="""\
  pricerules price add 7 25000 --header 1
  pricerules price add 7 23000 --header 1 --start 2024-07-01 --end 2024-07-31""",
)
@click.argument("product_unit_id", type=int)
@click.argument("amount")
@click.option("--header", "header_id", type=int, required=True, help="Price header id.")
@click.option("--start", "time_start", default=None, help="Override the header start.")
@click.option("--end", "time_end", default=None, help="Override the header end.")
@click.pass_obj
def add(
    app: AppContext,
    product_unit_id: int,
    amount: str,
    header_id: int,
    time_start: str | None,
    time_end: str | None,
) -> None:
    """Add a price for a product unit under a header."""
    app.emit(
        PriceCatalogService(app.catalog).insert_price(
            product_unit_id,
            amount,
            header_id,
            time_start=time_start,
            time_end=time_end,
        )
    )


@price.command(
    "bulk",
    examples="""\
  pricerules price bulk prices.json --header 1
  pricerules --json price bulk prices.json --header 1""",
)
@click.argument("file", type=click.Path(exists=True))
@click.option("--header", "header_id", type=int, required=True, help="Price header id.")
@click.pass_obj
def bulk(app: AppContext, file: str, header_id: int) -> None:
    """Insert many prices from a JSON file, all or nothing.

    FILE must contain a JSON array of objects with "product_unit_id" and
    "price" keys, and optional "time_start" / "time_end".
    """
    items = load_json_array(file, op="bulk_insert_prices")
    if not isinstance(items, list):
        app.emit(items)
        return
    app.emit(PriceCatalogService(app.catalog).bulk_insert_prices(header_id, items))


@price.command(
    "check",
    examples="""\
  pricerules price check 7 --header 2
  pricerules price check 7 --header 2 --start 2024-07-01 --end 2024-07-10""",
)
@click.argument("product_unit_id", type=int)
@click.option("--header", "header_id", type=int, required=True, help="Price header id.")
@click.option("--start", "time_start", default=None, help="Override the header start.")
@click.option("--end", "time_end", default=None, help="Override the header end.")
@click.pass_obj
def check(
    app: AppContext,
    product_unit_id: int,
    header_id: int,
    time_start: str | None,
    time_end: str | None,
) -> None:
    """Report prices a new window would conflict with (no writes)."""
    app.emit(
        PriceCatalogService(app.catalog).check_conflict(
            product_unit_id, header_id, time_start=time_start, time_end=time_end
        )
    )


@price.command(
    "resolve",
    examples="""\
  pricerules price resolve 7
  pricerules price resolve 7 --at 2024-07-15
  pricerules price resolve 7 --at 2024-07-15T10:00:00+07:00""",
)
@click.argument("product_unit_id", type=int)
@click.option("--at", "at", default=None, help="Instant to resolve at (default: now).")
@click.pass_obj
def resolve(app: AppContext, product_unit_id: int, at: str | None) -> None:
    """Show the effective price of a product unit."""
    from pricerules.services._helpers import now_utc

    app.emit(
        PriceCatalogService(app.catalog).resolve_price(
            product_unit_id, at if at is not None else now_utc()
        )
    )


@price.command("list", examples="  pricerules price list 1\n  pricerules -v price list 1")
@click.argument("header_id", type=int)
@click.pass_obj
def list_cmd(app: AppContext, header_id: int) -> None:
    """List the prices under a header."""
    app.emit(PriceCatalogService(app.catalog).list_prices(header_id))


@price.command(
    "deactivate",
    examples="""\
  pricerules price deactivate 12
  pricerules price deactivate 3 --header""",
)
@click.argument("record_id", type=int)
@click.option("--header", "is_header", is_flag=True, help="Deactivate a whole header.")
@click.pass_obj
def deactivate(app: AppContext, record_id: int, is_header: bool) -> None:
    """Deactivate a price, or a header and all its prices."""
    svc = PriceCatalogService(app.catalog)
    if is_header:
        app.emit(svc.deactivate_header(record_id))
    else:
        app.emit(svc.deactivate_price(record_id))


@price.command(
    "activate",
    examples="""\
  pricerules price activate 12
  pricerules price activate 3 --header
  pricerules price activate 3 --header --header-only""",
)
@click.argument("record_id", type=int)
@click.option("--header", "is_header", is_flag=True, help="Reactivate a whole header.")
@click.option(
    "--header-only",
    is_flag=True,
    help="With --header, leave the header's inactive prices as they are.",
)
@click.pass_obj
def activate(app: AppContext, record_id: int, is_header: bool, header_only: bool) -> None:
    """Reactivate a price, or a header and its prices (conflict-checked again)."""
    svc = PriceCatalogService(app.catalog)
    if is_header:
        app.emit(svc.activate_header(record_id, with_prices=not header_only))
    else:
        app.emit(svc.activate_price(record_id))


@price.command(
    "header-edit",
    examples="""\
  pricerules price header-edit 1 --name "Base list 2024"
  pricerules price header-edit 1 --end 2024-12-31
  pricerules price header-edit 1 --open-ended --description ''""",
)
@click.argument("header_id", type=int)
@click.option("--name", default=None, help="New name.")
@click.option("--description", default=None, help="New description (empty clears it).")
@click.option("--start", "time_start", default=None, help="New start date or datetime.")
@click.option("--end", "time_end", default=None, help="New end date or datetime.")
@click.option("--open-ended", is_flag=True, help="Remove the end bound.")
@click.pass_obj
def header_edit(
    app: AppContext,
    header_id: int,
    name: str | None,
    description: str | None,
    time_start: str | None,
    time_end: str | None,
    open_ended: bool,
) -> None:
    """Edit a price header.

    The window is the default for prices added later; stored prices keep
    their own windows.
    """
    app.emit(
        PriceCatalogService(app.catalog).update_header(
            header_id,
            name=name,
            description=description,
            time_start=time_start,
            time_end=time_end,
            open_ended=open_ended,
        )
    )
