"""Command group: product unit registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from pricerules.commands._base import RulesGroup
from pricerules.services.units import UnitService

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext


@click.group(
    cls=RulesGroup,
    examples="""\
  pricerules unit add 7 --product 3 --unit 1 --category 12 --name "Milk 1L"
  pricerules unit list""",
)
@click.pass_obj
def unit(app: AppContext) -> None:
    """Register the product units prices and promotions refer to."""


@unit.command(
    "add",
    examples="""\
  pricerules unit add 7 --product 3 --unit 1
  pricerules unit add 7 --product 3 --unit 1 --category 12""",
)
@click.argument("product_unit_id", type=int)
@click.option("--product", "product_id", type=int, required=True, help="Product id.")
@click.option("--unit", "unit_id", type=int, required=True, help="Unit-of-measure id.")
@click.option("--category", "category_id", type=int, default=None, help="Category id.")
@click.option("--name", default=None, help="Display name.")
@click.pass_obj
def add(
    app: AppContext,
    product_unit_id: int,
    product_id: int,
    unit_id: int,
    category_id: int | None,
    name: str | None,
) -> None:
    """Register or update a product unit."""
    app.emit(
        UnitService(app.catalog).register_unit(
            product_unit_id,
            product_id=product_id,
            unit_id=unit_id,
            category_id=category_id,
            name=name,
        )
    )


@unit.command("list", examples="  pricerules unit list\n  pricerules --json unit list")
@click.pass_obj
def list_cmd(app: AppContext) -> None:
    """List registered product units."""
    app.emit(UnitService(app.catalog).list_units())
