"""Command: evaluate an order against the active promotions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import click

from pricerules.commands._base import RulesCommand
from pricerules.commands._io import load_json_array

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext


def _parse_order_lines(
    _ctx: click.Context, _param: click.Parameter, values: tuple[str, ...]
) -> list[dict[str, Any]]:
    """Parse ``ID:UNIT:QTY[:PRICE]`` order-line shorthands."""
    parsed: list[dict[str, Any]] = []
    for raw in values:
        parts = raw.split(":")
        if len(parts) not in (3, 4):
            raise click.BadParameter(f"{raw!r} is not ID:UNIT:QTY[:PRICE]")
        line: dict[str, Any] = {
            "id": parts[0],
            "product_unit_id": parts[1],
            "quantity": parts[2],
        }
        if len(parts) == 4:
            line["unit_price"] = parts[3]
        parsed.append(line)
    return parsed


@click.command(
    cls=RulesCommand,
    examples="""\
  pricerules evaluate --line 1:7:3 --line 2:9:1
  pricerules evaluate --line 1:7:2:45000 --at 2025-01-25T10:00
  pricerules evaluate order.json --at 2025-01-25
  pricerules --json evaluate order.json""",
)
@click.argument("file", type=click.Path(exists=True), required=False)
@click.option(
    "--line",
    "line_specs",
    multiple=True,
    callback=_parse_order_lines,
    help="Order line as ID:UNIT:QTY[:PRICE]; repeatable.",
)
@click.option("--at", "at", default=None, help="Evaluation instant (default: now).")
@click.pass_obj
def evaluate(
    app: AppContext,
    file: str | None,
    line_specs: list[dict[str, Any]],
    at: str | None,
) -> None:
    """Compute the discounts active promotions grant an order.

    FILE, if given, must contain a JSON array of order lines with "id",
    "product_unit_id", "quantity" and optional "unit_price" keys.
    """
    from pricerules.services._helpers import now_utc
    from pricerules.services.evaluation import EvaluationService

    order_lines: list[Any] = []
    if file is not None:
        loaded = load_json_array(file, op="evaluate")
        if not isinstance(loaded, list):
            app.emit(loaded)
            return
        order_lines.extend(loaded)
    order_lines.extend(line_specs)
    if not order_lines:
        raise click.UsageError("Give an order FILE or at least one --line.")

    app.emit(
        EvaluationService(app.catalog).evaluate(
            order_lines, at if at is not None else now_utc()
        )
    )
