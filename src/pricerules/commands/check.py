"""Command: catalog integrity checking."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from pricerules.commands._base import RulesCommand

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext


@click.command(
    cls=RulesCommand,
    examples="""\
  pricerules check
  pricerules check --errors-only
  pricerules --json check""",
)
@click.option(
    "--min-severity",
    type=click.Choice(["warning", "error"]),
    default="warning",
    help="Hide issues below this severity.",
)
@click.option("--errors-only", is_flag=True, help="Shortcut for --min-severity error.")
@click.pass_obj
def check(app: AppContext, min_severity: str, errors_only: bool) -> None:
    """Check catalog integrity (overlaps, type mismatches, dangling references)."""
    from pricerules.services.check import CheckService

    threshold = "error" if errors_only else min_severity
    app.emit(CheckService(app.catalog).check(min_severity=threshold))
