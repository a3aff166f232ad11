"""Command: catalog initialization (named init_cmd to avoid shadowing builtins)."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from pricerules.commands._base import RulesCommand

if TYPE_CHECKING:
    from pricerules.commands._context import AppContext

_INIT_EXAMPLES = """\
  pricerules init
  pricerules init /srv/pricing --name retail
  pricerules init . --name hanoi-stores --timezone Asia/Ho_Chi_Minh"""


@click.command("init", cls=RulesCommand, examples=_INIT_EXAMPLES)
@click.argument("path", required=False, default=".")
@click.option("--name", default=None, help="Catalog name (defaults to the directory name).")
@click.option("--timezone", default="UTC", show_default=True, help="Zone for local dates.")
@click.pass_obj
def init_cmd(app: AppContext, path: str, name: str | None, timezone: str) -> None:
    """Initialize a new pricing catalog."""
    catalog_path = Path(path).resolve()

    from pricerules.services.init import InitService

    app.emit(
        InitService.init_catalog(
            catalog_path,
            name=name or catalog_path.name or "default",
            timezone=timezone,
        )
    )
