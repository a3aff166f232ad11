"""Subcommand modules for pricerules.

Provides register_commands() which uses deferred imports to keep
``pricerules --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all command groups and standalone commands on the root CLI group.

    3 groups (have subcommands) + 3 standalone commands.
    """
    # --- Groups ---
    from pricerules.commands.price import price
    from pricerules.commands.promo import promo
    from pricerules.commands.unit import unit

    cli.add_command(unit)
    cli.add_command(price)
    cli.add_command(promo)

    # --- Standalone commands ---
    from pricerules.commands.check import check
    from pricerules.commands.evaluate import evaluate
    from pricerules.commands.init_cmd import init_cmd

    cli.add_command(init_cmd)
    cli.add_command(evaluate)
    cli.add_command(check)
