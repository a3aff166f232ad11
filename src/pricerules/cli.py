"""``pricerules`` entry point: global output/config flags and command registration."""

from __future__ import annotations

from pathlib import Path

import click

from pricerules import __version__
from pricerules.commands import register_commands
from pricerules.commands._context import AppContext
from pricerules.config.settings import RulesSettings

_ROOT_TYPE = click.Path(file_okay=False, path_type=Path)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="pricerules")
@click.option("--json", "json_output", is_flag=True, help="Print results as JSON.")
@click.option("-q", "--quiet", is_flag=True, help="Print ids only.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logs, catalog meta and timings.")
@click.option("--log-json", is_flag=True, help="Emit logs to stderr as JSON lines.")
@click.option("-c", "--config", "config_path", default=None, help="Use this pricerules.toml.")
@click.option(
    "-r",
    "--root",
    "catalog_root",
    type=_ROOT_TYPE,
    default=None,
    help="Catalog directory (default: where pricerules.toml is found, else cwd).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    catalog_root: Path | None,
) -> None:
    """pricerules: pricing and promotion rule engine.

    Keeps price and promotion windows conflict-free and computes the
    discounts an order earns at a given instant.
    """
    app = AppContext(
        RulesSettings.from_cli(
            config_path=config_path,
            catalog_root=catalog_root.resolve() if catalog_root else None,
            json_output=json_output,
            quiet=quiet,
            verbose=verbose,
            log_json=log_json,
        )
    )
    ctx.obj = app
    ctx.call_on_close(app.close)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
