"""AppContext: per-invocation state shared by every command.

The root group builds one from the resolved settings and hands it down via
``@click.pass_obj``. It opens the catalog on first use (so ``--help``,
``--examples`` and ``init`` never touch a database) and owns result
emission: stdout and exit 0 for success, stderr and exit 1 for failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from pricerules.config.logging import configure_logging
from pricerules.output.formatters import OutputSettings, format_result
from pricerules.services.telemetry import enable_telemetry

if TYPE_CHECKING:
    from pricerules.config.settings import RulesSettings
    from pricerules.infrastructure.catalog import Catalog
    from pricerules.services.result import ServiceResult


class AppContext:
    """Settings, the lazily opened catalog, and output routing."""

    def __init__(self, settings: RulesSettings) -> None:
        self.settings = settings
        self.output = OutputSettings(
            json_output=settings.json_output,
            quiet=settings.quiet,
            verbose=settings.verbose,
        )
        self._catalog: Catalog | None = None

        configure_logging(
            verbose=settings.verbose,
            log_json=settings.log_json,
            catalog=settings.catalog.name,
        )
        if settings.verbose:
            enable_telemetry()

    @property
    def catalog(self) -> Catalog:
        if self._catalog is None:
            from pricerules.infrastructure.catalog import Catalog

            self._catalog = Catalog(self.settings)
        return self._catalog

    def close(self) -> None:
        """Release the catalog's connections (registered with ``call_on_close``)."""
        if self._catalog is not None:
            self._catalog.close()
            self._catalog = None

    def emit(self, result: ServiceResult) -> None:
        """Print *result* and set the exit status.

        Warnings of a successful result go to stderr in human modes so
        piped stdout carries only the result.
        """
        text = format_result(result, settings=self.output)
        if not result.ok:
            click.echo(text, err=True)
            raise SystemExit(1)

        click.echo(text)
        if not self.output.json_output:
            for warning in result.warnings:
                click.echo(f"WARNING: {warning}", err=True)
