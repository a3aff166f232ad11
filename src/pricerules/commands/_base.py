"""Click base classes that add an ``--examples`` flag.

``--help`` stays short; ``pricerules price add --examples`` prints the
invocation samples registered on the command and exits.
"""

from __future__ import annotations

from typing import Any

import click


def _show_examples(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"Examples for '{ctx.command_path}':\n")
    click.echo(getattr(ctx.command, "examples", None) or "")
    ctx.exit(0)


def _examples_option() -> click.Option:
    return click.Option(
        ["--examples"],
        is_flag=True,
        expose_value=False,
        is_eager=True,
        callback=_show_examples,
        help="Show usage examples.",
    )


class _ExamplesMixin:
    """Accepts ``examples=`` and exposes it through ``--examples``."""

    params: list[click.Parameter]

    def __init__(self, *args: Any, examples: str | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.examples = examples
        if examples:
            self.params.append(_examples_option())


class RulesCommand(_ExamplesMixin, click.Command):
    """Command with optional ``--examples``."""


class RulesGroup(_ExamplesMixin, click.Group):
    """Group whose subcommands are RulesCommands, so ``examples=`` works on them too."""

    command_class = RulesCommand
