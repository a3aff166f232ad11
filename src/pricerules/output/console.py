"""Rich console and the styling vocabulary of catalog output.

Every renderer writes to a :func:`create_console` buffer and styles
catalog values through the helpers here: header statuses, issue
severities, money amounts and validity windows all have one look across
the price, promotion and check views.
"""

from __future__ import annotations

from io import StringIO
from typing import Any

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

RULES_THEME = Theme(
    {
        "pr.ok": "bold green",
        "pr.error": "bold red",
        "pr.warning": "bold yellow",
        "pr.op": "bold cyan",
        "pr.key": "dim",
        "pr.id": "bold blue",
        "pr.money": "magenta",
        "pr.window": "dim",
        "pr.status.active": "green",
        "pr.status.upcoming": "cyan",
        "pr.status.expired": "dim",
        "pr.status.inactive": "red",
    }
)

_STATUS_STYLES: dict[str, str] = {
    "active": "pr.status.active",
    "upcoming": "pr.status.upcoming",
    "expired": "pr.status.expired",
    "inactive": "pr.status.inactive",
}

_SEVERITY_STYLES: dict[str, str] = {
    "error": "pr.error",
    "warning": "pr.warning",
}

# Payload keys holding monetary amounts.
MONEY_KEYS = frozenset({"price", "amount", "total_amount", "discount_amount", "max_discount"})

OPEN_END = "∞"


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=RULES_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    """Return the Rich style name for a header status."""
    return _STATUS_STYLES.get(status, "")


def style_for_severity(severity: str) -> str:
    """Return the Rich style name for a check issue severity."""
    return _SEVERITY_STYLES.get(severity, "")


def window_text(start: Any, end: Any) -> str:
    """A half-open validity window, ``∞`` standing in for a missing end.

    Examples:
        >>> window_text("2024-01-01", None)
        '[2024-01-01, ∞)'
    """
    return f"[{start}, {end if end is not None else OPEN_END})"


def value_text(key: str, value: Any) -> Text:
    """*value* styled by what its payload *key* holds."""
    if value is None:
        return Text("-")
    if key == "id" or key.endswith("_id"):
        return Text(str(value), style="pr.id")
    if key in MONEY_KEYS:
        return Text(str(value), style="pr.money")
    if key == "status":
        return Text(str(value), style=style_for_status(str(value)))
    return Text(str(value))
