"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO). The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

from rich.markup import escape
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from pricerules.output.console import (
    create_console,
    get_output,
    style_for_severity,
    style_for_status,
    value_text,
    window_text,
)

if TYPE_CHECKING:
    from rich.console import Console

    from pricerules.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    """
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"

    for key in ("items", "discounts", "conflicts"):
        rows = result.data.get(key)
        if isinstance(rows, list):
            return "\n".join(ident for ident in (_extract_id(r) for r in rows) if ident)

    if "id" in result.data:
        return str(result.data["id"])
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _extract_id(item: Any) -> str:
    if isinstance(item, dict):
        for key in ("id", "detail_id", "existing_id"):
            val = item.get(key)
            if val is not None:
                return str(val)
    return ""


def _status_line(console: Console, result: ServiceResult) -> None:
    """Print the OK status line."""
    label = Text("OK", style="pr.ok")
    op = Text(f"  {result.op}", style="pr.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="pr.key")
    if isinstance(value, (dict, list)):
        v = Text(_json.dumps(value, separators=(",", ":")))
    else:
        v = value_text(key, value)
    console.print(k, v, end="")
    console.print()


def _header_line(console: Console, header: dict[str, Any]) -> None:
    status = str(header.get("status", ""))
    style = style_for_status(status)
    console.print(
        Text(f"#{header.get('id')} ", style="pr.id"),
        Text(str(header.get("name", "")), style="bold"),
        Text(f"  {status}", style=style),
        end="",
    )
    console.print()


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Catalog meta under ``--verbose``; spans become a timing tree."""
    meta = result.meta or {}
    spans = meta.get("telemetry")
    plain = {k: v for k, v in meta.items() if k != "telemetry"}
    if not plain and not spans:
        return

    console.print()
    for k, v in plain.items():
        console.print(Text(f"  {k}: {v}", style="dim"))
    if spans:
        tree = Tree(_span_label(spans), guide_style="dim")
        _grow(tree, spans)
        console.print(tree)


def _span_label(span: dict[str, Any]) -> Text:
    ms = float(span.get("duration_ms") or 0.0)
    style = "bold red" if ms > 1000 else "yellow" if ms > 100 else "dim"
    label = Text.assemble((f"{ms:.2f}ms", style), f" {span.get('name', '?')}")
    notes = span.get("annotations") or {}
    if notes:
        label.append(" " + " ".join(f"{k}={v}" for k, v in notes.items()), style="dim")
    return label


def _grow(tree: Tree, span: dict[str, Any]) -> None:
    for child in span.get("children", []):
        _grow(tree.add(_span_label(child)), child)


def _table(*columns: str | tuple[str, dict[str, Any]]) -> Table:
    """Borderless table; a column is a title or ``(title, column kwargs)``."""
    table = Table(show_header=True, pad_edge=False, box=None)
    for column in columns:
        title, opts = column if isinstance(column, tuple) else (column, {})
        table.add_column(title, **opts)
    return table


_ID = {"style": "pr.id", "no_wrap": True}
_MONEY = {"style": "pr.money", "justify": "right"}
_WINDOW = {"style": "pr.window"}


def _price_table(items: list[dict[str, Any]], *, verbose: bool = False) -> Table:
    table = _table(
        ("ID", _ID),
        ("Unit", {"no_wrap": True}),
        ("Price", _MONEY),
        ("Window", _WINDOW),
        "Active",
    )
    if verbose:
        table.add_column("Header", style="dim")

    for item in items:
        row = [
            str(item.get("id", "")),
            str(item.get("product_unit_id", "")),
            str(item.get("price", "")),
            window_text(item.get("time_start"), item.get("time_end")),
            "yes" if item.get("active") else "no",
        ]
        if verbose:
            row.append(str(item.get("price_header_id", "")))
        table.add_row(*row)
    return table


def _line_table(items: list[dict[str, Any]], *, verbose: bool = False) -> Table:
    table = _table(
        ("ID", _ID),
        "Target",
        "Type",
        ("Window", _WINDOW),
        "Active",
        ("Details", {"justify": "right"}),
    )

    for item in items:
        details = item.get("details") or []
        if verbose and details:
            shown = "\n".join(_detail_summary(d) for d in details)
        else:
            shown = str(len(details))
        table.add_row(
            str(item.get("id", "")),
            f"{item.get('target_type', '')} {item.get('target_id', '')}",
            str(item.get("type", "")),
            window_text(item.get("start_date"), item.get("end_date")),
            "yes" if item.get("active") else "no",
            shown,
        )
    return table


_BOOKKEEPING = ("id", "promotion_line_id", "type", "active")


def _detail_summary(detail: dict[str, Any]) -> str:
    fields = ", ".join(
        f"{k}={v}" for k, v in detail.items() if k not in _BOOKKEEPING and v is not None
    )
    state = "" if detail.get("active", True) else " (inactive)"
    return f"#{detail.get('id')} {fields}{state}"


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="pr.error")
    op = Text(f"  {result.op}", style="pr.op")
    code = Text(f" [{err.code}]" if err else "", style="dim")
    console.print(label, op, code, Text(" — "), Text(msg))

    if err is None or not err.detail:
        return
    for field_error in err.field_errors:
        console.print(
            f"  [pr.key]{escape(field_error['field'])}[/pr.key]: "
            f"{escape(field_error['message'])}"
        )
    if verbose:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            if k != "errors":
                console.print(f"    {k}: {v}")


# ── Mutation renderers ────────────────────────────────────────────────


def _render_mutation(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render create/insert/activate/deactivate results as key/value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        if key == "created":
            continue
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


def _render_bulk(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    _field(console, "header_id", result.data.get("header_id"))
    _field(console, "inserted", result.data.get("count", 0))
    items = result.data.get("items", [])
    if items:
        console.print()
        console.print(_price_table(items))
    if verbose:
        _render_meta(console, result)


# ── Query renderers ───────────────────────────────────────────────────


def _render_price_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _header_line(console, result.data.get("header", {}))
    items = result.data.get("items", [])
    if items:
        console.print(_price_table(items, verbose=verbose))
    console.print(f"\n{result.data.get('count', len(items))} prices")


def _render_line_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    header = result.data.get("header")
    if header:
        _header_line(console, header)
    items = result.data.get("items", [])
    if items:
        console.print(_line_table(items, verbose=verbose))
    console.print(f"\n{result.data.get('count', len(items))} lines")


def _render_resolved_price(
    result: ServiceResult, console: Console, *, verbose: bool = False
) -> None:
    d = result.data
    price = d.get("price")
    unit = d.get("product_unit_id")
    if price is None:
        console.print(
            f"[pr.warning]none[/pr.warning]  No active price for unit {unit} at {d['at']}"
        )
        return
    span = window_text(price.get("time_start"), price.get("time_end"))
    console.print(
        Text(f"{price['price']}", style="pr.money"),
        Text(f"  unit {unit}  price #{price['id']}  header #{price['price_header_id']}"),
        Text(f"  {span}", style="pr.window"),
    )
    if verbose:
        _render_meta(console, result)


def _render_conflicts(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    window = d.get("window", {})
    span = window_text(window.get("start"), window.get("end"))
    if d.get("clear"):
        unit = d["product_unit_id"]
        console.print(f"[pr.ok]OK[/pr.ok]  No conflicts for unit {unit} in {escape(span)}")
        return

    table = _table(("Price", _ID), "Header", ("Window", _WINDOW))
    for conflict in d.get("conflicts", []):
        existing = conflict.get("existing_window", {})
        header = conflict.get("header_name") or ""
        header_id = conflict.get("header_id")
        table.add_row(
            str(conflict.get("existing_id", "")),
            escape(f"#{header_id} {header}" if header_id is not None else header),
            window_text(existing.get("start"), existing.get("end")),
        )
    console.print(f"[pr.error]{d.get('count', 0)} conflict(s)[/pr.error] for {span}")
    console.print(table)


def _render_discounts(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    discounts = d.get("discounts", [])
    if not discounts:
        console.print(f"No discounts apply at {d.get('at')}")
    else:
        table = _table(
            ("Order line", _ID),
            ("Rule line", {"no_wrap": True}),
            ("Detail", {"no_wrap": True}),
            "Type",
            ("Discount", _MONEY),
        )
        for item in discounts:
            if item.get("amount") is not None:
                effect = str(item["amount"])
            else:
                effect = f"{item.get('free_units', 0)} x unit {item.get('gift_product_unit_id')}"
            order_line = item.get("order_line_id")
            table.add_row(
                "(new)" if order_line is None else str(order_line),
                str(item.get("rule_line_id", "")),
                str(item.get("detail_id", "")),
                str(item.get("type", "")),
                effect,
            )
        console.print(table)
        console.print(f"\n{len(discounts)} discounts, total amount {d.get('total_amount')}")
    if verbose:
        console.print(f"catalog version {d.get('catalog_version')}")
        _render_meta(console, result)


def _render_units(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = _table(("ID", _ID), "Product", "Unit", "Category", "Name")
    for item in items:
        category = item.get("category_id")
        table.add_row(
            str(item.get("id", "")),
            str(item.get("product_id", "")),
            str(item.get("unit_id", "")),
            "-" if category is None else str(category),
            str(item.get("name") or ""),
        )
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} units")


# ── Check renderer ────────────────────────────────────────────────────


def _render_check(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render check results with issues grouped by category."""
    issues = result.data.get("issues", [])
    count = result.data.get("count", len(issues))

    if count == 0:
        console.print("[pr.ok]OK[/pr.ok]  No issues found.")
        return

    by_category: dict[str, list[dict[str, Any]]] = {}
    for issue in issues:
        cat = str(issue.get("category", "unknown"))
        by_category.setdefault(cat, []).append(issue)

    for cat, cat_issues in by_category.items():
        console.print(f"\n[bold]{cat}[/bold]")
        for issue in cat_issues:
            sev = str(issue.get("severity", "warning"))
            style = style_for_severity(sev)
            prefix = f"[{style}]{sev}[/{style}]" if style else sev
            ref = escape(f" [{issue.get('record_kind')} #{issue.get('record_id')}]")
            console.print(f"  {prefix}{ref}: {escape(str(issue.get('message', '')))}")

    errors = result.data.get("errors", 0)
    warnings = result.data.get("warnings", count - errors)
    console.print(f"\n{errors} errors, {warnings} warnings")


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    # Mutations
    "register_unit": _render_mutation,
    "create_price_header": _render_mutation,
    "insert_price": _render_mutation,
    "bulk_insert_prices": _render_bulk,
    "activate_price": _render_mutation,
    "deactivate_price": _render_mutation,
    "deactivate_price_header": _render_mutation,
    "activate_price_header": _render_mutation,
    "update_price_header": _render_mutation,
    "create_promotion_header": _render_mutation,
    "insert_line": _render_mutation,
    "insert_detail": _render_mutation,
    "update_line_type": _render_mutation,
    "update_line": _render_mutation,
    "update_detail": _render_mutation,
    "activate_detail": _render_mutation,
    "activate_line": _render_mutation,
    "deactivate_line": _render_mutation,
    "deactivate_detail": _render_mutation,
    "deactivate_promotion_header": _render_mutation,
    "activate_promotion_header": _render_mutation,
    "update_promotion_header": _render_mutation,
    # Queries
    "list_units": _render_units,
    "list_prices": _render_price_list,
    "check_conflict": _render_conflicts,
    "resolve_price": _render_resolved_price,
    "list_lines": _render_line_list,
    "resolve_active_lines": _render_line_list,
    "evaluate": _render_discounts,
    # Integrity
    "check": _render_check,
}
