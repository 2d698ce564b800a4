"""
CLI utility helpers — context construction and output formatting.
"""

from __future__ import annotations

import importlib
import json
from dataclasses import asdict
from datetime import datetime
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from camp_spine.core.errors import ConfigError
from camp_spine.core.protocols import Extractor
from camp_spine.core.settings import CampSpineSettings, get_settings
from camp_spine.core.timestamps import FixedClock, from_iso8601, utc_now
from camp_spine.ops.context import OperationContext
from camp_spine.ops.result import OperationResult, PagedResult
from camp_spine.ops.sqlite_conn import SqliteConnection

console = Console()
err_console = Console(stderr=True)


# ── Connection helper ────────────────────────────────────────────────────


def get_connection(database: str | None = None, settings: CampSpineSettings | None = None) -> SqliteConnection:
    """Open a database connection.  Defaults to ``settings.database_path``."""
    settings = settings or get_settings()
    return SqliteConnection(database or settings.database_path)


def make_context(
    database: str | None = None,
    *,
    dry_run: bool = False,
    user: str | None = None,
    now: str | None = None,
) -> tuple[OperationContext, SqliteConnection]:
    """Create an ``OperationContext`` + connection pair for CLI commands.

    ``now`` pins the clock to an ISO-8601 instant, which lets an operator
    replay a scheduler tick for a given moment.
    """
    settings = get_settings()
    conn = get_connection(database, settings)
    clock = FixedClock(parse_when(now)) if now else utc_now
    ctx = OperationContext(
        conn=conn,
        caller="cli",
        user=user,
        dry_run=dry_run,
        settings=settings,
        clock=clock,
    )
    return ctx, conn


def parse_when(value: str) -> datetime:
    try:
        parsed = from_iso8601(value)
    except ValueError as exc:
        err_console.print(f"[bold red]Invalid timestamp:[/bold red] {value}")
        raise typer.Exit(code=1) from exc
    assert parsed is not None
    return parsed


def load_extractor(path: str) -> Extractor:
    """Import ``package.module:name`` and return an extractor.

    ``name`` may be an extractor instance or a zero-argument factory
    (a class or function) that returns one.
    """
    module_path, _, attr = path.partition(":")
    if not module_path or not attr:
        raise ConfigError(f"Extractor path must look like 'package.module:name', got {path!r}")
    target = getattr(importlib.import_module(module_path), attr)
    extractor = target() if isinstance(target, type) or not isinstance(target, Extractor) else target
    if not isinstance(extractor, Extractor):
        raise ConfigError(f"{path} does not provide an extract(source) method")
    return extractor


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _fail(result: OperationResult) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    code = err.code if err else "ERROR"
    err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
    raise typer.Exit(code=1)


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        _fail(result)

    data = result.data

    if as_json:
        payload = _to_dict(data) if not isinstance(data, list | tuple) else [_to_dict(d) for d in data]
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)

    for warning in result.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {warning}")


def output_paged(
    result: PagedResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a ``PagedResult`` to the terminal with pagination info."""
    if not result.success:
        _fail(result)

    items = result.data or []

    if as_json:
        payload = {
            "items": [_to_dict(d) for d in items],
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
            "has_more": result.has_more,
        }
        console.print_json(json.dumps(payload, default=str))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    _print_table(items, title=title)
    console.print(
        f"\n[dim]Showing {len(items)} of {result.total}"
        f" (offset {result.offset})[/dim]"
    )


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
