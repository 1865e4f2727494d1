"""
CLI utility helpers — output formatting and database access.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cadence.core.database import Database, create_database
from cadence.core.errors import CadenceError
from cadence.core.settings import CadenceSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Database helper ──────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> CadenceSettings:
    """Process settings, with ``--database`` taking precedence."""
    if database is None:
        return get_settings()
    return CadenceSettings(database_url=database)


@contextmanager
def open_database(database: str | None = None) -> Iterator[Database]:
    """Open the configured database with the schema applied."""
    settings = load_settings(database)
    db = create_database(settings.database_url, pool_size=settings.pool_size, init_schema=True)
    try:
        yield db
    except CadenceError as e:
        fail(str(e))
    finally:
        db.close()


def fail(message: str, code: int = 1) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=code)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def output(data: Any, *, as_json: bool = False, title: str = "", columns: list[str] | None = None) -> None:
    """Render one object or a list of objects to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(list(data), title=title, columns=columns)
    else:
        _print_dict(_to_dict(data), title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list, *, title: str = "", columns: list[str] | None = None) -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    rows = [_to_dict(item) for item in items]
    names = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in names:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in names))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")
