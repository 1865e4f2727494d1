"""
CLI: ``cadence db`` — database management commands.
"""

from __future__ import annotations

import typer

from cadence.cli.utils import console, load_settings, output

app = typer.Typer(no_args_is_help=True)

_TABLES = (
    "cadence_jobs",
    "cadence_job_attempts",
    "cadence_scheduled_jobs",
    "cadence_schedule_runs",
    "cadence_recurring_series",
    "cadence_series_instances",
    "cadence_notifications",
)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
) -> None:
    """Initialise database schema (create tables)."""
    from cadence.core.database import create_database
    from cadence.core.schema_loader import apply_all_schemas

    settings = load_settings(database)
    db = create_database(settings.database_url, pool_size=settings.pool_size)
    try:
        with db.connection() as conn:
            applied = apply_all_schemas(conn)
    finally:
        db.close()
    console.print(f"[green]Applied {len(applied)} schema file(s) to {db.url}[/green]")
    for name in applied:
        console.print(f"  [dim]{name}[/dim]")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for all managed tables."""
    from cadence.cli.utils import open_database

    with open_database(database) as db, db.connection() as conn:
        counts = []
        for table in _TABLES:
            conn.execute(f"SELECT COUNT(*) FROM {table}")
            counts.append({"table": table, "rows": conn.fetchone()[0]})
    output(counts, as_json=json_out, title="Table Counts")
