"""
CLI: ``cadence series`` — recurring series commands.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta

import typer

from cadence.cli.utils import console, fail, load_settings, open_database, output

app = typer.Typer(no_args_is_help=True)


def _parse_datetime(value: str) -> datetime:
    from cadence.core.timestamps import ensure_utc

    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        fail(f"not an ISO-8601 timestamp: {value!r}")
        raise


@app.command("list")
def list_series(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recurring series."""
    from cadence.recurrence.repository import SeriesRepository

    with open_database(database) as db, db.connection() as conn:
        series = SeriesRepository(conn, db.dialect).list_series()
    output(
        series,
        as_json=json_out,
        title="Series",
        columns=["id", "name", "rrule", "timezone", "entity_table", "status", "expanded_until", "status_reason"],
    )


@app.command("create")
def create_series(
    rrule: str = typer.Option(..., "--rrule", help="e.g. FREQ=WEEKLY;BYDAY=MO"),
    dtstart: str = typer.Option(..., "--dtstart", help="First occurrence, ISO-8601"),
    duration: str = typer.Option(..., "--duration", help="e.g. 02:00:00 or PT2H"),
    entity_table: str = typer.Option(..., "--table", help="Table the occurrences are written to"),
    template: str = typer.Option("{}", "--template", help="Entity fields as a JSON object"),
    timezone: str = typer.Option("UTC", "--timezone", "--tz"),
    time_range_column: str = typer.Option("time_slot", "--column"),
    name: str | None = typer.Option(None, "--name"),
    created_by: str | None = typer.Option(None, "--created-by"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a series (expansion is enqueued separately)."""
    from cadence.recurrence.repository import SeriesCreate, SeriesRepository

    try:
        entity_template = json.loads(template)
    except ValueError as e:
        fail(f"--template is not valid JSON: {e}")
    if not isinstance(entity_template, dict):
        fail("--template must be a JSON object")

    with open_database(database) as db, db.connection() as conn:
        series = SeriesRepository(conn, db.dialect).create(
            SeriesCreate(
                rrule=rrule,
                dtstart=_parse_datetime(dtstart),
                duration=duration,
                entity_table=entity_table,
                entity_template=entity_template,
                timezone=timezone,
                time_range_column=time_range_column,
                name=name,
                created_by=created_by,
            )
        )
    output(series, as_json=json_out, title="Series Created")


@app.command("expand")
def expand_series(
    series_id: str = typer.Argument(..., help="Series ID"),
    until: str | None = typer.Option(None, "--until", help="Horizon, ISO-8601 (default: now + horizon days)"),
    inline: bool = typer.Option(False, "--inline", help="Expand now instead of enqueueing a job"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Enqueue (or run) an expansion of a series."""
    from cadence.core.timestamps import utc_now
    from cadence.execution.client import JobClient
    from cadence.recurrence.expander import RecurrenceExpander
    from cadence.recurrence.worker import enqueue_expansion

    settings = load_settings(database)
    horizon = _parse_datetime(until) if until else utc_now() + timedelta(days=settings.expansion_horizon_days)

    with open_database(database) as db:
        client = JobClient(db)
        if inline:
            result = RecurrenceExpander(db, client).expand(series_id, horizon)
            output(result, title=f"Expansion: {series_id}")
            return
        inserted = enqueue_expansion(client, series_id, horizon)
    if inserted.duplicate:
        console.print(f"[yellow]Expansion to {horizon.date()} already queued[/yellow] (job {inserted.job.id})")
    else:
        console.print(f"[green]Queued expansion to {horizon.date()}[/green] -> job {inserted.job.id}")


@app.command("cancel-occurrence")
def cancel_occurrence(
    series_id: str = typer.Argument(..., help="Series ID"),
    occurrence_date: str = typer.Argument(..., help="YYYY-MM-DD"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Cancel one materialized occurrence and delete its entity row."""
    from cadence.recurrence.repository import SeriesRepository

    try:
        day = date.fromisoformat(occurrence_date)
    except ValueError:
        fail(f"not a date: {occurrence_date!r}")
        raise

    with open_database(database) as db, db.connection() as conn:
        instance = SeriesRepository(conn, db.dialect).cancel_occurrence(series_id, day)
    if instance is None:
        fail(f"series {series_id} has no occurrence on {day}")
    console.print(f"[green]Cancelled {day}[/green] of series {series_id}")


@app.command("instances")
def list_instances(
    series_id: str = typer.Argument(..., help="Series ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List materialized occurrences of a series."""
    from cadence.recurrence.repository import SeriesRepository

    with open_database(database) as db, db.connection() as conn:
        instances = SeriesRepository(conn, db.dialect).list_instances(series_id)
    output(
        instances,
        as_json=json_out,
        title=f"Instances: {series_id}",
        columns=["occurrence_date", "occurrence_start", "entity_id", "is_exception", "exception_type"],
    )
