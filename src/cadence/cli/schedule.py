"""
CLI: ``cadence schedule`` — cron schedule commands.
"""

from __future__ import annotations

import typer

from cadence.cli.utils import console, fail, open_database, output

app = typer.Typer(no_args_is_help=True)

_COLUMNS = ["name", "target", "cron_expression", "timezone", "enabled", "last_run_at"]


@app.command("list")
def list_schedules(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List all schedules."""
    from cadence.scheduling.repository import ScheduleRepository

    with open_database(database) as db, db.connection() as conn:
        schedules = ScheduleRepository(conn, db.dialect).list_all()
    output(schedules, as_json=json_out, title="Schedules", columns=_COLUMNS)


@app.command("create")
def create_schedule(
    name: str = typer.Argument(..., help="Unique schedule name"),
    target: str = typer.Option(..., "--target", "-t", help="Registered target name"),
    cron: str = typer.Option(..., "--cron", help="5-field cron expression"),
    timezone: str = typer.Option("UTC", "--timezone", "--tz", help="IANA timezone"),
    description: str | None = typer.Option(None, "--description"),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a new schedule."""
    from cadence.scheduling.repository import ScheduleCreate, ScheduleRepository

    with open_database(database) as db, db.connection() as conn:
        repo = ScheduleRepository(conn, db.dialect)
        if repo.get_by_name(name) is not None:
            fail(f"schedule {name!r} already exists")
        schedule = repo.create(
            ScheduleCreate(
                name=name,
                target=target,
                cron_expression=cron,
                timezone=timezone,
                enabled=enabled,
                description=description,
            )
        )
    output(schedule, as_json=json_out, title="Schedule Created")


@app.command("trigger")
def trigger_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Enqueue a manual run now."""
    from cadence.execution.client import JobClient
    from cadence.scheduling.service import SchedulerService

    with open_database(database) as db:
        try:
            inserted = SchedulerService(db, JobClient(db)).trigger(name)
        except KeyError:
            fail(f"schedule {name!r} not found")
    console.print(f"[green]Triggered {name}[/green] -> job {inserted.job.id}")


@app.command("pause")
def pause_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Disable a schedule."""
    _set_enabled(name, False, database)


@app.command("resume")
def resume_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Re-enable a schedule."""
    _set_enabled(name, True, database)


def _set_enabled(name: str, enabled: bool, database: str | None) -> None:
    from cadence.execution.client import JobClient
    from cadence.scheduling.service import SchedulerService

    with open_database(database) as db:
        service = SchedulerService(db, JobClient(db))
        changed = service.resume(name) if enabled else service.pause(name)
    if not changed:
        fail(f"schedule {name!r} not found")
    console.print(f"[green]{'Resumed' if enabled else 'Paused'} {name}[/green]")


@app.command("runs")
def list_runs(
    name: str = typer.Argument(..., help="Schedule name"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show recent runs of a schedule."""
    from cadence.scheduling.repository import ScheduleRepository

    with open_database(database) as db, db.connection() as conn:
        repo = ScheduleRepository(conn, db.dialect)
        schedule = repo.get_by_name(name)
        if schedule is None:
            fail(f"schedule {name!r} not found")
        runs = repo.list_runs(schedule.id, limit=limit)
    output(
        runs,
        as_json=json_out,
        title=f"Runs: {name}",
        columns=["scheduled_for", "triggered_by", "started_at", "duration_ms", "success", "message"],
    )
