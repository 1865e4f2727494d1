"""
CLI: ``cadence jobs`` — inspect and re-queue durable jobs.
"""

from __future__ import annotations

import typer

from cadence.cli.utils import console, fail, open_database, output

app = typer.Typer(no_args_is_help=True)

_COLUMNS = ["id", "kind", "queue", "state", "attempt", "max_attempts", "scheduled_at", "last_error"]


@app.command("list")
def list_jobs(
    state: str | None = typer.Option(None, "--state", "-s", help="available, running, retryable, completed, failed, discarded"),
    queue: str | None = typer.Option(None, "--queue", "-q"),
    kind: str | None = typer.Option(None, "--kind", "-k"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List jobs, newest first."""
    from cadence.execution.models import JobState
    from cadence.execution.store import JobStore

    job_state = None
    if state is not None:
        try:
            job_state = JobState(state)
        except ValueError:
            fail(f"unknown state {state!r}; expected one of {', '.join(s.value for s in JobState)}")

    with open_database(database) as db, db.connection() as conn:
        jobs = JobStore(conn, db.dialect).list_jobs(state=job_state, queue=queue, kind=kind, limit=limit)
    output(jobs, as_json=json_out, title="Jobs", columns=_COLUMNS)


@app.command("stats")
def job_stats(
    queue: str | None = typer.Option(None, "--queue", "-q"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Job counts by state."""
    from cadence.execution.store import JobStore

    with open_database(database) as db, db.connection() as conn:
        counts = JobStore(conn, db.dialect).count_by_state(queue)
    output(counts, as_json=json_out, title="Job States")


@app.command("retry")
def retry_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Re-queue a failed or discarded job with a fresh attempt budget."""
    from cadence.execution.models import InvalidTransitionError
    from cadence.execution.store import JobStore

    with open_database(database) as db, db.connection() as conn:
        try:
            job = JobStore(conn, db.dialect).retry_job(job_id)
        except KeyError:
            fail(f"job {job_id} not found")
        except InvalidTransitionError as e:
            fail(f"job {job_id} cannot be retried: {e}")
    console.print(f"[green]Re-queued {job.kind}[/green] job {job.id}")
