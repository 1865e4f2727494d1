"""
Root Typer application for the cadence CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

app = Typer(
    name="cadence",
    help="cadence — durable jobs, cron schedules and recurring series.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from cadence import __version__

        try:
            v = pkg_version("cadence-engine")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"cadence {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cadence CLI — manage schedules, series, jobs and the database."""


# ── Sub-command registration ─────────────────────────────────────────────

from cadence.cli.db import app as db_app  # noqa: E402
from cadence.cli.jobs import app as jobs_app  # noqa: E402
from cadence.cli.run import run as run_command  # noqa: E402
from cadence.cli.schedule import app as sched_app  # noqa: E402
from cadence.cli.series import app as series_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(sched_app, name="schedule", help="Cron schedule management.")
app.add_typer(series_app, name="series", help="Recurring series management.")
app.add_typer(jobs_app, name="jobs", help="Job inspection and retry.")
app.command("run")(run_command)
