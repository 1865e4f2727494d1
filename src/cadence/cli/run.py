"""
CLI: ``cadence run`` — start the job runner and the scheduler.
"""

from __future__ import annotations

import asyncio
import importlib

import typer

from cadence.cli.utils import console, fail, load_settings


def _load_targets(spec: str):
    """Resolve ``package.module:attribute`` to a TargetRegistry."""
    from cadence.scheduling.targets import TargetRegistry

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        fail(f"--targets must look like 'package.module:registry', got {spec!r}")
    try:
        registry = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        fail(f"cannot load targets from {spec!r}: {e}")
    if not isinstance(registry, TargetRegistry):
        fail(f"{spec!r} is not a TargetRegistry")
    return registry


def run(
    database: str | None = typer.Option(None, "--database", "-d"),
    targets: str | None = typer.Option(
        None, "--targets", "-t", help="TargetRegistry to serve, as 'package.module:attribute'"
    ),
    once: bool = typer.Option(False, "--once", help="Run one scheduler tick and drain due jobs, then exit"),
) -> None:
    """Start the job runner and scheduler until interrupted.

    Example::

        cadence run --targets myapp.jobs:targets
        cadence run -d /data/cadence.db --once
    """
    from cadence.core.logging import configure_logging
    from cadence.runtime import create_runtime

    settings = load_settings(database)
    configure_logging(settings.log_level, settings.json_logs, settings.service_name)
    registry = _load_targets(targets) if targets else None

    runtime = create_runtime(settings, targets=registry)
    if once:
        try:
            result = asyncio.run(runtime.scheduler.tick())
            processed = runtime.runner.run_pending()
        finally:
            runtime.database.close()
        console.print(
            f"[green]Tick enqueued {len(result.enqueued)} job(s)[/green], "
            f"{result.duplicates} duplicate(s); processed {processed} job(s)"
        )
        return

    console.print(
        f"[bold green]Starting cadence[/bold green] "
        f"(db={settings.database_url}, targets={len(runtime.targets)}, "
        f"tick={settings.scheduler_interval_seconds}s)"
    )
    abandoned = runtime.run_forever()
    if abandoned:
        console.print(f"[yellow]Stopped with {abandoned} job(s) still running[/yellow]")
    else:
        console.print("[yellow]Stopped[/yellow]")
