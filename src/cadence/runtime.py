"""Process wiring — one database pool, one registry, runner plus scheduler.

::

    settings ──► create_database(url, pool_size)
             ──► build_registry(targets, channels)
                   ├── scheduled_job_execute   (ScheduledJobExecuteWorker)
                   ├── expand_recurring_series (ExpandRecurringSeriesWorker)
                   └── send_notification       (SendNotificationWorker)
             ──► JobRunner(database, registry)           queues from settings
             ──► SchedulerService(ThreadSchedulerBackend)

Shutdown order: the scheduler stops first so no new work is enqueued,
then the runner drains in-flight jobs within the grace period.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta

from cadence.core.database import Database, create_database
from cadence.core.settings import CadenceSettings, get_settings
from cadence.execution.client import JobClient
from cadence.execution.registry import WorkerRegistry
from cadence.execution.runner import JobRunner
from cadence.notifications.channels import LogChannel, NotificationChannel
from cadence.notifications.worker import SendNotificationWorker
from cadence.recurrence.worker import ExpandRecurringSeriesWorker
from cadence.scheduling.service import SchedulerService
from cadence.scheduling.targets import TargetRegistry
from cadence.scheduling.thread_backend import ThreadSchedulerBackend
from cadence.scheduling.worker import ScheduledJobExecuteWorker

logger = logging.getLogger(__name__)


def build_registry(
    settings: CadenceSettings,
    targets: TargetRegistry,
    channels: Mapping[str, NotificationChannel],
) -> WorkerRegistry:
    """Registry with every built-in job kind."""
    registry = WorkerRegistry()
    registry.register(ScheduledJobExecuteWorker(targets))
    registry.register(
        ExpandRecurringSeriesWorker(
            horizon=timedelta(days=settings.expansion_horizon_days),
            interval=timedelta(hours=settings.expansion_interval_hours),
        )
    )
    registry.register(SendNotificationWorker(channels, skip_test_emails=settings.skip_test_emails))
    return registry


@dataclass
class Runtime:
    """A started-or-startable cadence process."""

    settings: CadenceSettings
    database: Database
    registry: WorkerRegistry
    client: JobClient
    runner: JobRunner
    scheduler: SchedulerService
    targets: TargetRegistry
    _stop_requested: threading.Event = field(default_factory=threading.Event)

    def start(self) -> None:
        self.runner.start(install_signal_handlers=False)
        self.scheduler.start()

    def request_stop(self) -> None:
        self._stop_requested.set()

    def stop(self, grace: float | None = None) -> int:
        """Stop the scheduler, then the runner. Returns abandoned job count."""
        self.scheduler.stop()
        abandoned = self.runner.stop(grace)
        self.database.close()
        return abandoned

    def run_forever(self) -> int:
        """Run until SIGINT or SIGTERM, then shut down gracefully."""

        def _handle(signum, frame):
            logger.info("Received signal %s, shutting down", signum)
            self.request_stop()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

        self.start()
        try:
            while not self._stop_requested.wait(1.0):
                pass
        finally:
            abandoned = self.stop()
        return abandoned


def create_runtime(
    settings: CadenceSettings | None = None,
    *,
    targets: TargetRegistry | None = None,
    channels: Mapping[str, NotificationChannel] | None = None,
    database: Database | None = None,
) -> Runtime:
    """Wire a runtime from settings.

    Without ``channels`` a single logging ``email`` channel is used.
    """
    settings = settings or get_settings()
    targets = targets or TargetRegistry()
    channels = channels if channels is not None else {"email": LogChannel("email")}
    database = database or create_database(
        settings.database_url, pool_size=settings.pool_size, init_schema=True
    )

    registry = build_registry(settings, targets, channels)
    client = JobClient(database, registry)
    runner = JobRunner(database, registry, settings=settings, client=client)
    scheduler = SchedulerService(
        database,
        client,
        ThreadSchedulerBackend(),
        targets=targets,
        interval_seconds=settings.scheduler_interval_seconds,
        lookback=timedelta(hours=settings.catchup_lookback_hours),
        catchup_threshold=timedelta(minutes=settings.catchup_threshold_minutes),
    )
    return Runtime(
        settings=settings,
        database=database,
        registry=registry,
        client=client,
        runner=runner,
        scheduler=scheduler,
        targets=targets,
    )


__all__ = ["Runtime", "build_registry", "create_runtime"]
