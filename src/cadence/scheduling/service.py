"""Scheduler service - turns cron schedules into execution jobs.

Manifesto:
    The SchedulerService has no leader and holds no locks. Each tick it
    computes, for every enabled schedule, the cron occurrences that have
    come due and enqueues one ``scheduled_job_execute`` job per occurrence
    with the unique key ``scheduled_job:{schedule_id}:{occurrence}``. Any
    number of service instances may tick concurrently; the job store's
    unique index lets exactly one insert per occurrence through.

Tags:
    cadence, scheduling, orchestrator, beat-as-poller, catch-up, dedup

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                            │
│                                                                               │
│   backend ──tick()──►  SchedulerService.tick()                               │
│                          │                                                    │
│                          ├── list_enabled()                                   │
│                          └── for each schedule:                               │
│                                tz   = resolve_timezone(schedule.timezone)     │
│                                base = last_run_at, else                       │
│                                       max(created_at, now - lookback)         │
│                                for occ in cron occurrences in (base, now]:    │
│                                    reason = catch-up if now - occ > threshold │
│                                             else scheduled                    │
│                                    client.insert(ScheduledJobExecuteArgs,     │
│                                        unique_key=scheduled_job:{id}:{occ})   │
│                                                                               │
│   Public API:                                                                 │
│   ├── start() / stop()       drive ticks from the backend                    │
│   ├── tick()                 one evaluation pass (async)                      │
│   ├── trigger(name)          manual run, unique per request                   │
│   ├── pause(name) / resume(name)                                              │
│   └── health() / get_stats()                                                  │
│                                                                               │
│  Bad cron expressions and unknown targets skip that schedule for the tick;   │
│  a bad timezone falls back to UTC. Nothing stops the loop.                   │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from cadence.core.database import Database
from cadence.core.protocols import Connection
from cadence.core.timestamps import generate_ulid, to_rfc3339, utc_now
from cadence.core.timezones import resolve_timezone
from cadence.execution.client import JobClient
from cadence.execution.models import InsertResult

from .cron import due_occurrences, is_valid_cron
from .models import ScheduleDefinition, TriggerReason
from .protocol import SchedulerBackend
from .repository import ScheduleRepository, ScheduleUpdate
from .targets import TargetRegistry
from .worker import ScheduledJobExecuteArgs

logger = logging.getLogger(__name__)


def occurrence_key(schedule_id: str, occurrence: datetime) -> str:
    """Unique key of the job for one cron occurrence."""
    return f"scheduled_job:{schedule_id}:{to_rfc3339(occurrence)}"


def bound_catch_up(due: list[datetime], window_start: datetime) -> list[datetime]:
    """Trim the backlog of a schedule that has run before.

    The first occurrence after the last run is always kept, however old;
    of the rest only those after ``window_start`` survive, so a long
    outage of a frequent schedule cannot flood the queue.
    """
    if not due:
        return due
    return [due[0], *(occ for occ in due[1:] if occ > window_start)]


@dataclass
class SchedulerStats:
    """Statistics for scheduler service."""

    tick_count: int = 0
    jobs_enqueued: int = 0
    duplicates_skipped: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "jobs_enqueued": self.jobs_enqueued,
            "duplicates_skipped": self.duplicates_skipped,
            "schedules_skipped": self.schedules_skipped,
            "schedules_failed": self.schedules_failed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    schedules_enabled: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "schedules_enabled": self.schedules_enabled,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": self.stats.to_dict(),
        }


@dataclass
class TickResult:
    """What one tick did."""

    now: datetime
    enqueued: list[str] = field(default_factory=list)
    duplicates: int = 0
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class SchedulerService:
    """Main scheduler orchestrator (beat-as-poller pattern).

    Example:
        >>> service = SchedulerService(
        ...     database=database,
        ...     client=JobClient(database, registry),
        ...     backend=ThreadSchedulerBackend(),
        ...     targets=targets,
        ... )
        >>> service.start()
        >>> # Later...
        >>> service.stop()
    """

    def __init__(
        self,
        database: Database,
        client: JobClient,
        backend: SchedulerBackend | None = None,
        *,
        targets: TargetRegistry | None = None,
        clock: Any = utc_now,
        interval_seconds: float = 60.0,
        lookback: timedelta = timedelta(hours=24),
        catchup_threshold: timedelta = timedelta(hours=1),
    ) -> None:
        """Initialize scheduler service.

        Args:
            database: Shared connection pool
            client: Enqueues execution jobs
            backend: Timing backend (only needed for start/stop)
            targets: When given, schedules naming an unregistered target
                are skipped at tick time
            clock: Source of "now"
            interval_seconds: Tick interval
            lookback: Catch-up window for schedules that never ran, and the
                backlog bound for those that did
            catchup_threshold: Lateness after which an occurrence is a catch-up
        """
        self.database = database
        self.client = client
        self.backend = backend
        self.targets = targets
        self.interval = interval_seconds
        self.lookback = lookback
        self.catchup_threshold = catchup_threshold
        self._clock = clock

        self._stats = SchedulerStats()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("SchedulerService already running")
            return
        if self.backend is None:
            raise RuntimeError("SchedulerService needs a backend to start")

        logger.info(
            f"Starting SchedulerService with {self.backend.name} backend "
            f"(interval={self.interval}s, lookback={self.lookback})"
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping SchedulerService...")
        if self.backend is None:
            raise RuntimeError("SchedulerService is running without a backend")
        self.backend.stop()
        self._running = False
        logger.info("SchedulerService stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def tick(self) -> TickResult:
        """Enqueue every due occurrence of every enabled schedule."""
        now = self._clock()
        result = TickResult(now=now)
        self._stats.tick_count += 1
        self._stats.last_tick = now

        with self.database.connection() as conn:
            repo = ScheduleRepository(conn, self.database.dialect)
            schedules = repo.list_enabled()

            for schedule in schedules:
                try:
                    self._process_schedule(conn, schedule, now, result)
                except Exception as e:
                    conn.rollback()
                    result.failed.append(schedule.name)
                    self._stats.schedules_failed += 1
                    self._stats.last_error = str(e)
                    logger.exception(f"Schedule {schedule.name} failed this tick: {e}")

        self._stats.jobs_enqueued += len(result.enqueued)
        self._stats.duplicates_skipped += result.duplicates
        self._stats.schedules_skipped += len(result.skipped)
        if result.enqueued:
            logger.info(f"Tick enqueued {len(result.enqueued)} scheduled job(s)")
        else:
            logger.debug("No schedules due")
        return result

    def _process_schedule(
        self,
        conn: Connection,
        schedule: ScheduleDefinition,
        now: datetime,
        result: TickResult,
    ) -> None:
        if not is_valid_cron(schedule.cron_expression):
            logger.warning(
                f"Schedule {schedule.name} has invalid cron expression "
                f"{schedule.cron_expression!r}, skipping"
            )
            result.skipped.append(schedule.name)
            return
        if self.targets is not None and not self.targets.has(schedule.target):
            logger.warning(f"Schedule {schedule.name} targets unknown {schedule.target!r}, skipping")
            result.skipped.append(schedule.name)
            return

        tz = resolve_timezone(schedule.timezone, owner=f"schedule {schedule.name}")
        if schedule.last_run_at is not None:
            due = bound_catch_up(
                due_occurrences(schedule.cron_expression, schedule.last_run_at, now, tz),
                now - self.lookback,
            )
        else:
            base = max(schedule.created_at, now - self.lookback)
            due = due_occurrences(schedule.cron_expression, base, now, tz)

        for occurrence in due:
            reason = (
                TriggerReason.CATCH_UP
                if now - occurrence > self.catchup_threshold
                else TriggerReason.SCHEDULED
            )
            inserted = self._enqueue(conn, schedule, occurrence, reason, occurrence_key(schedule.id, occurrence))
            if inserted.duplicate:
                result.duplicates += 1
            else:
                result.enqueued.append(inserted.job.id)
                logger.info(
                    f"Enqueued {reason.value} run of {schedule.name} for {to_rfc3339(occurrence)}"
                )

    def _enqueue(
        self,
        conn: Connection,
        schedule: ScheduleDefinition,
        scheduled_for: datetime,
        reason: TriggerReason,
        unique_key: str,
    ) -> InsertResult:
        return self.client.insert(
            ScheduledJobExecuteArgs(
                schedule_id=schedule.id,
                scheduled_for=scheduled_for,
                triggered_by=reason,
            ),
            unique_key=unique_key,
            conn=conn,
        )

    # === Manual Operations ===

    def trigger(self, schedule_name: str) -> InsertResult:
        """Enqueue a manual run of a schedule now.

        Raises:
            KeyError: If schedule not found
        """
        now = self._clock()
        with self.database.connection() as conn:
            schedule = ScheduleRepository(conn, self.database.dialect).get_by_name(schedule_name)
            if schedule is None:
                raise KeyError(f"Schedule not found: {schedule_name}")
            inserted = self._enqueue(
                conn,
                schedule,
                now,
                TriggerReason.MANUAL,
                f"scheduled_job:{schedule.id}:manual:{generate_ulid()}",
            )
        logger.info(f"Manually triggered schedule {schedule_name} -> job {inserted.job.id}")
        return inserted

    def pause(self, schedule_name: str) -> bool:
        """Disable a schedule. Returns False if not found."""
        return self._set_enabled(schedule_name, False)

    def resume(self, schedule_name: str) -> bool:
        """Re-enable a schedule. Returns False if not found."""
        return self._set_enabled(schedule_name, True)

    def _set_enabled(self, schedule_name: str, enabled: bool) -> bool:
        with self.database.connection() as conn:
            repo = ScheduleRepository(conn, self.database.dialect)
            schedule = repo.get_by_name(schedule_name)
            if schedule is None:
                return False
            repo.update(schedule.id, ScheduleUpdate(enabled=enabled))
        logger.info(f"{'Resumed' if enabled else 'Paused'} schedule: {schedule_name}")
        return True

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health() if self.backend is not None else {"healthy": False}
        with self.database.connection() as conn:
            enabled = ScheduleRepository(conn, self.database.dialect).count_enabled()
        return SchedulerHealth(
            healthy=self._running and bool(backend_health.get("healthy", False)),
            backend=backend_health,
            schedules_enabled=enabled,
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats


__all__ = [
    "bound_catch_up",
    "occurrence_key",
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    "TickResult",
]
