"""Schedule repository - CRUD and run history.

Manifesto:
    Schedule persistence and run bookkeeping are pure data operations that
    belong in a repository, not in the service layer.  Separating them
    enables testing with in-memory connections and keeps the service
    focused on computing due occurrences.

Tags:
    cadence, scheduling, repository, CRUD, cron, croniter

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│   Definitions (cadence_scheduled_jobs):                                       │
│   ├── create(spec) → ScheduleDefinition      (cron validated via croniter)   │
│   ├── get(id) / get_by_name(name)                                            │
│   ├── update(id, updates) / delete(id)                                       │
│   ├── list_enabled() / list_all() / count_enabled()                          │
│   └── mark_last_run(id, at)                  (forward-only)                  │
│                                                                               │
│   Runs (cadence_schedule_runs, append-only once completed):                   │
│   ├── create_run(...) → ScheduleRun                                          │
│   ├── complete_run(run_id, ...)              (only if not yet completed)     │
│   ├── get_run(run_id)                                                        │
│   └── list_runs(schedule_id, limit)                                          │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cadence.core.dialect import Dialect, SQLiteDialect
from cadence.core.protocols import Connection
from cadence.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

from .cron import validate_cron
from .models import ScheduleDefinition, ScheduleRun, TriggerReason

logger = logging.getLogger(__name__)

_SCHEDULE_COLUMNS = (
    "id",
    "name",
    "description",
    "target",
    "cron_expression",
    "timezone",
    "enabled",
    "last_run_at",
    "created_at",
    "updated_at",
)

_RUN_COLUMNS = (
    "id",
    "schedule_id",
    "job_id",
    "started_at",
    "completed_at",
    "duration_ms",
    "success",
    "message",
    "details",
    "scheduled_for",
    "triggered_by",
)


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a new schedule."""

    name: str
    target: str
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool = True
    description: str | None = None


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule."""

    enabled: bool | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    target: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class ScheduleRepository:
    """Repository for schedule definitions and their runs.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>> schedule = repo.create(ScheduleCreate(
        ...     name="nightly-cleanup",
        ...     target="cleanup_expired_sessions",
        ...     cron_expression="0 3 * * *",
        ...     timezone="America/Chicago",
        ... ))
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    # === Definitions ===

    def create(self, spec: ScheduleCreate, *, now: datetime | None = None) -> ScheduleDefinition:
        """Create a new schedule.

        Raises:
            ValidationError: If the cron expression is not valid 5-field cron
        """
        validate_cron(spec.cron_expression)
        schedule_id = generate_ulid()
        now_iso = to_iso8601(now or utc_now())

        self.conn.execute(
            f"INSERT INTO cadence_scheduled_jobs ({', '.join(_SCHEDULE_COLUMNS)}) "
            f"VALUES ({self._ph(len(_SCHEDULE_COLUMNS))})",
            (
                schedule_id,
                spec.name,
                spec.description,
                spec.target,
                spec.cron_expression,
                spec.timezone or "UTC",
                1 if spec.enabled else 0,
                None,
                now_iso,
                now_iso,
            ),
        )
        self.conn.commit()
        logger.info(f"Created schedule {spec.name} ({spec.cron_expression} {spec.timezone})")
        return self.get(schedule_id)  # type: ignore[return-value]

    def get(self, schedule_id: str) -> ScheduleDefinition | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM cadence_scheduled_jobs WHERE id = {self._ph()}",
            (schedule_id,),
        )
        row = cursor.fetchone()
        return self._row_to_schedule(row) if row else None

    def get_by_name(self, name: str) -> ScheduleDefinition | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM cadence_scheduled_jobs WHERE name = {self._ph()}",
            (name,),
        )
        row = cursor.fetchone()
        return self._row_to_schedule(row) if row else None

    def update(self, schedule_id: str, updates: ScheduleUpdate) -> ScheduleDefinition | None:
        """Update a schedule.

        Returns:
            Updated schedule if found, None otherwise
        """
        set_parts = []
        params: list[Any] = []

        if updates.enabled is not None:
            set_parts.append(f"enabled = {self._ph()}")
            params.append(1 if updates.enabled else 0)
        if updates.cron_expression is not None:
            validate_cron(updates.cron_expression)
            set_parts.append(f"cron_expression = {self._ph()}")
            params.append(updates.cron_expression)
        if updates.timezone is not None:
            set_parts.append(f"timezone = {self._ph()}")
            params.append(updates.timezone)
        if updates.target is not None:
            set_parts.append(f"target = {self._ph()}")
            params.append(updates.target)
        if updates.description is not None:
            set_parts.append(f"description = {self._ph()}")
            params.append(updates.description)

        if not set_parts:
            return self.get(schedule_id)

        set_parts.append(f"updated_at = {self._ph()}")
        params.append(to_iso8601(utc_now()))
        params.append(schedule_id)

        self.conn.execute(
            f"UPDATE cadence_scheduled_jobs SET {', '.join(set_parts)} WHERE id = {self._ph()}",
            params,
        )
        self.conn.commit()
        return self.get(schedule_id)

    def delete(self, schedule_id: str) -> bool:
        cursor = self.conn.execute(
            f"DELETE FROM cadence_scheduled_jobs WHERE id = {self._ph()}",
            (schedule_id,),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_enabled(self) -> list[ScheduleDefinition]:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM cadence_scheduled_jobs "
            "WHERE enabled = 1 ORDER BY name"
        )
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def list_all(self) -> list[ScheduleDefinition]:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SCHEDULE_COLUMNS)} FROM cadence_scheduled_jobs ORDER BY name"
        )
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def count_enabled(self) -> int:
        cursor = self.conn.execute("SELECT COUNT(*) FROM cadence_scheduled_jobs WHERE enabled = 1")
        return cursor.fetchone()[0]

    def mark_last_run(self, schedule_id: str, ran_at: datetime) -> bool:
        """Advance ``last_run_at`` to ``ran_at``; never moves it backwards.

        Returns:
            True if the timestamp moved
        """
        ran_iso = to_iso8601(ran_at)
        cursor = self.conn.execute(
            f"UPDATE cadence_scheduled_jobs SET last_run_at = {self._ph()}, updated_at = {self._ph()} "
            f"WHERE id = {self._ph()} AND (last_run_at IS NULL OR last_run_at < {self._ph()})",
            (ran_iso, to_iso8601(utc_now()), schedule_id, ran_iso),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # === Runs ===

    def create_run(
        self,
        schedule_id: str,
        *,
        scheduled_for: datetime,
        triggered_by: TriggerReason,
        job_id: str | None = None,
        started_at: datetime | None = None,
    ) -> ScheduleRun:
        """Record the start of a run."""
        run_id = generate_ulid()
        self.conn.execute(
            f"INSERT INTO cadence_schedule_runs "
            f"(id, schedule_id, job_id, started_at, scheduled_for, triggered_by) "
            f"VALUES ({self._ph(6)})",
            (
                run_id,
                schedule_id,
                job_id,
                to_iso8601(started_at or utc_now()),
                to_iso8601(scheduled_for),
                triggered_by.value,
            ),
        )
        self.conn.commit()
        return self.get_run(run_id)  # type: ignore[return-value]

    def complete_run(
        self,
        run_id: str,
        *,
        success: bool,
        message: str | None = None,
        details: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        completed_at: datetime | None = None,
    ) -> bool:
        """Close a run. A run that is already completed is left untouched.

        Returns:
            True if the run was completed by this call
        """
        cursor = self.conn.execute(
            f"UPDATE cadence_schedule_runs SET completed_at = {self._ph()}, duration_ms = {self._ph()}, "
            f"success = {self._ph()}, message = {self._ph()}, details = {self._ph()} "
            f"WHERE id = {self._ph()} AND completed_at IS NULL",
            (
                to_iso8601(completed_at or utc_now()),
                duration_ms,
                1 if success else 0,
                message,
                json.dumps(details, default=str) if details else None,
                run_id,
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def get_run(self, run_id: str) -> ScheduleRun | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_RUN_COLUMNS)} FROM cadence_schedule_runs WHERE id = {self._ph()}",
            (run_id,),
        )
        row = cursor.fetchone()
        return self._row_to_run(row) if row else None

    def list_runs(self, schedule_id: str, limit: int = 50) -> list[ScheduleRun]:
        """Most recent runs of a schedule, newest first."""
        cursor = self.conn.execute(
            f"SELECT {', '.join(_RUN_COLUMNS)} FROM cadence_schedule_runs "
            f"WHERE schedule_id = {self._ph()} ORDER BY started_at DESC, id DESC LIMIT {self._ph()}",
            (schedule_id, limit),
        )
        return [self._row_to_run(row) for row in cursor.fetchall()]

    # === Private Helpers ===

    @staticmethod
    def _row_to_schedule(row: Any) -> ScheduleDefinition:
        data = dict(zip(_SCHEDULE_COLUMNS, tuple(row), strict=False))
        return ScheduleDefinition(
            id=data["id"],
            name=data["name"],
            description=data["description"],
            target=data["target"],
            cron_expression=data["cron_expression"],
            timezone=data["timezone"],
            enabled=bool(data["enabled"]),
            last_run_at=from_iso8601(data["last_run_at"]),
            created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
            updated_at=from_iso8601(data["updated_at"]),  # type: ignore[arg-type]
        )

    @staticmethod
    def _row_to_run(row: Any) -> ScheduleRun:
        data = dict(zip(_RUN_COLUMNS, tuple(row), strict=False))
        return ScheduleRun(
            id=data["id"],
            schedule_id=data["schedule_id"],
            job_id=data["job_id"],
            started_at=from_iso8601(data["started_at"]),  # type: ignore[arg-type]
            completed_at=from_iso8601(data["completed_at"]),
            duration_ms=data["duration_ms"],
            success=None if data["success"] is None else bool(data["success"]),
            message=data["message"],
            details=json.loads(data["details"]) if data["details"] else None,
            scheduled_for=from_iso8601(data["scheduled_for"]),  # type: ignore[arg-type]
            triggered_by=TriggerReason(data["triggered_by"]),
        )


__all__ = ["ScheduleCreate", "ScheduleUpdate", "ScheduleRepository"]
