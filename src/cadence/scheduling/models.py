"""Scheduler domain models.

- ScheduleDefinition: a target function run on a cron cadence
- ScheduleRun: one execution record (append-only once completed)
- TargetResult / TargetContext: what a target receives and returns
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cadence.execution.contract import JobContext


class TriggerReason(str, Enum):
    """Why a schedule run happened."""

    SCHEDULED = "scheduled"
    CATCH_UP = "catch-up"
    MANUAL = "manual"


@dataclass
class ScheduleDefinition:
    """A recurring task executed on a cron cadence."""

    id: str
    name: str
    target: str
    cron_expression: str
    timezone: str
    enabled: bool
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    last_run_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "target": self.target,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "enabled": self.enabled,
            "description": self.description,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ScheduleRun:
    """One execution of a schedule."""

    id: str
    schedule_id: str
    started_at: datetime
    scheduled_for: datetime
    triggered_by: TriggerReason
    job_id: str | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    success: bool | None = None
    message: str | None = None
    details: dict[str, Any] | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class TargetResult:
    """Outcome a target reports for one run."""

    success: bool = True
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> TargetResult:
        """Normalize whatever a target returned.

        ``None`` is success, a dict is read for ``success`` / ``message`` /
        ``details``, a string holding a JSON object is decoded first, and any
        other string is a success message.
        """
        if isinstance(value, TargetResult):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            try:
                decoded = json.loads(value)
            except ValueError:
                return cls(message=value)
            if isinstance(decoded, dict):
                return cls.coerce(decoded)
            return cls(message=value)
        if isinstance(value, dict):
            details = value.get("details")
            return cls(
                success=bool(value.get("success", True)),
                message=str(value.get("message", "")),
                details=details if isinstance(details, dict) else {},
            )
        return cls(message=str(value))


@dataclass
class TargetContext:
    """Passed to a target function for one run."""

    schedule: ScheduleDefinition
    scheduled_for: datetime
    triggered_by: TriggerReason
    run_id: str
    job: JobContext

    def check_deadline(self) -> None:
        self.job.check_deadline(self.schedule.target)


__all__ = [
    "TriggerReason",
    "ScheduleDefinition",
    "ScheduleRun",
    "TargetResult",
    "TargetContext",
]
