"""Recurrence domain models.

- SeriesDefinition: an RRULE that materializes rows in an entity table
- SeriesInstance: one occurrence, optionally linked to its entity row
- ExpansionResult: what one expansion pass did
- DriftIssue: one incompatibility between a template and its table
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class SeriesStatus(str, Enum):
    """Lifecycle of a series. Only ACTIVE series expand."""

    ACTIVE = "active"
    NEEDS_ATTENTION = "needs_attention"
    PAUSED = "paused"


class ExceptionType(str, Enum):
    """Why an instance deviates from its series."""

    MODIFIED = "modified"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    CONFLICT_SKIPPED = "conflict_skipped"


@dataclass
class SeriesDefinition:
    """A recurrence rule governing materialized entity rows."""

    id: str
    rrule: str
    dtstart: datetime
    duration: str
    timezone: str
    entity_table: str
    entity_template: dict[str, Any]
    time_range_column: str
    status: SeriesStatus
    created_at: datetime
    updated_at: datetime
    name: str | None = None
    description: str | None = None
    expanded_until: datetime | None = None
    status_reason: str | None = None
    created_by: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is SeriesStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rrule": self.rrule,
            "dtstart": self.dtstart.isoformat(),
            "duration": self.duration,
            "timezone": self.timezone,
            "entity_table": self.entity_table,
            "entity_template": self.entity_template,
            "time_range_column": self.time_range_column,
            "expanded_until": self.expanded_until.isoformat() if self.expanded_until else None,
            "status": self.status.value,
            "status_reason": self.status_reason,
            "created_by": self.created_by,
        }


@dataclass
class SeriesInstance:
    """One materialized occurrence of a series."""

    id: str
    series_id: str
    occurrence_date: date
    occurrence_start: datetime
    occurrence_end: datetime
    entity_table: str
    entity_id: str | None = None
    is_exception: bool = False
    exception_type: ExceptionType | None = None
    created_at: datetime | None = None


@dataclass
class ExpansionResult:
    """Outcome of ``RecurrenceExpander.expand``."""

    series_id: str
    status: SeriesStatus
    created: int = 0
    skipped: int = 0
    already_present: int = 0
    expanded_until: datetime | None = None
    drift: list[DriftIssue] = field(default_factory=list)
    message: str | None = None

    @property
    def expanded(self) -> bool:
        return self.status is SeriesStatus.ACTIVE and self.expanded_until is not None


@dataclass(frozen=True)
class DriftIssue:
    """A template field that no longer fits the live table."""

    field: str
    issue: str

    def __str__(self) -> str:
        return f"{self.field}: {self.issue}"


__all__ = [
    "SeriesStatus",
    "ExceptionType",
    "SeriesDefinition",
    "SeriesInstance",
    "ExpansionResult",
    "DriftIssue",
]
