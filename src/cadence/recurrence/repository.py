"""Series repository - definitions, watermark and materialized instances.

Manifesto:
    The uniqueness of (series, occurrence date) is what makes expansion
    idempotent, so instance creation goes through ``claim_instance``,
    an insert-or-ignore that tells the caller whether it won the date.
    Only the winner inserts an entity row.

Tags:
    cadence, recurrence, repository, series, instances, watermark

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SERIES REPOSITORY                                                            │
│                                                                               │
│   Definitions (cadence_recurring_series):                                     │
│   ├── create(spec) / get(id) / list_series(status)                           │
│   ├── set_status(id, status, reason)                                          │
│   └── advance_watermark(id, until)           (forward-only)                  │
│                                                                               │
│   Instances (cadence_series_instances):                                       │
│   ├── existing_dates(series_id)                                               │
│   ├── claim_instance(...) → id | None        (caller commits)                │
│   ├── link_instance(id, entity_id)           (caller commits)                │
│   ├── mark_instance_exception(id, type)      (caller commits)                │
│   ├── get_instance / list_instances                                          │
│   └── cancel_occurrence(series_id, date)     (deletes the linked entity)     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from cadence.core.dialect import Dialect, SQLiteDialect
from cadence.core.protocols import Connection
from cadence.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

from .entities import delete_entity
from .intervals import parse_interval
from .models import ExceptionType, SeriesDefinition, SeriesInstance, SeriesStatus
from .rules import RecurrenceRule

logger = logging.getLogger(__name__)

_SERIES_COLUMNS = (
    "id",
    "name",
    "description",
    "rrule",
    "dtstart",
    "duration",
    "timezone",
    "entity_table",
    "entity_template",
    "time_range_column",
    "expanded_until",
    "status",
    "status_reason",
    "created_by",
    "created_at",
    "updated_at",
)

_INSTANCE_COLUMNS = (
    "id",
    "series_id",
    "occurrence_date",
    "occurrence_start",
    "occurrence_end",
    "entity_table",
    "entity_id",
    "is_exception",
    "exception_type",
    "created_at",
    "updated_at",
)


@dataclass
class SeriesCreate:
    """DTO for creating a new series."""

    rrule: str
    dtstart: datetime
    duration: str
    entity_table: str
    entity_template: dict[str, Any] = field(default_factory=dict)
    timezone: str = "UTC"
    time_range_column: str = "time_slot"
    name: str | None = None
    description: str | None = None
    created_by: str | None = None


class SeriesRepository:
    """Repository for recurring series and their instances.

    Example:
        >>> repo = SeriesRepository(conn)
        >>> series = repo.create(SeriesCreate(
        ...     rrule="FREQ=WEEKLY;BYDAY=MO",
        ...     dtstart=datetime(2026, 1, 5, 19, tzinfo=UTC),
        ...     duration="02:00:00",
        ...     timezone="America/New_York",
        ...     entity_table="reservations",
        ...     entity_template={"resource_id": 1},
        ... ))
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    # === Definitions ===

    def create(self, spec: SeriesCreate, *, now: datetime | None = None) -> SeriesDefinition:
        """Create a series.

        Raises:
            RecurrenceRuleError: If the rule is malformed or unsupported
            IntervalParseError: If the duration cannot be parsed
        """
        RecurrenceRule.parse(spec.rrule)
        parse_interval(spec.duration)

        series_id = generate_ulid()
        now_iso = to_iso8601(now or utc_now())
        self.conn.execute(
            f"INSERT INTO cadence_recurring_series ({', '.join(_SERIES_COLUMNS)}) "
            f"VALUES ({self._ph(len(_SERIES_COLUMNS))})",
            (
                series_id,
                spec.name,
                spec.description,
                spec.rrule,
                to_iso8601(spec.dtstart),
                spec.duration,
                spec.timezone or "UTC",
                spec.entity_table,
                json.dumps(spec.entity_template, default=str),
                spec.time_range_column,
                None,
                SeriesStatus.ACTIVE.value,
                None,
                spec.created_by,
                now_iso,
                now_iso,
            ),
        )
        self.conn.commit()
        logger.info(f"Created series {series_id} ({spec.rrule}) for {spec.entity_table}")
        return self.get(series_id)  # type: ignore[return-value]

    def get(self, series_id: str) -> SeriesDefinition | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_SERIES_COLUMNS)} FROM cadence_recurring_series WHERE id = {self._ph()}",
            (series_id,),
        )
        row = cursor.fetchone()
        return self._row_to_series(row) if row else None

    def list_series(self, status: SeriesStatus | None = None) -> list[SeriesDefinition]:
        sql = f"SELECT {', '.join(_SERIES_COLUMNS)} FROM cadence_recurring_series"
        params: tuple = ()
        if status is not None:
            sql += f" WHERE status = {self._ph()}"
            params = (status.value,)
        cursor = self.conn.execute(sql + " ORDER BY created_at, id", params)
        return [self._row_to_series(row) for row in cursor.fetchall()]

    def set_status(self, series_id: str, status: SeriesStatus, reason: str | None = None) -> bool:
        cursor = self.conn.execute(
            f"UPDATE cadence_recurring_series SET status = {self._ph()}, status_reason = {self._ph()}, "
            f"updated_at = {self._ph()} WHERE id = {self._ph()}",
            (status.value, reason, to_iso8601(utc_now()), series_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def advance_watermark(self, series_id: str, until: datetime) -> bool:
        """Move ``expanded_until`` forward to ``until``; never backwards.

        Returns:
            True if the watermark moved
        """
        until_iso = to_iso8601(until)
        cursor = self.conn.execute(
            f"UPDATE cadence_recurring_series SET expanded_until = {self._ph()}, updated_at = {self._ph()} "
            f"WHERE id = {self._ph()} AND (expanded_until IS NULL OR expanded_until < {self._ph()})",
            (until_iso, to_iso8601(utc_now()), series_id, until_iso),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # === Instances ===

    def existing_dates(self, series_id: str) -> set[date]:
        cursor = self.conn.execute(
            f"SELECT occurrence_date FROM cadence_series_instances WHERE series_id = {self._ph()}",
            (series_id,),
        )
        return {date.fromisoformat(row[0]) for row in cursor.fetchall()}

    def claim_instance(
        self,
        series_id: str,
        *,
        occurrence_date: date,
        occurrence_start: datetime,
        occurrence_end: datetime,
        entity_table: str,
    ) -> str | None:
        """Insert an unlinked instance for the date if none exists.

        Returns:
            The new instance id, or None if another expansion holds the date
        """
        instance_id = generate_ulid()
        now_iso = to_iso8601(utc_now())
        cursor = self.conn.execute(
            self.dialect.insert_or_ignore("cadence_series_instances", list(_INSTANCE_COLUMNS)),
            (
                instance_id,
                series_id,
                occurrence_date.isoformat(),
                to_iso8601(occurrence_start),
                to_iso8601(occurrence_end),
                entity_table,
                None,
                0,
                None,
                now_iso,
                now_iso,
            ),
        )
        return instance_id if cursor.rowcount == 1 else None

    def link_instance(self, instance_id: str, entity_id: str) -> None:
        self.conn.execute(
            f"UPDATE cadence_series_instances SET entity_id = {self._ph()}, updated_at = {self._ph()} "
            f"WHERE id = {self._ph()}",
            (entity_id, to_iso8601(utc_now()), instance_id),
        )

    def mark_instance_exception(self, instance_id: str, exception_type: ExceptionType) -> None:
        self.conn.execute(
            f"UPDATE cadence_series_instances SET is_exception = 1, exception_type = {self._ph()}, "
            f"entity_id = NULL, updated_at = {self._ph()} WHERE id = {self._ph()}",
            (exception_type.value, to_iso8601(utc_now()), instance_id),
        )

    def get_instance(self, series_id: str, occurrence_date: date) -> SeriesInstance | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM cadence_series_instances "
            f"WHERE series_id = {self._ph()} AND occurrence_date = {self._ph()}",
            (series_id, occurrence_date.isoformat()),
        )
        row = cursor.fetchone()
        return self._row_to_instance(row) if row else None

    def list_instances(self, series_id: str) -> list[SeriesInstance]:
        """Instances of a series, oldest occurrence first."""
        cursor = self.conn.execute(
            f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM cadence_series_instances "
            f"WHERE series_id = {self._ph()} ORDER BY occurrence_start, id",
            (series_id,),
        )
        return [self._row_to_instance(row) for row in cursor.fetchall()]

    def cancel_occurrence(self, series_id: str, occurrence_date: date) -> SeriesInstance | None:
        """Mark one occurrence cancelled and delete its entity row.

        The instance row stays, so later expansions skip the date.

        Returns:
            The updated instance, or None if the date was never materialized
        """
        instance = self.get_instance(series_id, occurrence_date)
        if instance is None:
            return None
        if instance.entity_id is not None:
            delete_entity(self.conn, self.dialect, instance.entity_table, instance.entity_id)
        self.mark_instance_exception(instance.id, ExceptionType.CANCELLED)
        self.conn.commit()
        logger.info(f"Cancelled occurrence {occurrence_date} of series {series_id}")
        return self.get_instance(series_id, occurrence_date)

    # === Private Helpers ===

    @staticmethod
    def _row_to_series(row: Any) -> SeriesDefinition:
        data = dict(zip(_SERIES_COLUMNS, tuple(row), strict=False))
        template = json.loads(data["entity_template"]) if data["entity_template"] else {}
        return SeriesDefinition(
            id=data["id"],
            name=data["name"],
            description=data["description"],
            rrule=data["rrule"],
            dtstart=from_iso8601(data["dtstart"]),  # type: ignore[arg-type]
            duration=data["duration"],
            timezone=data["timezone"],
            entity_table=data["entity_table"],
            entity_template=template,
            time_range_column=data["time_range_column"],
            expanded_until=from_iso8601(data["expanded_until"]),
            status=SeriesStatus(data["status"]),
            status_reason=data["status_reason"],
            created_by=data["created_by"],
            created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
            updated_at=from_iso8601(data["updated_at"]),  # type: ignore[arg-type]
        )

    @staticmethod
    def _row_to_instance(row: Any) -> SeriesInstance:
        data = dict(zip(_INSTANCE_COLUMNS, tuple(row), strict=False))
        return SeriesInstance(
            id=data["id"],
            series_id=data["series_id"],
            occurrence_date=date.fromisoformat(data["occurrence_date"]),
            occurrence_start=from_iso8601(data["occurrence_start"]),  # type: ignore[arg-type]
            occurrence_end=from_iso8601(data["occurrence_end"]),  # type: ignore[arg-type]
            entity_table=data["entity_table"],
            entity_id=data["entity_id"],
            is_exception=bool(data["is_exception"]),
            exception_type=ExceptionType(data["exception_type"]) if data["exception_type"] else None,
            created_at=from_iso8601(data["created_at"]),
        )


__all__ = ["SeriesCreate", "SeriesRepository"]
