"""Tests for RecurrenceExpander: idempotence, conflicts, pausing and drift."""

import sqlite3
from datetime import UTC, date, datetime, timedelta

import pytest

from cadence.core.errors import NotFoundError
from cadence.execution.store import JobStore
from cadence.notifications.repository import NotificationRepository
from cadence.recurrence.expander import DRIFT_TEMPLATE, RecurrenceExpander, is_integrity_error
from cadence.recurrence.intervals import format_time_range
from cadence.recurrence.models import ExceptionType, SeriesStatus
from cadence.recurrence.repository import SeriesCreate, SeriesRepository

MONDAYS_14H_NY = datetime(2026, 1, 5, 19, 0, tzinfo=UTC)
UNTIL = datetime(2026, 2, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def bookings(database):
    with database.connection() as conn:
        conn.execute(
            "CREATE TABLE bookings ("
            " id INTEGER PRIMARY KEY,"
            " room TEXT NOT NULL,"
            " time_slot TEXT NOT NULL UNIQUE,"
            " created_by TEXT"
            ")"
        )


@pytest.fixture
def expander(database, client):
    return RecurrenceExpander(database, client)


def _series(database, **overrides):
    values = {
        "rrule": "FREQ=WEEKLY;BYDAY=MO",
        "dtstart": MONDAYS_14H_NY,
        "duration": "02:00:00",
        "entity_table": "bookings",
        "entity_template": {"room": "A"},
        "timezone": "America/New_York",
        "created_by": "user-1",
    }
    values.update(overrides)
    with database.connection() as conn:
        return SeriesRepository(conn, database.dialect).create(SeriesCreate(**values))


def _bookings(database):
    with database.connection() as conn:
        conn.execute("SELECT id, room, time_slot, created_by FROM bookings ORDER BY time_slot")
        return [tuple(row) for row in conn.fetchall()]


def _state(database, series_id):
    with database.connection() as conn:
        repo = SeriesRepository(conn, database.dialect)
        return repo.get(series_id), repo.list_instances(series_id)


class TestExpand:
    def test_materializes_occurrences(self, database, expander):
        series = _series(database)

        result = expander.expand(series.id, UNTIL)

        assert result.created == 4
        assert result.expanded
        rows = _bookings(database)
        assert [r[2] for r in rows] == [
            format_time_range(MONDAYS_14H_NY + timedelta(weeks=w), MONDAYS_14H_NY + timedelta(weeks=w, hours=2))
            for w in range(4)
        ]
        assert {r[3] for r in rows} == {"user-1"}

        reloaded, instances = _state(database, series.id)
        assert reloaded.expanded_until == UNTIL
        assert [i.occurrence_date for i in instances] == [date(2026, 1, d) for d in (5, 12, 19, 26)]
        assert {i.entity_id for i in instances} == {str(r[0]) for r in rows}

    def test_second_run_is_noop(self, database, expander):
        series = _series(database)
        expander.expand(series.id, UNTIL)

        again = expander.expand(series.id, UNTIL)

        assert again.created == 0
        assert again.already_present == 4
        assert len(_bookings(database)) == 4

    def test_extending_horizon_adds_only_new_dates(self, database, expander):
        series = _series(database)
        expander.expand(series.id, UNTIL)
        result = expander.expand(series.id, UNTIL + timedelta(weeks=2))
        assert result.created == 2
        assert len(_bookings(database)) == 6

    def test_conflicting_entity_is_skipped(self, database, expander):
        series = _series(database)
        taken = MONDAYS_14H_NY + timedelta(weeks=1)
        with database.connection() as conn:
            conn.execute(
                "INSERT INTO bookings (room, time_slot) VALUES (?, ?)",
                ("B", format_time_range(taken, taken + timedelta(hours=2))),
            )

        result = expander.expand(series.id, UNTIL)

        assert (result.created, result.skipped) == (3, 1)
        _, instances = _state(database, series.id)
        skipped = [i for i in instances if i.is_exception]
        assert [i.occurrence_date for i in skipped] == [date(2026, 1, 12)]
        assert skipped[0].exception_type is ExceptionType.CONFLICT_SKIPPED
        assert skipped[0].entity_id is None

        assert expander.expand(series.id, UNTIL).already_present == 4

    def test_occurrence_date_is_local(self, database, expander):
        late_evening = datetime(2026, 1, 6, 4, 30, tzinfo=UTC)
        series = _series(database, rrule="FREQ=DAILY;COUNT=2", dtstart=late_evening)
        expander.expand(series.id, UNTIL)
        _, instances = _state(database, series.id)
        assert [i.occurrence_date for i in instances] == [date(2026, 1, 5), date(2026, 1, 6)]

    def test_cancelled_occurrence_is_not_recreated(self, database, expander):
        series = _series(database)
        expander.expand(series.id, UNTIL)
        with database.connection() as conn:
            SeriesRepository(conn, database.dialect).cancel_occurrence(series.id, date(2026, 1, 19))

        result = expander.expand(series.id, UNTIL + timedelta(days=1))

        assert result.created == 0
        assert len(_bookings(database)) == 3

    def test_paused_series_is_noop(self, database, expander):
        series = _series(database)
        with database.connection() as conn:
            SeriesRepository(conn, database.dialect).set_status(series.id, SeriesStatus.PAUSED)

        result = expander.expand(series.id, UNTIL)

        assert result.status is SeriesStatus.PAUSED
        assert not result.expanded
        assert _bookings(database) == []
        reloaded, _ = _state(database, series.id)
        assert reloaded.expanded_until is None

    def test_missing_series(self, expander):
        with pytest.raises(NotFoundError):
            expander.expand("nope", UNTIL)

    def test_bad_duration_needs_attention(self, database, expander):
        series = _series(database)
        with database.connection() as conn:
            conn.execute("UPDATE cadence_recurring_series SET duration = 'soon' WHERE id = ?", (series.id,))

        result = expander.expand(series.id, UNTIL)

        assert result.status is SeriesStatus.NEEDS_ATTENTION
        reloaded, _ = _state(database, series.id)
        assert reloaded.status is SeriesStatus.NEEDS_ATTENTION
        assert "soon" in reloaded.status_reason


class TestSchemaDrift:
    def _drifted(self, database):
        return _series(database, entity_template={"room": "A", "colour": "red"})

    def _notification_jobs(self, database):
        with database.connection() as conn:
            return JobStore(conn, database.dialect).list_jobs(kind="send_notification")

    def test_drift_halts_series(self, database, expander):
        series = self._drifted(database)

        result = expander.expand(series.id, UNTIL)

        assert result.status is SeriesStatus.NEEDS_ATTENTION
        assert [str(i) for i in result.drift] == ["colour: column does not exist"]
        reloaded, instances = _state(database, series.id)
        assert reloaded.status is SeriesStatus.NEEDS_ATTENTION
        assert reloaded.status_reason == "Schema drift detected: colour: column does not exist"
        assert instances == []
        assert _bookings(database) == []

    def test_drift_notifies_owner_when_template_exists(self, database, expander):
        with database.connection() as conn:
            NotificationRepository(conn, database.dialect).save_template(
                DRIFT_TEMPLATE, "Series {{ series_id }} paused", "{{ drift_summary }}"
            )
        series = self._drifted(database)

        expander.expand(series.id, UNTIL)

        (job,) = self._notification_jobs(database)
        assert job.args["user_id"] == "user-1"
        assert job.args["entity_id"] == series.id
        assert job.args["entity_data"]["drift_issues"] == ["colour: column does not exist"]

    def test_no_notification_without_template(self, database, expander):
        series = self._drifted(database)
        expander.expand(series.id, UNTIL)
        assert self._notification_jobs(database) == []

    def test_no_notification_without_owner(self, database, expander):
        with database.connection() as conn:
            NotificationRepository(conn, database.dialect).save_template(DRIFT_TEMPLATE, "s", "b")
        series = _series(database, entity_template={"colour": "red"}, created_by=None)
        expander.expand(series.id, UNTIL)
        assert self._notification_jobs(database) == []


def test_is_integrity_error():
    assert is_integrity_error(sqlite3.IntegrityError("UNIQUE constraint failed"))
    assert not is_integrity_error(sqlite3.OperationalError("locked"))
