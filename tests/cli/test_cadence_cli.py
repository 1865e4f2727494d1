"""Tests for the cadence CLI against a file-backed SQLite database."""

import json

import pytest
from typer.testing import CliRunner

from cadence.cli.app import app
from cadence.core.database import create_database


@pytest.fixture
def cli():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "cadence.db")
    db = create_database(path, init_schema=True)
    try:
        with db.connection() as conn:
            conn.execute(
                "CREATE TABLE bookings (id INTEGER PRIMARY KEY, room TEXT NOT NULL, time_slot TEXT NOT NULL UNIQUE)"
            )
    finally:
        db.close()
    return path


def invoke(cli, *args):
    return cli.invoke(app, list(args))


def invoke_json(cli, *args):
    result = invoke(cli, *args, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_version(cli):
    result = invoke(cli, "--version")
    assert result.exit_code == 0
    assert result.output.startswith("cadence ")


def test_db_init_and_tables(cli, tmp_path):
    path = str(tmp_path / "fresh.db")
    result = invoke(cli, "db", "init", "-d", path)
    assert result.exit_code == 0, result.output
    assert "Applied 4 schema file(s)" in result.output

    counts = invoke_json(cli, "db", "tables", "-d", path)
    assert {row["table"] for row in counts} >= {"cadence_jobs", "cadence_recurring_series"}
    assert all(row["rows"] == 0 for row in counts)


class TestScheduleCommands:
    def _create(self, cli, db_path, name="nightly", cron="0 3 * * *"):
        return invoke(
            cli, "schedule", "create", name, "--target", "noop", "--cron", cron, "--tz", "America/Chicago", "-d", db_path
        )

    def test_create_and_list(self, cli, db_path):
        assert self._create(cli, db_path).exit_code == 0
        (schedule,) = invoke_json(cli, "schedule", "list", "-d", db_path)
        assert schedule["name"] == "nightly"
        assert schedule["timezone"] == "America/Chicago"
        assert schedule["enabled"] is True

    def test_duplicate_name_rejected(self, cli, db_path):
        self._create(cli, db_path)
        result = self._create(cli, db_path)
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_invalid_cron_rejected(self, cli, db_path):
        result = self._create(cli, db_path, cron="every night")
        assert result.exit_code == 1
        assert "invalid cron expression" in result.output

    def test_trigger_enqueues_job(self, cli, db_path):
        self._create(cli, db_path)
        result = invoke(cli, "schedule", "trigger", "nightly", "-d", db_path)
        assert result.exit_code == 0, result.output
        assert "Triggered nightly" in result.output

        (job,) = invoke_json(cli, "jobs", "list", "-d", db_path)
        assert job["kind"] == "scheduled_job_execute"
        assert job["args"]["triggered_by"] == "manual"
        assert invoke_json(cli, "jobs", "stats", "-d", db_path) == {"available": 1}

    def test_trigger_missing(self, cli, db_path):
        result = invoke(cli, "schedule", "trigger", "nope", "-d", db_path)
        assert result.exit_code == 1

    def test_pause_and_resume(self, cli, db_path):
        self._create(cli, db_path)
        assert invoke(cli, "schedule", "pause", "nightly", "-d", db_path).exit_code == 0
        assert invoke_json(cli, "schedule", "list", "-d", db_path)[0]["enabled"] is False
        assert invoke(cli, "schedule", "resume", "nightly", "-d", db_path).exit_code == 0
        assert invoke_json(cli, "schedule", "list", "-d", db_path)[0]["enabled"] is True
        assert invoke(cli, "schedule", "pause", "nope", "-d", db_path).exit_code == 1

    def test_runs_of_missing_schedule(self, cli, db_path):
        assert invoke(cli, "schedule", "runs", "nope", "-d", db_path).exit_code == 1


class TestJobCommands:
    def test_unknown_state(self, cli, db_path):
        result = invoke(cli, "jobs", "list", "--state", "sleeping", "-d", db_path)
        assert result.exit_code == 1
        assert "unknown state" in result.output

    def test_retry_missing_job(self, cli, db_path):
        assert invoke(cli, "jobs", "retry", "nope", "-d", db_path).exit_code == 1


class TestSeriesCommands:
    def _create(self, cli, db_path):
        return invoke_json(
            cli,
            "series", "create",
            "--rrule", "FREQ=WEEKLY;BYDAY=MO",
            "--dtstart", "2026-01-05T14:00:00-05:00",
            "--duration", "PT2H",
            "--table", "bookings",
            "--template", '{"room": "A"}',
            "--tz", "America/New_York",
            "--name", "standup",
            "-d", db_path,
        )

    def test_create_expand_and_cancel(self, cli, db_path):
        series = self._create(cli, db_path)
        assert series["status"] == "active"
        assert series["dtstart"].startswith("2026-01-05T19:00:00")

        result = invoke(
            cli, "series", "expand", series["id"], "--until", "2026-02-01T00:00:00+00:00", "--inline", "-d", db_path
        )
        assert result.exit_code == 0, result.output

        instances = invoke_json(cli, "series", "instances", series["id"], "-d", db_path)
        assert [i["occurrence_date"] for i in instances] == ["2026-01-05", "2026-01-12", "2026-01-19", "2026-01-26"]

        result = invoke(cli, "series", "cancel-occurrence", series["id"], "2026-01-12", "-d", db_path)
        assert result.exit_code == 0, result.output
        cancelled = invoke_json(cli, "series", "instances", series["id"], "-d", db_path)[1]
        assert cancelled["exception_type"] == "cancelled"

    def test_expand_enqueues_job(self, cli, db_path):
        series = self._create(cli, db_path)
        args = ("series", "expand", series["id"], "--until", "2026-06-01T00:00:00+00:00", "-d", db_path)

        assert "Queued expansion" in invoke(cli, *args).output
        assert "already queued" in invoke(cli, *args).output
        (job,) = invoke_json(cli, "jobs", "list", "--kind", "expand_recurring_series", "-d", db_path)
        assert job["queue"] == "recurring"

    def test_bad_template(self, cli, db_path):
        result = invoke(
            cli, "series", "create", "--rrule", "FREQ=DAILY", "--dtstart", "2026-01-05T09:00:00",
            "--duration", "1h", "--table", "bookings", "--template", "[1, 2]", "-d", db_path,
        )
        assert result.exit_code == 1

    def test_bad_rule(self, cli, db_path):
        result = invoke(
            cli, "series", "create", "--rrule", "FREQ=HOURLY", "--dtstart", "2026-01-05T09:00:00",
            "--duration", "1h", "--table", "bookings", "-d", db_path,
        )
        assert result.exit_code == 1

    def test_cancel_unmaterialized(self, cli, db_path):
        series = self._create(cli, db_path)
        result = invoke(cli, "series", "cancel-occurrence", series["id"], "2026-01-12", "-d", db_path)
        assert result.exit_code == 1


def test_run_once_drains_due_jobs(cli, db_path, monkeypatch):
    monkeypatch.setattr("cadence.core.logging.configure_logging", lambda *args, **kwargs: None)
    invoke(cli, "schedule", "create", "nightly", "--target", "noop", "--cron", "0 3 * * *", "-d", db_path)
    invoke(cli, "schedule", "trigger", "nightly", "-d", db_path)

    result = invoke(cli, "run", "--once", "-d", db_path)

    assert result.exit_code == 0, result.output
    assert "processed 1 job(s)" in result.output
    (job,) = invoke_json(cli, "jobs", "list", "-d", db_path)
    assert job["state"] == "failed"
    assert "noop" in job["last_error"]


def test_run_rejects_bad_targets_spec(cli, db_path, monkeypatch):
    monkeypatch.setattr("cadence.core.logging.configure_logging", lambda *args, **kwargs: None)
    result = invoke(cli, "run", "--once", "--targets", "no_colon_here", "-d", db_path)
    assert result.exit_code == 1
