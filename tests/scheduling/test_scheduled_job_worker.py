"""End-to-end tests: scheduler tick, then the runner executes the target."""

from datetime import timedelta

import pytest

from cadence.execution.models import JobState
from cadence.execution.store import JobStore
from cadence.scheduling.models import TriggerReason
from cadence.scheduling.repository import ScheduleCreate, ScheduleRepository
from cadence.scheduling.service import SchedulerService


@pytest.fixture
def service(database, client, targets, clock):
    return SchedulerService(database, client, targets=targets, clock=clock)


def _schedule(database, clock, target):
    with database.connection() as conn:
        return ScheduleRepository(conn, database.dialect).create(
            ScheduleCreate(name=f"{target}-hourly", target=target, cron_expression="0 * * * *"),
            now=clock.current - timedelta(hours=1),
        )


def _reload(database, schedule_id):
    with database.connection() as conn:
        repo = ScheduleRepository(conn, database.dialect)
        return repo.get(schedule_id), repo.list_runs(schedule_id)


def _only_job(database):
    with database.connection() as conn:
        (job,) = JobStore(conn, database.dialect).list_jobs(kind="scheduled_job_execute")
        return job


class TestScheduledRuns:
    async def test_success_records_run_and_advances(self, database, service, runner, clock, target_calls):
        schedule = _schedule(database, clock, "noop")
        await service.tick()

        assert runner.run_pending() == 1

        (ctx,) = target_calls
        assert ctx.scheduled_for == clock.current
        assert ctx.triggered_by is TriggerReason.SCHEDULED
        assert ctx.schedule.id == schedule.id

        reloaded, (run,) = _reload(database, schedule.id)
        assert reloaded.last_run_at == clock.current
        assert run.success is True
        assert run.message == "ok"
        assert run.is_completed
        assert run.duration_ms is not None
        assert run.job_id == _only_job(database).id
        assert _only_job(database).state is JobState.COMPLETED

    async def test_reported_failure_completes_job(self, database, service, runner, clock):
        schedule = _schedule(database, clock, "report_failure")
        await service.tick()
        runner.run_pending()

        reloaded, (run,) = _reload(database, schedule.id)
        assert run.success is False
        assert run.message == "upstream returned 0 rows"
        assert reloaded.last_run_at == clock.current
        assert _only_job(database).state is JobState.COMPLETED

    async def test_raising_target_retries_job(self, database, service, runner, clock):
        schedule = _schedule(database, clock, "boom")
        await service.tick()
        runner.run_pending()

        reloaded, (run,) = _reload(database, schedule.id)
        assert run.success is False
        assert run.message == "RuntimeError: connection refused by upstream"
        assert reloaded.last_run_at == clock.current

        job = _only_job(database)
        assert job.state is JobState.RETRYABLE
        assert "connection refused" in job.last_error

    async def test_next_tick_after_run_enqueues_nothing(self, database, service, runner, clock):
        _schedule(database, clock, "noop")
        await service.tick()
        runner.run_pending()
        assert (await service.tick()).enqueued == []


class TestManualRuns:
    def test_manual_run_leaves_last_run_at(self, database, service, runner, clock, target_calls):
        schedule = _schedule(database, clock, "noop")
        service.trigger(schedule.name)
        runner.run_pending()

        (ctx,) = target_calls
        assert ctx.triggered_by is TriggerReason.MANUAL

        reloaded, (run,) = _reload(database, schedule.id)
        assert run.triggered_by is TriggerReason.MANUAL
        assert run.success is True
        assert reloaded.last_run_at is None

    def test_deleted_schedule_fails_job(self, database, service, runner, clock):
        schedule = _schedule(database, clock, "noop")
        service.trigger(schedule.name)
        with database.connection() as conn:
            ScheduleRepository(conn, database.dialect).delete(schedule.id)

        runner.run_pending()

        job = _only_job(database)
        assert job.state is JobState.FAILED
        assert "Schedule not found" in job.last_error
