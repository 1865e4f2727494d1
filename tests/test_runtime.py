"""Tests for process wiring."""

import time
from datetime import timedelta

import pytest

from cadence.core.settings import CadenceSettings
from cadence.notifications.channels import LogChannel
from cadence.runtime import build_registry, create_runtime
from cadence.scheduling.repository import ScheduleCreate, ScheduleRepository
from cadence.scheduling.targets import TargetRegistry
from cadence.scheduling.thread_backend import ThreadSchedulerBackend


def test_build_registry_registers_builtin_kinds(settings, targets):
    registry = build_registry(settings, targets, {"email": LogChannel()})
    assert registry.kinds() == ["expand_recurring_series", "scheduled_job_execute", "send_notification"]
    assert registry.queues() == {"scheduled_jobs", "recurring", "notifications"}


def test_expansion_worker_uses_settings(targets):
    settings = CadenceSettings(_env_file=None, expansion_horizon_days=30, expansion_interval_hours=6)
    worker = build_registry(settings, targets, {}).get("expand_recurring_series")
    assert worker.horizon == timedelta(days=30)
    assert worker.interval == timedelta(hours=6)


def test_create_runtime_wiring(settings, targets, database):
    runtime = create_runtime(settings, targets=targets, database=database)

    assert runtime.database is database
    assert runtime.client.registry is runtime.registry
    assert runtime.runner.queues == {
        q: settings.concurrency_for(q) for q in ("scheduled_jobs", "recurring", "notifications")
    }
    assert isinstance(runtime.scheduler.backend, ThreadSchedulerBackend)
    assert runtime.scheduler.lookback == timedelta(hours=settings.catchup_lookback_hours)
    assert runtime.scheduler.targets is targets


def test_default_channels_and_targets(settings, database):
    runtime = create_runtime(settings, database=database)
    assert isinstance(runtime.targets, TargetRegistry)
    assert len(runtime.targets) == 0
    assert runtime.registry.has("send_notification")


@pytest.mark.slow
def test_start_runs_manual_trigger_and_stops(settings, targets, target_calls):
    runtime = create_runtime(settings, targets=targets)
    with runtime.database.connection() as conn:
        ScheduleRepository(conn, runtime.database.dialect).create(
            ScheduleCreate(name="hourly", target="noop", cron_expression="0 * * * *")
        )

    runtime.start()
    try:
        runtime.scheduler.trigger("hourly")
        deadline = time.monotonic() + 5
        while not target_calls and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        abandoned = runtime.stop(grace=2)

    assert abandoned == 0
    assert len(target_calls) == 1
    assert not runtime.runner.is_running
    assert not runtime.scheduler.is_running
