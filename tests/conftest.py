"""
Shared pytest fixtures for cadence tests.

This module provides:
- An in-memory database with every schema applied
- A controllable clock for scheduler and expansion tests
- Wired registries, clients and runners over that database

Fixtures are auto-discovered by pytest; request them by argument name.
An in-memory database is served by a pool of one connection, so tests
must not hold ``database.connection()`` while calling a service.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest

from cadence.core.database import Database, create_database
from cadence.core.settings import CadenceSettings, reset_settings
from cadence.execution.client import JobClient
from cadence.execution.registry import WorkerRegistry
from cadence.execution.retry import NoDelay
from cadence.execution.runner import JobRunner
from cadence.notifications.channels import LogChannel
from cadence.runtime import build_registry
from cadence.scheduling.targets import TargetRegistry


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> datetime:
        self.current = self.current + delta
        return self.current


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> CadenceSettings:
    return CadenceSettings(
        database_url="memory",
        poll_interval_seconds=0.05,
        shutdown_grace_seconds=1.0,
        job_timeout_seconds=30.0,
    )


@pytest.fixture
def database() -> Iterator[Database]:
    """In-memory database with every schema applied."""
    db = create_database("memory", init_schema=True)
    yield db
    db.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 12, 0, tzinfo=UTC))


@pytest.fixture
def target_calls() -> list:
    return []


@pytest.fixture
def targets(target_calls) -> TargetRegistry:
    """Targets: ``noop`` succeeds, ``report_failure`` returns success=False, ``boom`` raises."""
    registry = TargetRegistry()

    @registry.register("noop", description="Does nothing")
    def noop(ctx):
        target_calls.append(ctx)
        return "ok"

    @registry.register("report_failure")
    def report_failure(ctx):
        return {"success": False, "message": "upstream returned 0 rows"}

    @registry.register("boom")
    def boom(ctx):
        raise RuntimeError("connection refused by upstream")

    return registry


@pytest.fixture
def email_channel() -> LogChannel:
    return LogChannel("email")


@pytest.fixture
def registry(settings, targets, email_channel) -> WorkerRegistry:
    return build_registry(settings, targets, {"email": email_channel})


@pytest.fixture
def client(database, registry) -> JobClient:
    return JobClient(database, registry)


@pytest.fixture
def runner(database, registry, settings, client) -> JobRunner:
    """Runner with immediate retries, driven with ``run_pending`` in tests."""
    return JobRunner(
        database,
        registry,
        settings=settings,
        client=client,
        retry_strategy=NoDelay(),
        worker_id="test-runner",
    )
