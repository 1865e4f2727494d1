"""Tests for WorkerRegistry, JobClient, retry strategies and deadlines."""

import time
from datetime import UTC, datetime, timedelta
from typing import ClassVar

import pytest

from cadence.core.errors import RateLimitError, UnknownJobKindError
from cadence.execution.client import JobClient
from cadence.execution.contract import JobArgs, Worker
from cadence.execution.models import InsertOpts
from cadence.execution.registry import WorkerRegistry
from cadence.execution.retry import ConstantBackoff, ExponentialBackoff, NoDelay, retry_at
from cadence.execution.timeout import (
    TimeoutExpired,
    check_deadline,
    deadline_scope,
    get_current_deadline,
    get_remaining_deadline,
)


class PingArgs(JobArgs):
    kind: ClassVar[str] = "ping"

    target: str

    @classmethod
    def insert_opts(cls) -> InsertOpts:
        return InsertOpts(queue="pings", priority=3, max_attempts=2)


class PingWorker(Worker[PingArgs]):
    args_type = PingArgs
    timeout_seconds = 120.0

    def work(self, job, args, ctx):
        pass


class NamelessArgs(JobArgs):
    pass


class NamelessWorker(Worker[NamelessArgs]):
    args_type = NamelessArgs

    def work(self, job, args, ctx):
        pass


class TestWorkerRegistry:
    def test_register_and_get(self):
        registry = WorkerRegistry()
        worker = PingWorker()
        registry.register(worker)
        assert registry.get("ping") is worker
        assert registry.has("ping")
        assert registry.kinds() == ["ping"]
        assert registry.queues() == {"pings"}
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = WorkerRegistry()
        registry.register(PingWorker())
        with pytest.raises(ValueError):
            registry.register(PingWorker())

    def test_kindless_rejected(self):
        with pytest.raises(ValueError):
            WorkerRegistry().register(NamelessWorker())

    def test_unknown_kind(self):
        with pytest.raises(UnknownJobKindError):
            WorkerRegistry().get("nope")

    def test_max_timeout(self):
        registry = WorkerRegistry()
        registry.register(PingWorker())
        assert registry.max_timeout(30) == 120.0
        assert registry.max_timeout(300) == 300

    def test_builtin_kinds(self, registry):
        assert registry.kinds() == ["expand_recurring_series", "scheduled_job_execute", "send_notification"]


class TestJobClient:
    def test_insert_uses_args_opts(self, database):
        registry = WorkerRegistry()
        registry.register(PingWorker())
        job = JobClient(database, registry).insert(PingArgs(target="db")).job
        assert (job.kind, job.queue, job.priority, job.max_attempts) == ("ping", "pings", 3, 2)
        assert job.args == {"target": "db"}

    def test_overrides(self, database):
        job = JobClient(database).insert(PingArgs(target="db"), queue="urgent", priority=1).job
        assert (job.queue, job.priority, job.max_attempts) == ("urgent", 1, 2)

    def test_unregistered_kind_rejected(self, database):
        with pytest.raises(UnknownJobKindError):
            JobClient(database, WorkerRegistry()).insert(PingArgs(target="db"))

    def test_kindless_args_rejected(self, database):
        with pytest.raises(ValueError):
            JobClient(database).insert(NamelessArgs())

    def test_unique_key_dedups(self, database):
        client = JobClient(database)
        first = client.insert(PingArgs(target="db"), unique_key="ping:db")
        second = client.insert(PingArgs(target="db"), unique_key="ping:db")
        assert second.duplicate is True
        assert second.job.id == first.job.id

    def test_insert_on_held_connection(self, database):
        client = JobClient(database)
        with database.connection() as conn:
            result = client.insert(PingArgs(target="db"), conn=conn)
        assert result.duplicate is False

    def test_scheduled_at(self, database):
        at = datetime(2030, 1, 1, tzinfo=UTC)
        job = JobClient(database).insert(PingArgs(target="db"), scheduled_at=at).job
        assert job.scheduled_at == at


class TestRetryStrategies:
    def test_exponential_without_jitter(self):
        strategy = ExponentialBackoff(base_delay=15.0, max_delay=100.0, jitter=False)
        assert [strategy.next_delay(n) for n in (1, 2, 3, 4)] == [15.0, 30.0, 60.0, 100.0]

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=10.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 7.5 <= strategy.next_delay(1) <= 12.5

    def test_constant_and_none(self):
        assert ConstantBackoff(delay=5).next_delay(9) == 5
        assert NoDelay().next_delay(3) == 0.0

    def test_retry_at_prefers_retry_after(self):
        now = datetime(2026, 1, 1, tzinfo=UTC)
        assert retry_at(RateLimitError(retry_after=90), 1, NoDelay(), now) == now + timedelta(seconds=90)
        assert retry_at(ValueError("x"), 1, ConstantBackoff(delay=5), now) == now + timedelta(seconds=5)


class TestDeadlines:
    def test_no_scope_is_noop(self):
        check_deadline()
        assert get_current_deadline() is None
        assert get_remaining_deadline() is None

    def test_expired_scope_raises(self):
        with deadline_scope(0.01, "expand") as ctx:
            time.sleep(0.03)
            assert ctx.is_expired()
            with pytest.raises(TimeoutExpired) as exc_info:
                check_deadline()
        assert exc_info.value.operation == "expand"
        assert isinstance(exc_info.value, TimeoutError)

    def test_nested_scope_never_extends(self):
        with deadline_scope(0.5), deadline_scope(60) as inner:
            assert inner.timeout_seconds <= 0.5

    def test_scope_pops(self):
        with deadline_scope(5):
            assert get_current_deadline() is not None
        assert get_current_deadline() is None

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError), deadline_scope(0):
            pass
