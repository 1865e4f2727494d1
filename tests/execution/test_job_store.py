"""Tests for JobStore: dedup, priority leasing, lease guard and rescue."""

from datetime import UTC, datetime, timedelta

import pytest

from cadence.execution.models import (
    AttemptOutcome,
    InsertOpts,
    InvalidTransitionError,
    JobInsert,
    JobState,
    validate_job_transition,
)
from cadence.execution.store import JobStore

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(database):
    with database.connection() as conn:
        yield JobStore(conn, database.dialect)


def _insert(kind="echo", *, key=None, priority=2, queue="default", max_attempts=5, at=None):
    return JobInsert(
        kind=kind,
        args={"message": "hi"},
        opts=InsertOpts(queue=queue, priority=priority, max_attempts=max_attempts),
        unique_key=key,
        scheduled_at=at,
    )


class TestEnqueue:
    def test_enqueue_creates_available_job(self, store):
        result = store.enqueue(_insert(), now=T0)
        assert result.duplicate is False
        job = result.job
        assert job.state is JobState.AVAILABLE
        assert job.attempt == 0
        assert job.args == {"message": "hi"}
        assert job.scheduled_at == T0

    def test_unique_key_dedups(self, store):
        first = store.enqueue(_insert(key="k1"), now=T0)
        second = store.enqueue(_insert(key="k1"), now=T0)
        assert second.duplicate is True
        assert second.job.id == first.job.id
        assert len(store.list_jobs()) == 1

    def test_same_key_different_kind_is_distinct(self, store):
        store.enqueue(_insert("a", key="k1"), now=T0)
        result = store.enqueue(_insert("b", key="k1"), now=T0)
        assert result.duplicate is False

    def test_no_key_never_dedups(self, store):
        store.enqueue(_insert(), now=T0)
        store.enqueue(_insert(), now=T0)
        assert len(store.list_jobs()) == 2

    def test_discarded_job_releases_key(self, store):
        first = store.enqueue(_insert(key="k1", max_attempts=1), now=T0).job
        (leased,) = store.lease("default", 1, lease_seconds=60, now=T0)
        store.discard(leased, "gave up", now=T0)
        again = store.enqueue(_insert(key="k1"), now=T0)
        assert again.duplicate is False
        assert again.job.id != first.id

    def test_completed_job_keeps_key(self, store):
        store.enqueue(_insert(key="k1"), now=T0)
        (leased,) = store.lease("default", 1, lease_seconds=60, now=T0)
        store.complete(leased, now=T0)
        assert store.enqueue(_insert(key="k1"), now=T0).duplicate is True

    def test_invalid_priority_rejected(self):
        with pytest.raises(ValueError):
            InsertOpts(priority=0)
        with pytest.raises(ValueError):
            InsertOpts(priority=5)


class TestLease:
    def test_priority_then_schedule_order(self, store):
        low = store.enqueue(_insert(priority=4, at=T0 - timedelta(minutes=5)), now=T0).job
        high = store.enqueue(_insert(priority=1), now=T0).job
        mid_late = store.enqueue(_insert(priority=2, at=T0 - timedelta(minutes=1)), now=T0).job
        mid_early = store.enqueue(_insert(priority=2, at=T0 - timedelta(minutes=2)), now=T0).job

        leased = store.lease("default", 10, lease_seconds=60, now=T0)
        assert [j.id for j in leased] == [high.id, mid_early.id, mid_late.id, low.id]

    def test_future_jobs_not_leased(self, store):
        store.enqueue(_insert(at=T0 + timedelta(hours=1)), now=T0)
        assert store.lease("default", 10, lease_seconds=60, now=T0) == []

    def test_lease_respects_queue_and_limit(self, store):
        for _ in range(3):
            store.enqueue(_insert(queue="notifications"), now=T0)
        store.enqueue(_insert(queue="recurring"), now=T0)
        leased = store.lease("notifications", 2, lease_seconds=60, worker_id="w1", now=T0)
        assert len(leased) == 2
        assert all(j.queue == "notifications" for j in leased)
        assert all(j.state is JobState.RUNNING and j.attempt == 1 for j in leased)
        assert leased[0].attempted_by == "w1"
        assert leased[0].leased_until == T0 + timedelta(seconds=60)

    def test_running_job_not_leased_twice(self, store):
        store.enqueue(_insert(), now=T0)
        assert len(store.lease("default", 1, lease_seconds=60, now=T0)) == 1
        assert store.lease("default", 1, lease_seconds=60, now=T0) == []

    def test_zero_limit(self, store):
        store.enqueue(_insert(), now=T0)
        assert store.lease("default", 0, lease_seconds=60, now=T0) == []


class TestFinalize:
    def test_retry_makes_job_runnable_later(self, store):
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=60, now=T0)
        assert store.retry(job, "smtp timeout", retry_at=T0 + timedelta(seconds=30), now=T0)

        refreshed = store.get(job.id)
        assert refreshed.state is JobState.RETRYABLE
        assert refreshed.last_error == "smtp timeout"
        assert store.lease("default", 1, lease_seconds=60, now=T0) == []
        (again,) = store.lease("default", 1, lease_seconds=60, now=T0 + timedelta(seconds=30))
        assert again.attempt == 2

    def test_fail_is_terminal(self, store):
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=60, now=T0)
        assert store.fail(job, "template missing", now=T0)
        failed = store.get(job.id)
        assert failed.state is JobState.FAILED
        assert failed.finalized_at == T0

    def test_stale_attempt_cannot_finalize(self, store):
        store.enqueue(_insert(), now=T0)
        (first,) = store.lease("default", 1, lease_seconds=60, now=T0)
        store.retry(first, "timeout", retry_at=T0, now=T0)
        (second,) = store.lease("default", 1, lease_seconds=60, now=T0)

        assert store.complete(first, now=T0) is False
        assert store.get(first.id).state is JobState.RUNNING
        assert store.complete(second, now=T0) is True

    def test_count_by_state(self, store):
        store.enqueue(_insert(), now=T0)
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=60, now=T0)
        store.complete(job, now=T0)
        assert store.count_by_state() == {"available": 1, "completed": 1}


class TestRescue:
    def test_expired_lease_is_retried(self, store):
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=10, worker_id="dead", now=T0)

        assert store.rescue_expired(now=T0 + timedelta(seconds=5)) == []
        rescued = store.rescue_expired(now=T0 + timedelta(seconds=11))
        assert [j.id for j in rescued] == [job.id]
        assert store.get(job.id).state is JobState.RETRYABLE

        (attempt,) = store.list_attempts(job.id)
        assert attempt.outcome is AttemptOutcome.RESCUED
        assert attempt.worker_id == "dead"

    def test_expired_last_attempt_is_discarded(self, store):
        store.enqueue(_insert(max_attempts=1), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=10, now=T0)
        store.rescue_expired(now=T0 + timedelta(minutes=1))
        assert store.get(job.id).state is JobState.DISCARDED


class TestOperatorRetry:
    def test_retry_failed_job(self, store):
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=60, now=T0)
        store.fail(job, "bad", now=T0)

        requeued = store.retry_job(job.id, now=T0 + timedelta(hours=1))
        assert requeued.state is JobState.AVAILABLE
        assert requeued.attempt == 0
        assert requeued.finalized_at is None

    def test_retry_running_job_rejected(self, store):
        store.enqueue(_insert(), now=T0)
        (job,) = store.lease("default", 1, lease_seconds=60, now=T0)
        with pytest.raises(InvalidTransitionError):
            store.retry_job(job.id)

    def test_retry_missing_job(self, store):
        with pytest.raises(KeyError):
            store.retry_job("nope")


class TestStateMachine:
    def test_valid_transitions(self):
        validate_job_transition(JobState.AVAILABLE, JobState.RUNNING)
        validate_job_transition(JobState.RUNNING, JobState.DISCARDED)
        validate_job_transition(JobState.FAILED, JobState.AVAILABLE)

    def test_completed_is_final(self):
        with pytest.raises(InvalidTransitionError):
            validate_job_transition(JobState.COMPLETED, JobState.AVAILABLE)
        assert JobState.COMPLETED.is_terminal
        assert JobState.RETRYABLE.is_runnable
