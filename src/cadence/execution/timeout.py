"""Cooperative per-job deadlines.

Workers run on pool threads, and a Python thread cannot be interrupted from
outside. Instead every attempt runs inside a deadline scope: the worker (or
any code it calls) checks the deadline at safe points, and the runner
treats an attempt that overran its deadline as a timeout. A worker that
never checks is bounded by its job lease, after which the job is rescued.

Architecture:
    ::

        JobRunner._execute(job)
            │
            ▼
        with deadline_scope(timeout, "send_notification") as deadline:
            worker.work(job, args, ctx)      # ctx.deadline is the same object
                ├── check_deadline()         # raises TimeoutExpired
                └── deadline.remaining()     # budget left for I/O timeouts

        Nested scopes never extend an outer deadline; the shorter one wins.

Examples:
    >>> from cadence.execution.timeout import deadline_scope, check_deadline
    >>>
    >>> with deadline_scope(5.0, "expand") as ctx:
    ...     for occurrence in occurrences:
    ...         check_deadline()
    ...         materialize(occurrence)

Tags:
    timeout, deadline, execution, cadence

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from the built-in TimeoutError, which the error classifier
    treats as transient.
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


@dataclass
class DeadlineContext:
    """Deadline state for one scope.

    Attributes:
        deadline: Absolute deadline (monotonic clock)
        timeout_seconds: Budget the scope was opened with
        operation: Label used in the timeout message
        start_time: When the scope was opened (monotonic clock)
    """

    deadline: float
    timeout_seconds: float
    operation: str = "operation"
    start_time: float = field(default_factory=time.monotonic)

    def remaining(self) -> float:
        """Seconds until the deadline; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline

    def check(self, op_name: str | None = None) -> None:
        """Raise :class:`TimeoutExpired` if the deadline has passed."""
        if self.is_expired():
            raise TimeoutExpired(
                timeout=self.timeout_seconds,
                elapsed=self.elapsed,
                operation=op_name or self.operation,
            )


_deadline_stack: threading.local = threading.local()


def _get_deadline_stack() -> list[DeadlineContext]:
    if not hasattr(_deadline_stack, "stack"):
        _deadline_stack.stack = []
    return _deadline_stack.stack


def get_current_deadline() -> DeadlineContext | None:
    """Innermost deadline of the current thread, if any."""
    stack = _get_deadline_stack()
    return stack[-1] if stack else None


def get_remaining_deadline() -> float | None:
    """Seconds left on the current thread's deadline, or None outside a scope."""
    ctx = get_current_deadline()
    return ctx.remaining() if ctx is not None else None


def check_deadline() -> None:
    """Raise if the current thread's deadline expired; no-op outside a scope."""
    ctx = get_current_deadline()
    if ctx is not None:
        ctx.check()


@contextmanager
def deadline_scope(seconds: float, operation: str = "operation") -> Iterator[DeadlineContext]:
    """Open a deadline scope on the current thread.

    The effective budget is the smaller of ``seconds`` and whatever remains
    on an enclosing scope.

    Raises:
        ValueError: If ``seconds`` is not positive
    """
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")

    outer = get_current_deadline()
    effective = seconds if outer is None else min(seconds, outer.remaining())
    now = time.monotonic()
    ctx = DeadlineContext(
        deadline=now + effective,
        timeout_seconds=effective,
        operation=operation,
        start_time=now,
    )

    stack = _get_deadline_stack()
    stack.append(ctx)
    try:
        yield ctx
    finally:
        stack.pop()


__all__ = [
    "TimeoutExpired",
    "DeadlineContext",
    "deadline_scope",
    "check_deadline",
    "get_current_deadline",
    "get_remaining_deadline",
]
