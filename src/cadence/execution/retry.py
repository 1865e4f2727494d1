"""Retry delay strategies for failed job attempts.

A job that fails with a transient error goes back to the queue as
``retryable`` with a future ``scheduled_at``. The strategy decides how far in
the future; an explicit ``retry_after`` on the error (rate limits) always
wins.

Example:
    >>> from cadence.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(base_delay=15.0, max_delay=3600.0, jitter=False)
    >>> [strategy.next_delay(n) for n in (1, 2, 3)]
    [15.0, 30.0, 60.0]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from cadence.core.errors import get_retry_after


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before the job runs again.

        Args:
            attempt: The attempt number that just failed (1 = first run)
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * multiplier ** (attempt - 1), max_delay) ± jitter

    Attributes:
        base_delay: Delay after the first failed attempt, in seconds
        max_delay: Cap on the delay before jitter
        multiplier: Growth factor per attempt
        jitter: Spread retries of jobs that failed together
        jitter_range: Jitter as a fraction of the delay (0.0-1.0)
    """

    base_delay: float = 15.0
    max_delay: float = 3600.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(
            self.base_delay * (self.multiplier ** max(attempt - 1, 0)),
            self.max_delay,
        )
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    delay: float = 15.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class NoDelay(RetryStrategy):
    """Retry immediately (tests and local development)."""

    def next_delay(self, attempt: int) -> float:
        return 0.0


def retry_at(
    error: BaseException,
    attempt: int,
    strategy: RetryStrategy,
    now: datetime,
) -> datetime:
    """When a job that failed with ``error`` on ``attempt`` becomes runnable."""
    delay = get_retry_after(error)
    if delay is None:
        delay = strategy.next_delay(attempt)
    return now + timedelta(seconds=delay)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoDelay",
    "retry_at",
]
