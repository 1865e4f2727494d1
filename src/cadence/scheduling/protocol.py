"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  The scheduler operates as "beat-as-poller": backends control WHEN ticks     │
│  happen, while SchedulerService controls WHAT happens on each tick.          │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌──────────────────────────┐       │
│   │  Thread Backend │ ─────────────────► │  SchedulerService.tick   │       │
│   │  (default)      │                    │  - load enabled          │       │
│   └─────────────────┘                    │  - due occurrences       │       │
│                                          │  - enqueue (dedup key)   │       │
│   ┌─────────────────┐       tick()       └──────────────────────────┘       │
│   │  Test driver    │ ─────────────────►                                     │
│   │  (await tick()) │                                                         │
│   └─────────────────┘                                                         │
│                                                                               │
│  Several processes may run backends at once; the service stays correct      │
│  because every enqueue carries a unique key.                                 │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback
    at the specified interval. All schedule evaluation logic lives in
    SchedulerService.
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        """Start calling ``tick_callback`` every ``interval_seconds``."""
        ...

    def stop(self) -> None:
        """Stop the loop, waiting for the current tick to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


__all__ = ["SchedulerBackend", "TickCallback"]
