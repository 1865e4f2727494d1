"""Daemon-thread timing backend, the default for ``cadence run``.

┌──────────────────────────────────────────────────────────────────────────────┐
│  THREAD BACKEND                                                               │
│                                                                               │
│   start(tick, interval)                                                       │
│      └── thread "cadence-scheduler"                                           │
│             tick now, then every ``interval`` until stop() sets the event     │
│                                                                               │
│  A tick that raises is logged and counted; the loop keeps going so one bad    │
│  database round-trip cannot silence the scheduler.                            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from typing import Any

from .protocol import TickCallback

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Calls ``tick_callback`` on a background thread at a fixed interval."""

    name = "thread"

    def __init__(self, *, join_timeout: float = 30.0) -> None:
        self.join_timeout = join_timeout
        self.interval: float | None = None
        self._wakeup = threading.Event()
        self._thread: threading.Thread | None = None
        self._stats_lock = threading.Lock()
        self._ticks = 0
        self._failed_ticks = 0
        self._last_tick_at: datetime | None = None
        self._last_error: str | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self.is_running:
            logger.warning("scheduler thread already running; ignoring start()")
            return

        self.interval = interval_seconds
        self._wakeup.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(tick_callback, interval_seconds),
            name="cadence-scheduler",
            daemon=True,
        )
        self._thread.start()

    def _loop(self, tick_callback: TickCallback, interval: float) -> None:
        logger.info("scheduler thread started (interval=%ss)", interval)
        while True:
            self._tick_once(tick_callback)
            if self._wakeup.wait(interval):
                break
        logger.info("scheduler thread stopped after %d tick(s)", self._ticks)

    def _tick_once(self, tick_callback: TickCallback) -> None:
        with self._stats_lock:
            self._ticks += 1
            self._last_tick_at = datetime.now(UTC)
        try:
            asyncio.run(tick_callback())
        except Exception as exc:
            with self._stats_lock:
                self._failed_ticks += 1
                self._last_error = str(exc)
            logger.exception("scheduler tick failed")

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._wakeup.set()
        thread.join(timeout=self.join_timeout)
        if thread.is_alive():
            logger.warning("scheduler thread still running after %ss", self.join_timeout)
        self._thread = None

    def health(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "healthy": self.is_running,
                "backend": self.name,
                "tick_count": self._ticks,
                "failed_ticks": self._failed_ticks,
                "last_tick": self._last_tick_at.isoformat() if self._last_tick_at else None,
                "last_error": self._last_error,
                "interval_seconds": self.interval,
            }

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._ticks


__all__ = ["ThreadSchedulerBackend"]
