"""Worker Registry — injectable kind → worker lookup.

Manifesto:
The runner needs to resolve ``"send_notification"`` to the worker that
executes it, and the client needs to refuse kinds nobody can run. The
registry decouples registration (at startup) from resolution (at dispatch
time). Each runtime owns one instance; tests build their own.

ARCHITECTURE
────────────
::

    WorkerRegistry
      ├── .register(worker)     ─ store worker under worker.kind
      ├── .get(kind)            ─ lookup, UnknownJobKindError if missing
      ├── .has(kind)            ─ existence check
      ├── .kinds()              ─ all registered kinds
      ├── .queues()             ─ queues named by registered kinds' opts
      └── .max_timeout(default) ─ sizes job leases

Tags:
    cadence, execution, registry, worker-registry, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

from cadence.core.errors import UnknownJobKindError

from .contract import Worker


class WorkerRegistry:
    """Injectable worker registry.

    Example:
        >>> registry = WorkerRegistry()
        >>> registry.register(SendNotificationWorker(channels))
        >>> registry.get("send_notification")
        SendNotificationWorker(kind='send_notification')
    """

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def register(self, worker: Worker) -> None:
        """Register a worker under its args kind.

        Raises:
            ValueError: If the kind is empty or already registered
        """
        kind = worker.kind
        if not kind:
            raise ValueError(f"{type(worker).__name__}.args_type has no kind")
        if kind in self._workers:
            raise ValueError(f"Worker already registered for kind {kind!r}")
        self._workers[kind] = worker

    def get(self, kind: str) -> Worker:
        """Get the worker for ``kind``.

        Raises:
            UnknownJobKindError: If no worker is registered for the kind
        """
        if kind not in self._workers:
            raise UnknownJobKindError(kind, self.kinds())
        return self._workers[kind]

    def has(self, kind: str) -> bool:
        return kind in self._workers

    def kinds(self) -> list[str]:
        return sorted(self._workers)

    def queues(self) -> set[str]:
        """Default queues of every registered kind."""
        return {w.args_type.insert_opts().queue for w in self._workers.values()}

    def max_timeout(self, default: float) -> float:
        """Longest per-attempt timeout among registered workers."""
        timeouts = [w.timeout_seconds for w in self._workers.values() if w.timeout_seconds]
        return max([default, *timeouts])

    def __len__(self) -> int:
        return len(self._workers)


__all__ = ["WorkerRegistry"]
