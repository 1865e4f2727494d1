"""Job client — the one way application code enqueues work.

The client turns a typed :class:`~cadence.execution.contract.JobArgs` into a
row in ``cadence_jobs``. Queue, priority and attempt ceiling come from the
args class and may be overridden per call; a ``unique_key`` makes the
insert idempotent for as long as a live job holds the key.

Usage::

    client = JobClient(database, registry)
    result = client.insert(
        SendNotificationArgs(notification_id=nid),
        unique_key=f"send_notification:{nid}",
    )
    if result.duplicate:
        ...

Code that already holds a pooled connection passes it as ``conn=`` so the
insert shares that connection instead of borrowing a second one.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from cadence.core.database import Database
from cadence.core.errors import UnknownJobKindError
from cadence.core.protocols import Connection

from .contract import JobArgs
from .models import InsertResult, JobInsert
from .registry import WorkerRegistry
from .store import JobStore

logger = logging.getLogger(__name__)


class JobClient:
    """Enqueues typed jobs into the shared store."""

    def __init__(self, database: Database, registry: WorkerRegistry | None = None) -> None:
        self.database = database
        self.registry = registry

    def insert(
        self,
        args: JobArgs,
        *,
        unique_key: str | None = None,
        scheduled_at: datetime | None = None,
        queue: str | None = None,
        priority: int | None = None,
        max_attempts: int | None = None,
        conn: Connection | None = None,
    ) -> InsertResult:
        """Enqueue one job.

        Raises:
            UnknownJobKindError: If a registry is attached and no worker runs
                this kind
            ValueError: If an override is out of range
        """
        kind = type(args).kind
        if not kind:
            raise ValueError(f"{type(args).__name__} does not declare a kind")
        if self.registry is not None and not self.registry.has(kind):
            raise UnknownJobKindError(kind, self.registry.kinds())

        opts = type(args).insert_opts()
        overrides = {
            name: value
            for name, value in (
                ("queue", queue),
                ("priority", priority),
                ("max_attempts", max_attempts),
            )
            if value is not None
        }
        if overrides:
            opts = replace(opts, **overrides)

        request = JobInsert(
            kind=kind,
            args=args.to_payload(),
            opts=opts,
            unique_key=unique_key,
            scheduled_at=scheduled_at,
        )

        if conn is not None:
            result = JobStore(conn, self.database.dialect).enqueue(request)
        else:
            with self.database.connection() as pooled:
                result = JobStore(pooled, self.database.dialect).enqueue(request)

        if not result.duplicate:
            logger.info(
                "Inserted %s job %s on queue %s (priority %d)",
                kind,
                result.job.id,
                opts.queue,
                opts.priority,
            )
        return result


__all__ = ["JobClient"]
