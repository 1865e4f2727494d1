"""Worker contract — typed job arguments, workers and the per-attempt context.

Manifesto:
    Every background behavior in cadence (scheduled targets, series
    expansion, notification delivery) is a *kind* of job. A kind is defined
    by exactly two things: a pydantic ``JobArgs`` model that says what the
    job carries and where it is queued, and a ``Worker`` that says what
    running it means. The runner knows nothing else about the kind.

Architecture:
    ::

        class SendNotificationArgs(JobArgs):        # payload + routing
            kind: ClassVar[str] = "send_notification"
            notification_id: str

            @classmethod
            def insert_opts(cls) -> InsertOpts:
                return InsertOpts(queue="notifications", priority=1, max_attempts=5)

        class SendNotificationWorker(Worker[SendNotificationArgs]):
            args_type = SendNotificationArgs
            timeout_seconds = 60

            def work(self, job, args, ctx) -> None:
                ...                                 # raise to fail the attempt

    Raising a :class:`~cadence.core.errors.TransientError` retries with
    backoff; a :class:`~cadence.core.errors.PermanentError` fails the job
    without retry. Untyped exceptions are classified by message.

Guardrails:
    ❌ DON'T: hold a pooled connection across network I/O inside ``work``
    ✅ DO: call ``ctx.check_deadline()`` between units of work

Tags:
    cadence, execution, worker, contract, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from cadence.core.timestamps import utc_now

from .models import InsertOpts, Job
from .timeout import DeadlineContext

if TYPE_CHECKING:
    from cadence.core.database import Database
    from cadence.core.settings import CadenceSettings

    from .client import JobClient


class JobArgs(BaseModel):
    """Base class for typed job payloads.

    Subclasses set ``kind`` and may override :meth:`insert_opts` to route
    the kind to its queue with its priority and attempt ceiling.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: ClassVar[str] = ""

    @classmethod
    def insert_opts(cls) -> InsertOpts:
        return InsertOpts()

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict stored in ``cadence_jobs.args``."""
        return self.model_dump(mode="json")


ArgsT = TypeVar("ArgsT", bound=JobArgs)


@dataclass
class JobContext:
    """Everything a worker may use during one attempt."""

    job: Job
    database: Database
    client: JobClient
    deadline: DeadlineContext
    worker_id: str = ""
    clock: Any = field(default=utc_now)
    settings: CadenceSettings | None = None

    @property
    def attempt(self) -> int:
        return self.job.attempt

    @property
    def is_last_attempt(self) -> bool:
        return self.job.attempts_exhausted

    def now(self) -> datetime:
        return self.clock()

    def check_deadline(self, op_name: str | None = None) -> None:
        self.deadline.check(op_name)

    def remaining(self) -> float:
        return self.deadline.remaining()


class Worker(ABC, Generic[ArgsT]):
    """Executes jobs of one kind."""

    args_type: ClassVar[type[JobArgs]]
    timeout_seconds: ClassVar[float | None] = None

    @property
    def kind(self) -> str:
        return self.args_type.kind

    @abstractmethod
    def work(self, job: Job, args: ArgsT, ctx: JobContext) -> None:
        """Run one attempt. Return normally to complete the job."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r})"


__all__ = ["JobArgs", "JobContext", "Worker"]
