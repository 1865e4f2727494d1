"""Notification delivery worker.

The canonical example of failure classification in cadence:

┌──────────────────────────────────────────────────────────────────────────────┐
│  SEND NOTIFICATION                                                            │
│                                                                               │
│   template missing / render error ──► mark failed, PermanentError            │
│   for channel in args.channels:                                               │
│       disabled / no address       ──► skip                                    │
│       test address (email)        ──► counted as sent                         │
│       channel.send()              ──► sent | failed (+ last error)            │
│                                                                               │
│   any sent          ──► mark sent (channels_sent, channels_failed)           │
│   nothing attempted ──► mark skipped                                          │
│   all failed        ──► classify last error                                   │
│                          permanent ──► mark failed, PermanentError           │
│                          transient ──► TransientError (retry);                │
│                                        mark failed on the last attempt        │
└──────────────────────────────────────────────────────────────────────────────┘

Delivery happens outside any pooled connection; the database is touched
only before and after.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from pydantic import Field

from cadence.core.errors import (
    ConfigError,
    FailureClass,
    PermanentError,
    TemplateError,
    TransientError,
    classify_error,
)
from cadence.core.protocols import Connection
from cadence.execution.client import JobClient
from cadence.execution.contract import JobArgs, JobContext, Worker
from cadence.execution.models import InsertOpts, InsertResult, Job

from .channels import NotificationChannel, is_test_address
from .models import Notification
from .rendering import render_notification
from .repository import NotificationRepository

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"


class SendNotificationArgs(JobArgs):
    """Payload of a ``send_notification`` job."""

    kind: ClassVar[str] = "send_notification"

    notification_id: str
    user_id: str
    template_name: str
    entity_type: str | None = None
    entity_id: str | None = None
    entity_data: dict[str, Any] = Field(default_factory=dict)
    channels: list[str] = Field(default_factory=lambda: ["email"])

    @classmethod
    def insert_opts(cls) -> InsertOpts:
        return InsertOpts(queue=NOTIFICATIONS_QUEUE, priority=1, max_attempts=5)


class SendNotificationWorker(Worker[SendNotificationArgs]):
    """Renders a notification and delivers it on the user's enabled channels."""

    args_type = SendNotificationArgs
    timeout_seconds = 60.0

    def __init__(
        self,
        channels: Mapping[str, NotificationChannel],
        *,
        skip_test_emails: bool = True,
    ) -> None:
        self.channels = dict(channels)
        self.skip_test_emails = skip_test_emails

    def work(self, job: Job, args: SendNotificationArgs, ctx: JobContext) -> None:
        db = ctx.database
        with db.connection() as conn:
            repo = NotificationRepository(conn, db.dialect)
            template = repo.get_template(args.template_name)
            preferences = repo.get_preferences(args.user_id)

        if template is None:
            error = TemplateError(f"template {args.template_name!r} not found")
            self._mark_failed(ctx, args, f"Template error: {error}")
            raise error
        try:
            rendered = render_notification(template, args.entity_data)
        except TemplateError as e:
            self._mark_failed(ctx, args, f"Rendering error: {e}")
            raise

        sent: list[str] = []
        failed: list[str] = []
        last_error: BaseException | None = None

        for name in args.channels:
            preference = preferences.get(name)
            if preference is None or not preference.deliverable:
                logger.info("Notification %s: channel %s disabled for user %s", args.notification_id, name, args.user_id)
                continue
            channel = self.channels.get(name)
            if channel is None:
                logger.warning("Notification %s: no transport for channel %s", args.notification_id, name)
                failed.append(name)
                last_error = ConfigError(f"no transport configured for channel {name!r}")
                continue
            if name == "email" and self.skip_test_emails and is_test_address(preference.address or ""):
                logger.info("Notification %s: skipping test address %s", args.notification_id, preference.address)
                sent.append(name)
                continue

            ctx.check_deadline(f"send {name}")
            try:
                channel.send(preference.address or "", rendered)
            except Exception as e:
                logger.warning("Notification %s: %s delivery failed: %s", args.notification_id, name, e)
                failed.append(name)
                last_error = e
            else:
                sent.append(name)

        with db.connection() as conn:
            repo = NotificationRepository(conn, db.dialect)
            if sent:
                repo.mark_sent(args.notification_id, sent, failed, now=ctx.now())
                logger.info("Notification %s sent via %s", args.notification_id, sent)
                return
            if last_error is None:
                repo.mark_skipped(args.notification_id, "no enabled channels", now=ctx.now())
                logger.info("Notification %s skipped: no enabled channels", args.notification_id)
                return

        message = f"All channels failed: {last_error}"
        if classify_error(last_error) is FailureClass.PERMANENT:
            self._mark_failed(ctx, args, message)
            raise PermanentError(message, cause=last_error) from last_error
        if ctx.is_last_attempt:
            self._mark_failed(ctx, args, message)
        raise TransientError(message, cause=last_error) from last_error

    @staticmethod
    def _mark_failed(ctx: JobContext, args: SendNotificationArgs, message: str) -> None:
        with ctx.database.connection() as conn:
            NotificationRepository(conn, ctx.database.dialect).mark_failed(
                args.notification_id, message, now=ctx.now()
            )


def queue_notification(
    client: JobClient,
    conn: Connection,
    *,
    user_id: str,
    template_name: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    entity_data: dict[str, Any] | None = None,
    channels: Sequence[str] = ("email",),
) -> tuple[Notification, InsertResult]:
    """Record a pending notification and enqueue its delivery job."""
    notification = NotificationRepository(conn, client.database.dialect).create(
        user_id=user_id,
        template_name=template_name,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_data=entity_data,
        channels=channels,
    )
    inserted = client.insert(
        SendNotificationArgs(
            notification_id=notification.id,
            user_id=user_id,
            template_name=template_name,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_data=entity_data or {},
            channels=list(channels),
        ),
        conn=conn,
    )
    return notification, inserted


__all__ = [
    "NOTIFICATIONS_QUEUE",
    "SendNotificationArgs",
    "SendNotificationWorker",
    "queue_notification",
]
