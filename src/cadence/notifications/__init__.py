"""Cadence Notifications — templated, multi-channel delivery as a job kind."""

from cadence.notifications.channels import (
    TEST_EMAIL_DOMAINS,
    LogChannel,
    NotificationChannel,
    is_test_address,
)
from cadence.notifications.models import (
    ChannelPreference,
    Notification,
    NotificationStatus,
    NotificationTemplate,
    RenderedNotification,
)
from cadence.notifications.rendering import render_notification, render_string
from cadence.notifications.repository import NotificationRepository
from cadence.notifications.worker import (
    NOTIFICATIONS_QUEUE,
    SendNotificationArgs,
    SendNotificationWorker,
    queue_notification,
)

__all__ = [
    "NOTIFICATIONS_QUEUE",
    "TEST_EMAIL_DOMAINS",
    "ChannelPreference",
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "NotificationRepository",
    "NotificationStatus",
    "NotificationTemplate",
    "RenderedNotification",
    "SendNotificationArgs",
    "SendNotificationWorker",
    "is_test_address",
    "queue_notification",
    "render_notification",
    "render_string",
]
