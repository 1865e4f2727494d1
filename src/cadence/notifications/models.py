"""Notification domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Notification:
    """One notification request and its delivery outcome."""

    id: str
    user_id: str
    template_name: str
    status: NotificationStatus
    created_at: datetime
    updated_at: datetime
    entity_type: str | None = None
    entity_id: str | None = None
    entity_data: dict[str, Any] = field(default_factory=dict)
    channels: list[str] = field(default_factory=lambda: ["email"])
    channels_sent: list[str] | None = None
    channels_failed: list[str] | None = None
    error_message: str | None = None
    sent_at: datetime | None = None


@dataclass(frozen=True)
class NotificationTemplate:
    """Jinja2 source for a subject line and a body."""

    name: str
    subject: str
    body: str


@dataclass(frozen=True)
class ChannelPreference:
    """Whether and where a user receives one channel."""

    user_id: str
    channel: str
    address: str | None
    enabled: bool = True

    @property
    def deliverable(self) -> bool:
        return self.enabled and bool(self.address)


@dataclass(frozen=True)
class RenderedNotification:
    subject: str
    body: str


__all__ = [
    "NotificationStatus",
    "Notification",
    "NotificationTemplate",
    "ChannelPreference",
    "RenderedNotification",
]
