"""Notification repository - templates, preferences and delivery records."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from cadence.core.dialect import Dialect, SQLiteDialect
from cadence.core.protocols import Connection
from cadence.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

from .models import ChannelPreference, Notification, NotificationStatus, NotificationTemplate

logger = logging.getLogger(__name__)

_NOTIFICATION_COLUMNS = (
    "id",
    "user_id",
    "template_name",
    "entity_type",
    "entity_id",
    "entity_data",
    "channels",
    "status",
    "channels_sent",
    "channels_failed",
    "error_message",
    "sent_at",
    "created_at",
    "updated_at",
)


class NotificationRepository:
    """Repository for notifications and their templates and preferences."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def _ph(self, count: int = 1) -> str:
        return self.dialect.placeholders(count)

    # === Templates ===

    def get_template(self, name: str) -> NotificationTemplate | None:
        cursor = self.conn.execute(
            f"SELECT name, subject, body FROM cadence_notification_templates WHERE name = {self._ph()}",
            (name,),
        )
        row = cursor.fetchone()
        return NotificationTemplate(*tuple(row)) if row else None

    def template_exists(self, name: str) -> bool:
        return self.get_template(name) is not None

    def save_template(self, name: str, subject: str, body: str) -> NotificationTemplate:
        """Create or replace a template."""
        now_iso = to_iso8601(utc_now())
        self.conn.execute(
            f"DELETE FROM cadence_notification_templates WHERE name = {self._ph()}",
            (name,),
        )
        self.conn.execute(
            "INSERT INTO cadence_notification_templates (name, subject, body, created_at, updated_at) "
            f"VALUES ({self._ph(5)})",
            (name, subject, body, now_iso, now_iso),
        )
        self.conn.commit()
        return NotificationTemplate(name=name, subject=subject, body=body)

    # === Preferences ===

    def set_preference(
        self,
        user_id: str,
        channel: str,
        address: str | None,
        *,
        enabled: bool = True,
    ) -> ChannelPreference:
        self.conn.execute(
            f"DELETE FROM cadence_notification_preferences WHERE user_id = {self._ph()} AND channel = {self._ph()}",
            (user_id, channel),
        )
        self.conn.execute(
            "INSERT INTO cadence_notification_preferences (user_id, channel, address, enabled) "
            f"VALUES ({self._ph(4)})",
            (user_id, channel, address, 1 if enabled else 0),
        )
        self.conn.commit()
        return ChannelPreference(user_id=user_id, channel=channel, address=address, enabled=enabled)

    def get_preferences(self, user_id: str) -> dict[str, ChannelPreference]:
        """Preferences of a user keyed by channel name."""
        cursor = self.conn.execute(
            "SELECT user_id, channel, address, enabled FROM cadence_notification_preferences "
            f"WHERE user_id = {self._ph()}",
            (user_id,),
        )
        return {
            row[1]: ChannelPreference(user_id=row[0], channel=row[1], address=row[2], enabled=bool(row[3]))
            for row in cursor.fetchall()
        }

    # === Notifications ===

    def create(
        self,
        *,
        user_id: str,
        template_name: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        entity_data: dict[str, Any] | None = None,
        channels: Sequence[str] = ("email",),
        now: datetime | None = None,
    ) -> Notification:
        notification_id = generate_ulid()
        now_iso = to_iso8601(now or utc_now())
        self.conn.execute(
            f"INSERT INTO cadence_notifications ({', '.join(_NOTIFICATION_COLUMNS)}) "
            f"VALUES ({self._ph(len(_NOTIFICATION_COLUMNS))})",
            (
                notification_id,
                user_id,
                template_name,
                entity_type,
                entity_id,
                json.dumps(entity_data or {}, default=str),
                json.dumps(list(channels)),
                NotificationStatus.PENDING.value,
                None,
                None,
                None,
                None,
                now_iso,
                now_iso,
            ),
        )
        self.conn.commit()
        return self.get(notification_id)  # type: ignore[return-value]

    def get(self, notification_id: str) -> Notification | None:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_NOTIFICATION_COLUMNS)} FROM cadence_notifications WHERE id = {self._ph()}",
            (notification_id,),
        )
        row = cursor.fetchone()
        return self._row_to_notification(row) if row else None

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        cursor = self.conn.execute(
            f"SELECT {', '.join(_NOTIFICATION_COLUMNS)} FROM cadence_notifications "
            f"WHERE user_id = {self._ph()} ORDER BY created_at DESC, id DESC LIMIT {self._ph()}",
            (user_id, limit),
        )
        return [self._row_to_notification(row) for row in cursor.fetchall()]

    def mark_sent(
        self,
        notification_id: str,
        channels_sent: Sequence[str],
        channels_failed: Sequence[str] = (),
        *,
        now: datetime | None = None,
    ) -> None:
        now_iso = to_iso8601(now or utc_now())
        self.conn.execute(
            f"UPDATE cadence_notifications SET status = {self._ph()}, channels_sent = {self._ph()}, "
            f"channels_failed = {self._ph()}, error_message = NULL, sent_at = {self._ph()}, "
            f"updated_at = {self._ph()} WHERE id = {self._ph()}",
            (
                NotificationStatus.SENT.value,
                json.dumps(list(channels_sent)),
                json.dumps(list(channels_failed)),
                now_iso,
                now_iso,
                notification_id,
            ),
        )
        self.conn.commit()

    def mark_failed(self, notification_id: str, error_message: str, *, now: datetime | None = None) -> None:
        self._set_status(notification_id, NotificationStatus.FAILED, error_message, now)

    def mark_skipped(self, notification_id: str, reason: str, *, now: datetime | None = None) -> None:
        self._set_status(notification_id, NotificationStatus.SKIPPED, reason, now)

    def _set_status(
        self,
        notification_id: str,
        status: NotificationStatus,
        message: str | None,
        now: datetime | None,
    ) -> None:
        self.conn.execute(
            f"UPDATE cadence_notifications SET status = {self._ph()}, error_message = {self._ph()}, "
            f"updated_at = {self._ph()} WHERE id = {self._ph()}",
            (status.value, message, to_iso8601(now or utc_now()), notification_id),
        )
        self.conn.commit()

    @staticmethod
    def _row_to_notification(row: Any) -> Notification:
        data = dict(zip(_NOTIFICATION_COLUMNS, tuple(row), strict=False))
        return Notification(
            id=data["id"],
            user_id=data["user_id"],
            template_name=data["template_name"],
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            entity_data=json.loads(data["entity_data"]) if data["entity_data"] else {},
            channels=json.loads(data["channels"]) if data["channels"] else [],
            status=NotificationStatus(data["status"]),
            channels_sent=json.loads(data["channels_sent"]) if data["channels_sent"] else None,
            channels_failed=json.loads(data["channels_failed"]) if data["channels_failed"] else None,
            error_message=data["error_message"],
            sent_at=from_iso8601(data["sent_at"]),
            created_at=from_iso8601(data["created_at"]),  # type: ignore[arg-type]
            updated_at=from_iso8601(data["updated_at"]),  # type: ignore[arg-type]
        )


__all__ = ["NotificationRepository"]
