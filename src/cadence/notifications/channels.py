"""Delivery channels.

Transport mechanics (SMTP sessions, SMS gateways) live outside cadence;
the worker only needs something that can send a rendered message to an
address and raises when it cannot. Raise ``TransientError`` or
``PermanentError`` to decide retry behavior explicitly; any other
exception is classified by its message.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from .models import RenderedNotification

logger = logging.getLogger(__name__)

# RFC 2606 documentation domains never receive real mail.
TEST_EMAIL_DOMAINS = ("@example.com", "@example.org", "@example.net")


def is_test_address(address: str) -> bool:
    """True for addresses at a reserved documentation domain."""
    normalized = address.strip().lower()
    return any(normalized.endswith(domain) for domain in TEST_EMAIL_DOMAINS)


@runtime_checkable
class NotificationChannel(Protocol):
    """Sends rendered notifications over one medium."""

    name: str

    def send(self, address: str, message: RenderedNotification) -> None:
        """Deliver ``message`` to ``address`` or raise."""
        ...


class LogChannel:
    """Channel that only logs deliveries and remembers them.

    Used by ``cadence run`` when no transport is configured, and in tests.
    """

    def __init__(self, name: str = "email") -> None:
        self.name = name
        self.sent: list[tuple[str, RenderedNotification]] = []
        self._lock = threading.Lock()

    def send(self, address: str, message: RenderedNotification) -> None:
        with self._lock:
            self.sent.append((address, message))
        logger.info("[%s] -> %s: %s", self.name, address, message.subject)


__all__ = ["TEST_EMAIL_DOMAINS", "NotificationChannel", "LogChannel", "is_test_address"]
