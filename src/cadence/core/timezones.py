"""IANA timezone resolution with a UTC fallback.

Schedules and series store a timezone name chosen by an operator. A bad
name is a configuration error for that one definition; it must never stop
the scheduler or an expansion, so resolution falls back to UTC and logs.
"""

from __future__ import annotations

import logging
from datetime import UTC, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None, *, owner: str = "") -> tzinfo:
    """Return the zone for ``name``; empty or unknown names resolve to UTC.

    Args:
        name: IANA zone name such as ``America/New_York``
        owner: Optional label (schedule or series) for the warning message
    """
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        suffix = f" for {owner}" if owner else ""
        logger.warning(f"Invalid timezone {name!r}{suffix}, falling back to UTC")
        return UTC


__all__ = ["resolve_timezone"]
