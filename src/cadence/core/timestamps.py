"""
ULID generation and UTC timestamp helpers.

Timestamps are persisted as fixed-width ISO 8601 strings in UTC with
microsecond precision, so that lexical comparison in SQL (``scheduled_at <=
?``, watermark checks) matches chronological order.

Tags:
    timestamps, ulid, utc, datetime, cadence, stdlib-only

Doc-Types:
    - API Reference
"""

import random
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, Crockford base32, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to the stored ISO 8601 form (UTC, microseconds)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse a stored ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


def to_rfc3339(dt: datetime) -> str:
    """Second-precision RFC 3339 form used in dedup keys and range literals."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(chars))


__all__ = [
    "utc_now",
    "ensure_utc",
    "generate_ulid",
    "to_iso8601",
    "from_iso8601",
    "to_rfc3339",
]
