"""Cadence Core -- storage, errors, settings and logging shared by every layer.

Manifesto:
    The scheduler, the recurrence engine and every worker share one
    database pool, one error taxonomy and one settings object. Core holds
    those and nothing domain-specific, so each higher layer composes them
    the same way.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          CadenceError hierarchy, classify_error
        protocols.py       Connection protocol
        timestamps.py      ULID + UTC / ISO-8601 helpers
        timezones.py       IANA resolution with UTC fallback

    Layer 2 -- Storage
        dialect.py         SQLite / PostgreSQL fragments
        sqlite_conn.py     sqlite3 adapter
        database.py        Bounded connection pool, create_database()
        schema_loader.py   Applies schema/*.sql
        schema/            DDL for jobs, schedules, series, notifications

    Layer 3 -- Process
        settings.py        CadenceSettings (pydantic-settings, CADENCE_*)
        logging.py         structlog configuration, LogContext
"""

from cadence.core.database import Database, create_database
from cadence.core.dialect import Dialect, PostgreSQLDialect, SQLiteDialect, is_safe_identifier
from cadence.core.errors import (
    CadenceError,
    ConfigError,
    ErrorCategory,
    FailureClass,
    PermanentError,
    TransientError,
    ValidationError,
    classify_error,
    is_retryable,
)
from cadence.core.protocols import Connection
from cadence.core.schema_loader import apply_all_schemas
from cadence.core.settings import CadenceSettings, get_settings, reset_settings
from cadence.core.sqlite_conn import SqliteConnection
from cadence.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now
from cadence.core.timezones import resolve_timezone

__all__ = [
    "CadenceError",
    "CadenceSettings",
    "ConfigError",
    "Connection",
    "Database",
    "Dialect",
    "ErrorCategory",
    "FailureClass",
    "PermanentError",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "SqliteConnection",
    "TransientError",
    "ValidationError",
    "apply_all_schemas",
    "classify_error",
    "create_database",
    "from_iso8601",
    "generate_ulid",
    "get_settings",
    "is_retryable",
    "is_safe_identifier",
    "reset_settings",
    "resolve_timezone",
    "to_iso8601",
    "utc_now",
]
