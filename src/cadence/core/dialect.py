"""
SQL dialect fragments for portable queries.

Repositories never hard-code placeholder styles or upsert syntax; they ask
the dialect for the fragment and interpolate it into otherwise plain SQL.

Architecture:
    ::

        Dialect (Protocol)
        ├── SQLiteDialect      "?"   INSERT OR IGNORE        PRAGMA table_info
        └── PostgreSQLDialect  "%s"  ON CONFLICT DO NOTHING  information_schema

        repo.conn.execute(
            f"SELECT * FROM t WHERE id = {dialect.placeholder(0)}", (id,)
        )

Guardrails:
    ❌ DON'T: interpolate user values into SQL; only identifiers that have
       passed ``is_safe_identifier`` may be formatted in
    ✅ DO: pass values as parameters

Tags:
    sql, dialect, portability, sqlite, postgresql, cadence

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from typing import Protocol

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def is_safe_identifier(name: str) -> bool:
    """True if ``name`` can be formatted into SQL as a bare identifier."""
    return bool(name) and bool(_IDENTIFIER.match(name))


class Dialect(Protocol):
    """SQL fragments that differ between backends."""

    @property
    def name(self) -> str: ...

    def placeholder(self, index: int) -> str:
        """Placeholder for the parameter at ``index`` (0-based)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholders for ``count`` parameters."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips rows violating a unique constraint."""
        ...

    def column_info_query(self, table: str) -> tuple[str, tuple]:
        """Query returning one row per column of ``table``.

        Rows are normalized by the caller into name, declared type,
        not-null flag, default and primary-key flag.
        """
        ...


class SQLiteDialect:
    """SQLite dialect (``?`` placeholders)."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))})"

    def column_info_query(self, table: str) -> tuple[str, tuple]:
        if not is_safe_identifier(table):
            raise ValueError(f"unsafe table name: {table!r}")
        # cid, name, type, notnull, dflt_value, pk
        return f"PRAGMA table_info({table})", ()


class PostgreSQLDialect:
    """PostgreSQL dialect (``%s`` placeholders)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))}) "
            "ON CONFLICT DO NOTHING"
        )

    def column_info_query(self, table: str) -> tuple[str, tuple]:
        return (
            "SELECT c.ordinal_position, c.column_name, c.data_type, "
            "       CASE WHEN c.is_nullable = 'NO' THEN 1 ELSE 0 END, "
            "       c.column_default, "
            "       CASE WHEN k.column_name IS NULL THEN 0 ELSE 1 END "
            "FROM information_schema.columns c "
            "LEFT JOIN information_schema.key_column_usage k "
            "  ON k.table_name = c.table_name AND k.column_name = c.column_name "
            " AND k.constraint_name = c.table_name || '_pkey' "
            "WHERE c.table_schema = current_schema() AND c.table_name = %s "
            "ORDER BY c.ordinal_position",
            (table,),
        )


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect", "is_safe_identifier"]
