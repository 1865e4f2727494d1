"""
Structural protocols shared across cadence.

Repositories, the job store and the recurrence engine only ever talk to
storage through the ``Connection`` shape below, so the same code runs on the
bundled SQLite adapter or any DB-API driver wrapped to match it.

Architecture:
    ::

        protocols.py
        ├── Connection   — sync DB protocol (execute, fetchone, fetchall, commit)
        └── Clock        — ``() -> datetime`` used by anything time-dependent

Guardrails:
    ❌ DON'T: redeclare Connection in feature modules
    ✅ DO: import it from cadence.core.protocols

Tags:
    protocol, connection, database, cadence, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous database connection.

    ``execute`` returns a cursor-like object; callers read ``rowcount`` and
    ``lastrowid`` from it where they need them.
    """

    def execute(self, sql: str, params: tuple | list = ()) -> Any:
        """Execute SQL with parameters."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from the last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from the last query."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


Clock = Callable[[], datetime]


__all__ = ["Connection", "Clock"]
