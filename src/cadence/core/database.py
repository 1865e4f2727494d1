"""
Bounded connection pool shared by every cadence component.

The scheduler, the recurrence engine and all workers borrow connections
from one ``Database``. The pool is the only shared mutable resource in the
process: nothing else coordinates through in-process locks, and duplicate
work is prevented by unique constraints in storage.

Architecture:
    ::

        create_database("cadence.db", pool_size=10)
              │
              ▼
        ┌──────────────────────────────────────────────┐
        │ Database                                      │
        │   factory()  → Connection (lazily, ≤ size)    │
        │   idle: [conn, conn, ...]                     │
        │   BoundedSemaphore(size)                      │
        │                                               │
        │   with db.connection() as conn:               │
        │       ...            # commit on success      │
        │                      # rollback on error      │
        └──────────────────────────────────────────────┘

    An in-memory SQLite database only exists inside one connection, so it
    is always served by a pool of size one.

Guardrails:
    ❌ DON'T: borrow a second connection while holding one (a pool of one
       deadlocks); pass the held connection down instead
    ✅ DO: keep network I/O outside ``connection()`` blocks

Tags:
    database, pool, sqlite, concurrency, cadence

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .dialect import Dialect, SQLiteDialect
from .errors import ConfigError, DatabaseConnectionError
from .protocols import Connection
from .sqlite_conn import SqliteConnection

logger = logging.getLogger(__name__)


class Database:
    """A bounded pool of connections produced by ``factory``."""

    def __init__(
        self,
        factory: Callable[[], Connection],
        *,
        max_size: int = 10,
        dialect: Dialect | None = None,
        acquire_timeout: float = 30.0,
        url: str = "",
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._factory = factory
        self.max_size = max_size
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.url = url
        self._acquire_timeout = acquire_timeout
        self._slots = threading.BoundedSemaphore(max_size)
        self._idle: list[Connection] = []
        self._all: list[Connection] = []
        self._lock = threading.Lock()
        self._closed = False

    def acquire(self) -> Connection:
        """Borrow a connection; blocks while the pool is exhausted."""
        if self._closed:
            raise DatabaseConnectionError("database pool is closed")
        if not self._slots.acquire(timeout=self._acquire_timeout):
            raise DatabaseConnectionError(
                f"timed out after {self._acquire_timeout}s waiting for a database connection"
            )
        with self._lock:
            if self._idle:
                return self._idle.pop()
        try:
            conn = self._factory()
        except Exception:
            self._slots.release()
            raise
        with self._lock:
            self._all.append(conn)
        return conn

    def release(self, conn: Connection) -> None:
        """Return a borrowed connection to the pool."""
        with self._lock:
            self._idle.append(conn)
        self._slots.release()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Borrow a connection for the duration of the block.

        The transaction is committed when the block exits normally and rolled
        back when it raises.
        """
        conn = self.acquire()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close every connection the pool has created."""
        with self._lock:
            self._closed = True
            conns, self._all, self._idle = self._all, [], []
        for conn in conns:
            close = getattr(conn, "close", None)
            if close is not None:
                close()

    def __repr__(self) -> str:
        return f"Database(url={self.url!r}, max_size={self.max_size})"


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into ``(scheme, target)``."""
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if db.startswith(("postgresql://", "postgres://", "postgresql+", "postgres+")):
        return "postgresql", db

    return "sqlite", db


def create_database(
    url: str | None = None,
    *,
    pool_size: int = 10,
    init_schema: bool = False,
) -> Database:
    """Build a pooled ``Database`` from a URL, path, or ``memory``.

    PostgreSQL deployments construct ``Database`` directly with their own
    connection factory and :class:`~cadence.core.dialect.PostgreSQLDialect`.
    """
    scheme, target = _parse_url(url)

    if scheme == "memory":
        shared = SqliteConnection(":memory:")
        database = Database(lambda: shared, max_size=1, url=":memory:")
    elif scheme == "sqlite":
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        resolved = str(path.resolve())
        database = Database(lambda: SqliteConnection(resolved), max_size=pool_size, url=resolved)
    else:
        raise ConfigError(
            "PostgreSQL URLs need an explicit connection factory; "
            "construct Database(factory, dialect=PostgreSQLDialect())"
        )

    logger.debug("Created database pool %r", database)

    if init_schema:
        from .schema_loader import apply_all_schemas

        with database.connection() as conn:
            apply_all_schemas(conn)

    return database


__all__ = ["Database", "create_database"]
