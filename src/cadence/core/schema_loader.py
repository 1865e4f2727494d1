"""SQL schema loading utilities.

Applies the packaged ``schema/*.sql`` files (``CREATE ... IF NOT EXISTS``
only, so re-running is harmless) in filename order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from .protocols import Connection

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script into individual statements.

    Statements end at a line terminated by ``;``; full-line ``--`` comments
    are dropped.
    """
    statements = []
    current: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if stripped.startswith("--") or not stripped:
            continue
        current.append(line)
        if stripped.endswith(";"):
            stmt = "\n".join(current).strip()
            if stmt and stmt != ";":
                statements.append(stmt)
            current = []
    if current:
        stmt = "\n".join(current).strip()
        if stmt:
            statements.append(stmt)
    return statements


def get_schema_files(schema_dir: Path | str | None = None) -> list[Path]:
    """Sorted ``.sql`` files in ``schema_dir`` (defaults to the packaged schema)."""
    directory = Path(schema_dir) if schema_dir else SCHEMA_DIR
    if not directory.exists():
        return []
    return sorted(directory.glob("*.sql"))


def apply_all_schemas(
    conn: Connection,
    schema_dir: Path | str | None = None,
    *,
    skip_files: Sequence[str] | None = None,
) -> list[str]:
    """Apply all SQL schema files to a database connection.

    Returns:
        Names of the applied files.
    """
    skip_set = set(skip_files or [])
    applied = []

    for sql_file in get_schema_files(schema_dir):
        if sql_file.name in skip_set:
            logger.debug("Skipping schema file %s", sql_file.name)
            continue
        for statement in _split_sql(sql_file.read_text(encoding="utf-8")):
            conn.execute(statement)
        applied.append(sql_file.name)
        logger.debug("Applied schema file %s", sql_file.name)

    conn.commit()
    logger.info("Applied %d schema file(s)", len(applied))
    return applied


__all__ = ["SCHEMA_DIR", "apply_all_schemas", "get_schema_files"]
