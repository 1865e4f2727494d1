"""Insert and delete rows in a series' entity table.

Entity tables are chosen by operators, so their names are formatted into
SQL only after ``is_safe_identifier``; values are always parameters.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from cadence.core.dialect import Dialect, is_safe_identifier
from cadence.core.protocols import Connection
from cadence.core.timestamps import generate_ulid

from .drift import ColumnInfo


def _require_safe(*names: str) -> None:
    for name in names:
        if not is_safe_identifier(name):
            raise ValueError(f"unsafe SQL identifier: {name!r}")


def insert_entity(
    conn: Connection,
    dialect: Dialect,
    table: str,
    record: Mapping[str, Any],
    columns: Mapping[str, ColumnInfo],
    *,
    created_by: str | None = None,
) -> str:
    """Insert ``record`` into ``table`` and return the new row's id as text.

    Integer ``id`` columns are assigned by the database; any other ``id``
    column gets a ULID. ``created_by`` is filled in when the table has
    that column and the record does not set it.
    """
    row = dict(record)
    if created_by is not None and "created_by" in columns and "created_by" not in row:
        row["created_by"] = created_by

    id_column = columns.get("id")
    generated_id: str | None = None
    if id_column is not None and "INT" not in id_column.type.upper() and "id" not in row:
        generated_id = generate_ulid()
        row["id"] = generated_id

    row = {key: json.dumps(value) if isinstance(value, (dict, list)) else value for key, value in row.items()}
    names = list(row)
    _require_safe(table, *names)
    sql = f"INSERT INTO {table} ({', '.join(names)}) VALUES ({dialect.placeholders(len(names))})"

    if generated_id is not None:
        conn.execute(sql, tuple(row.values()))
        return generated_id
    if "id" in row:
        conn.execute(sql, tuple(row.values()))
        return str(row["id"])
    if dialect.name == "postgresql":
        conn.execute(f"{sql} RETURNING id", tuple(row.values()))
        return str(conn.fetchone()[0])
    cursor = conn.execute(sql, tuple(row.values()))
    return str(cursor.lastrowid)


def delete_entity(conn: Connection, dialect: Dialect, table: str, entity_id: str) -> bool:
    """Delete one entity row by id. Returns False if nothing was deleted."""
    _require_safe(table)
    cursor = conn.execute(f"DELETE FROM {table} WHERE id = {dialect.placeholder(0)}", (entity_id,))
    return bool(getattr(cursor, "rowcount", 0))


__all__ = ["insert_entity", "delete_entity"]
