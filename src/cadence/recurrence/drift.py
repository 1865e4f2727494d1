"""Schema-drift check for series entity templates.

A series copies its ``entity_template`` into a live table on every
expansion. Tables change after a series is created; inserting a stale
template would either fail every occurrence or write wrong data. The
check below compares the template against the table's current columns
and reports every problem it finds instead of stopping at the first.

Issues reported (``DriftIssue.field`` / ``DriftIssue.issue``):

- the table or a template key is not a safe SQL identifier
- the table does not exist
- the time-range column does not exist
- a template key is not a column
- a NOT NULL column without a default is missing from the template
  (``id``, audit columns and the time-range column are exempt)
- a numeric column is given a non-numeric value
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cadence.core.dialect import Dialect, is_safe_identifier
from cadence.core.protocols import Connection

from .models import DriftIssue

logger = logging.getLogger(__name__)

EXEMPT_COLUMNS = frozenset({"id", "created_at", "created_by", "updated_at", "updated_by"})

_NUMERIC_MARKERS = ("INT", "REAL", "FLOA", "DOUB", "NUMERIC", "DECIMAL")


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    not_null: bool
    has_default: bool
    primary_key: bool

    @property
    def is_numeric(self) -> bool:
        upper = self.type.upper()
        return any(marker in upper for marker in _NUMERIC_MARKERS)


def load_columns(conn: Connection, dialect: Dialect, table: str) -> dict[str, ColumnInfo]:
    """Current columns of ``table``; empty if it does not exist."""
    sql, params = dialect.column_info_query(table)
    conn.execute(sql, params)
    columns: dict[str, ColumnInfo] = {}
    for row in conn.fetchall():
        _, name, col_type, not_null, default, pk = tuple(row)[:6]
        columns[name] = ColumnInfo(
            name=name,
            type=col_type or "",
            not_null=bool(not_null),
            has_default=default is not None,
            primary_key=bool(pk),
        )
    return columns


def _is_numeric_value(value: Any) -> bool:
    if value is None or isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


def check_schema_drift(
    conn: Connection,
    dialect: Dialect,
    table: str,
    template: Mapping[str, Any],
    time_range_column: str,
) -> list[DriftIssue]:
    """Compare ``template`` with the live columns of ``table``."""
    issues: list[DriftIssue] = []

    if not is_safe_identifier(table):
        return [DriftIssue(table, "unsafe table name")]
    unsafe = [key for key in (*template, time_range_column) if not is_safe_identifier(key)]
    issues.extend(DriftIssue(key, "unsafe column name") for key in unsafe)

    columns = load_columns(conn, dialect, table)
    if not columns:
        issues.append(DriftIssue(table, "table does not exist"))
        return issues

    if time_range_column not in columns and time_range_column not in unsafe:
        issues.append(DriftIssue(time_range_column, "time range column does not exist"))

    for key, value in template.items():
        if key in unsafe:
            continue
        column = columns.get(key)
        if column is None:
            issues.append(DriftIssue(key, "column does not exist"))
        elif column.is_numeric and not _is_numeric_value(value):
            issues.append(DriftIssue(key, f"value {value!r} is incompatible with column type {column.type}"))

    exempt = EXEMPT_COLUMNS | {time_range_column}
    for column in columns.values():
        if column.name in exempt or column.name in template or column.primary_key:
            continue
        if column.not_null and not column.has_default:
            issues.append(DriftIssue(column.name, "required column missing from template"))

    if issues:
        logger.debug(f"Template for {table} has {len(issues)} drift issue(s)")
    return issues


__all__ = ["ColumnInfo", "EXEMPT_COLUMNS", "check_schema_drift", "load_columns"]
