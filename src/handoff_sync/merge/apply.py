"""
apply.py - Applying table-level merge resolutions.

"keep theirs" replaces the table in our copy wholesale with the other
copy's rows. All replacements happen in one transaction with the
tracking triggers suppressed, so the delete is a real delete rather
than a tombstone and the copied envelope columns are kept verbatim.
"""

import logging
import sqlite3
from typing import Any, Iterable, Mapping

from handoff_sync.db.connection import (
    execute_in_transaction,
    get_columns,
    register_functions,
    tracking_disabled,
)
from handoff_sync.db.triggers import validate_table_name
from handoff_sync.errors import DatabaseError, MergeError
from handoff_sync.merge.analyze import Resolution, TableDiff

logger = logging.getLogger(__name__)


def apply(
    mine: sqlite3.Connection,
    theirs: sqlite3.Connection,
    diffs: Iterable[TableDiff],
    resolutions: Mapping[str, Resolution | str] | None = None,
) -> list[str]:
    """
    Apply resolutions to our copy.

    Args:
        mine: Our database, modified in place
        theirs: The other copy, read only
        diffs: Result of analyze()
        resolutions: Per-table override of each diff's resolution

    Returns:
        Names of the tables that were replaced

    Raises:
        MergeError: If a table cannot be replaced; nothing is changed
    """
    resolutions = resolutions or {}
    replace = []
    for diff in diffs:
        choice = Resolution(resolutions.get(diff.table, diff.resolution))
        if choice is Resolution.KEEP_THEIRS:
            replace.append(diff.table)

    if not replace:
        return []

    payload = [(table, *_read_theirs(mine, theirs, table)) for table in replace]

    register_functions(mine)

    def _replace(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA defer_foreign_keys = ON")
        with tracking_disabled(conn):
            for table, columns, rows in payload:
                conn.execute(f"DELETE FROM {table}")
                if rows:
                    placeholders = ", ".join("?" for _ in columns)
                    conn.executemany(
                        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                        rows,
                    )
                logger.info(f"Replaced {table} with {len(rows)} row(s) from their copy")

    try:
        execute_in_transaction(mine, _replace)
    except DatabaseError as e:
        raise MergeError(f"Failed to apply merge: {e.message}", table_name=", ".join(replace)) from e
    return replace


def _read_theirs(
    mine: sqlite3.Connection, theirs: sqlite3.Connection, table: str
) -> tuple[list[str], list[tuple[Any, ...]]]:
    validate_table_name(table)
    their_columns = set(get_columns(theirs, table))
    columns = [col for col in get_columns(mine, table) if col in their_columns]
    if not columns:
        raise MergeError("No columns in common between the two copies", table_name=table)
    try:
        rows = theirs.execute(f"SELECT {', '.join(columns)} FROM {table}").fetchall()
    except sqlite3.Error as e:
        raise MergeError(f"Cannot read their rows: {e}", table_name=table) from e
    return columns, [tuple(row) for row in rows]
