"""
connection.py - SQLite database connection management.

Handles connection creation, PRAGMA configuration, and
registration of the application-defined SQL functions that the
sync-tracking triggers call.

Tracked databases must be opened through create_connection(): the
triggers reference sync_is_disabled(), which only exists on
connections where it has been registered.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from handoff_sync.config import SQLITE_PRAGMAS
from handoff_sync.errors import DatabaseError

logger = logging.getLogger(__name__)

# Per-connection trigger suppression, keyed by id(conn)
_tracking_disabled: dict[int, int] = {}


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Create a new SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured sqlite3.Connection in autocommit mode

    Raises:
        DatabaseError: If connection fails
    """
    try:
        conn = sqlite3.connect(
            db_path,
            isolation_level=None,  # Manual transaction control
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        raise DatabaseError(
            f"Failed to connect to database: {e}",
            operation="connect",
        ) from e

    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    register_functions(conn)
    return conn


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    for pragma, value in SQLITE_PRAGMAS.items():
        try:
            conn.execute(f"PRAGMA {pragma} = {value}")
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to set PRAGMA {pragma}: {e}",
                operation="pragma",
                sql=f"PRAGMA {pragma} = {value}",
            ) from e


def register_functions(conn: sqlite3.Connection) -> None:
    """
    Register application-defined SQL functions.

    sync_is_disabled() -> INTEGER
        1 while set_tracking_disabled(conn, True) is in effect. Every
        tracking trigger checks it in its WHEN clause.
    """
    key = id(conn)

    def _sync_is_disabled() -> int:
        return _tracking_disabled.get(key, 0)

    conn.create_function("sync_is_disabled", 0, _sync_is_disabled)


def set_tracking_disabled(conn: sqlite3.Connection, disabled: bool) -> None:
    """Suppress or re-enable the tracking triggers on one connection."""
    if disabled:
        _tracking_disabled[id(conn)] = 1
    else:
        _tracking_disabled.pop(id(conn), None)


@contextmanager
def tracking_disabled(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block with the tracking triggers suppressed on conn."""
    set_tracking_disabled(conn, True)
    try:
        yield conn
    finally:
        set_tracking_disabled(conn, False)


def execute_in_transaction(
    conn: sqlite3.Connection,
    operation: Callable[[sqlite3.Connection], Any],
) -> Any:
    """
    Execute an operation within an IMMEDIATE transaction.

    Ensures atomicity: all changes commit or all rollback.

    Raises:
        DatabaseError: If the transaction fails at the SQLite level
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            result = operation(conn)
            conn.execute("COMMIT")
            return result
        except Exception:
            conn.execute("ROLLBACK")
            raise
    except sqlite3.Error as e:
        raise DatabaseError(
            f"Transaction failed: {e}",
            operation="transaction",
        ) from e


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table_name,),
    ).fetchone()
    return row is not None


def get_columns(conn: sqlite3.Connection, table_name: str) -> list[str]:
    """Column names of a table in declaration order (empty if missing)."""
    try:
        rows = conn.execute(f'PRAGMA table_info("{table_name}")').fetchall()
    except sqlite3.Error:
        return []
    return [row[1] for row in rows]
