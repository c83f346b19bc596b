"""
triggers.py - Installing and verifying the sync-tracking envelope.

install_sync_tracking() is idempotent: it adds missing columns,
backfills identities, and (re)creates triggers, indexes and the active
view in a single transaction.
"""

import logging
import re
import sqlite3

from handoff_sync.config import (
    ACTIVE_VIEW_SUFFIX,
    DEFAULT_MODIFIED_BY,
    DELETED_AT_COLUMN,
    MODIFIED_AT_COLUMN,
    RESERVED_TABLE_NAMES,
    SYNC_ID_COLUMN,
    TRACKING_COLUMNS,
)
from handoff_sync.db.connection import (
    execute_in_transaction,
    get_columns,
    register_functions,
    table_exists,
    tracking_disabled,
)
from handoff_sync.db.schema import (
    ACTIVE_UNIQUE_INDEX_TEMPLATE,
    ACTIVE_VIEW_TEMPLATE,
    DELETED_AT_INDEX_TEMPLATE,
    INSERT_TRIGGER_TEMPLATE,
    META_SCHEMA,
    SOFT_DELETE_TRIGGER_TEMPLATE,
    SQL_CURRENT_USER,
    SQL_NOW,
    SQL_UUID_V4,
    UPDATE_TRIGGER_TEMPLATE,
    SyncTableSpec,
    trigger_names,
)
from handoff_sync.errors import DatabaseError, SchemaError, ValidationError
from handoff_sync.identity import generate_sync_id

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def install_sync_tracking(conn: sqlite3.Connection, spec: SyncTableSpec) -> None:
    """
    Put a table under sync tracking.

    Args:
        conn: Connection from create_connection()
        spec: Table name and natural key

    Raises:
        ValidationError: If the table or a key column name is unsafe
        SchemaError: If the table does not exist or lacks a key column
        DatabaseError: If DDL fails (e.g. duplicate active natural keys)
    """
    table_name = spec.name
    validate_table_name(table_name)
    for column in spec.natural_key:
        validate_identifier(column, "natural_key")

    if not table_exists(conn, table_name):
        raise SchemaError(f"Table '{table_name}' does not exist", expected=table_name)

    existing = get_columns(conn, table_name)
    missing_keys = [c for c in spec.natural_key if c not in existing]
    if missing_keys:
        raise SchemaError(
            f"Natural key columns missing from '{table_name}'",
            expected=list(spec.natural_key),
            actual=existing,
        )

    # Triggers call sync_is_disabled(); make sure this connection has it
    register_functions(conn)

    def _install(c: sqlite3.Connection) -> None:
        # Triggers read user_email from meta
        c.execute(META_SCHEMA)
        for column in TRACKING_COLUMNS:
            if column not in existing:
                c.execute(f"ALTER TABLE {table_name} ADD COLUMN {column} TEXT")
                logger.info(f"Added {column} to {table_name}")

        with tracking_disabled(c):
            _backfill(c, table_name)

        for name in trigger_names(table_name):
            c.execute(f"DROP TRIGGER IF EXISTS {name}")
        fmt = {
            "table_name": table_name,
            "uuid": SQL_UUID_V4,
            "now": SQL_NOW,
            "current_user": SQL_CURRENT_USER,
            "default_user": DEFAULT_MODIFIED_BY,
        }
        c.execute(INSERT_TRIGGER_TEMPLATE.format(**fmt))
        c.execute(UPDATE_TRIGGER_TEMPLATE.format(**fmt))
        c.execute(SOFT_DELETE_TRIGGER_TEMPLATE.format(**fmt))

        c.execute(DELETED_AT_INDEX_TEMPLATE.format(table_name=table_name))
        c.execute(f"DROP INDEX IF EXISTS {table_name}_active_unique")
        if spec.natural_key:
            c.execute(
                ACTIVE_UNIQUE_INDEX_TEMPLATE.format(
                    table_name=table_name, key_columns=", ".join(spec.natural_key)
                )
            )

        view_name = f"{table_name}{ACTIVE_VIEW_SUFFIX}"
        view_columns = [col for col in get_columns(c, table_name) if col != DELETED_AT_COLUMN]
        c.execute(f"DROP VIEW IF EXISTS {view_name}")
        c.execute(
            ACTIVE_VIEW_TEMPLATE.format(
                view_name=view_name, table_name=table_name, columns=", ".join(view_columns)
            )
        )

    try:
        execute_in_transaction(conn, _install)
    except DatabaseError as e:
        raise DatabaseError(
            f"Failed to install sync tracking on '{table_name}': {e.message}",
            operation="install_sync_tracking",
        ) from e
    logger.info(f"Sync tracking installed on {table_name}")


def _backfill(conn: sqlite3.Connection, table_name: str) -> None:
    rowids = conn.execute(
        f"SELECT rowid FROM {table_name} WHERE {SYNC_ID_COLUMN} IS NULL"
    ).fetchall()
    for (rowid,) in rowids:
        conn.execute(
            f"UPDATE {table_name} SET {SYNC_ID_COLUMN} = ? WHERE rowid = ?",
            (generate_sync_id(), rowid),
        )
    conn.execute(
        f"UPDATE {table_name} SET {MODIFIED_AT_COLUMN} = {SQL_NOW} "
        f"WHERE {MODIFIED_AT_COLUMN} IS NULL"
    )
    if rowids:
        logger.info(f"Backfilled sync_id for {len(rowids)} row(s) in {table_name}")


def verify_sync_tracking(conn: sqlite3.Connection, table_name: str) -> None:
    """
    Check that a table carries the full sync-tracking envelope.

    Raises:
        SchemaError: Naming the first missing piece
    """
    validate_table_name(table_name)
    columns = get_columns(conn, table_name)
    if not columns:
        raise SchemaError(f"Table '{table_name}' does not exist", expected=table_name)

    missing = [col for col in TRACKING_COLUMNS if col not in columns]
    if missing:
        raise SchemaError(
            f"Table '{table_name}' is missing tracking columns",
            expected=list(TRACKING_COLUMNS),
            actual=columns,
        )

    present = _schema_objects(conn, "trigger")
    expected_triggers = set(trigger_names(table_name))
    if not expected_triggers.issubset(present):
        raise SchemaError(
            f"Table '{table_name}' is missing tracking triggers",
            expected=sorted(expected_triggers),
            actual=sorted(present & expected_triggers),
        )

    view_name = f"{table_name}{ACTIVE_VIEW_SUFFIX}"
    if view_name not in _schema_objects(conn, "view"):
        raise SchemaError(f"Active view '{view_name}' is missing", expected=view_name)

    index_name = f"{table_name}_deleted_at_idx"
    if index_name not in _schema_objects(conn, "index"):
        raise SchemaError(f"Index '{index_name}' is missing", expected=index_name)


def has_sync_tracking(conn: sqlite3.Connection, table_name: str) -> bool:
    try:
        verify_sync_tracking(conn, table_name)
    except SchemaError:
        return False
    return True


def _schema_objects(conn: sqlite3.Connection, kind: str) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = ?", (kind,)).fetchall()
    return {row[0] for row in rows}


def validate_table_name(table_name: str) -> None:
    """
    Validate table name is safe and not reserved.

    Raises:
        ValidationError: If table name is invalid
    """
    if not table_name:
        raise ValidationError("Table name cannot be empty", field="table_name")

    if table_name in RESERVED_TABLE_NAMES or table_name.startswith("sqlite_"):
        raise ValidationError(
            f"Cannot track reserved table '{table_name}'",
            field="table_name",
            value=table_name,
        )

    validate_identifier(table_name, "table_name")


def validate_identifier(name: str, field: str) -> None:
    # Names are interpolated into DDL, so only plain identifiers are allowed
    if not _IDENTIFIER_RE.match(name):
        raise ValidationError(
            f"Invalid identifier: '{name}'",
            field=field,
            value=name,
        )
