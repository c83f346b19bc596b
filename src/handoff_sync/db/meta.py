"""
meta.py - Database lineage and checkpoint metadata.

The meta table is a plain key/value store shared with the host
application. This module owns three keys:

- sync_uuid: identity of the database lineage, set once
- last_checkpoint: when a solo user last took a checkpoint
- user_email: who is editing, stamped into modified_by by the triggers
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone

from handoff_sync.config import (
    CHECKPOINT_AFTER_DAYS,
    META_KEY_LAST_CHECKPOINT,
    META_KEY_SYNC_UUID,
    META_KEY_USER_EMAIL,
    META_TABLE,
)
from handoff_sync.db.schema import META_SCHEMA
from handoff_sync.errors import DatabaseError, ValidationError
from handoff_sync.lock.naming import format_iso, parse_iso

logger = logging.getLogger(__name__)


def initialize_meta(
    conn: sqlite3.Connection,
    user_email: str | None = None,
    now: datetime | None = None,
) -> str:
    """
    Create the meta table and seed lineage keys if absent.

    Idempotent: an existing sync_uuid and last_checkpoint are kept.

    Returns:
        The database's sync_uuid
    """
    try:
        conn.execute(META_SCHEMA)
        sync_uuid = get_meta(conn, META_KEY_SYNC_UUID)
        if sync_uuid is None:
            sync_uuid = str(uuid.uuid4())
            set_meta(conn, META_KEY_SYNC_UUID, sync_uuid)
            logger.info(f"Created sync_uuid {sync_uuid}")
        if get_meta(conn, META_KEY_LAST_CHECKPOINT) is None:
            record_checkpoint(conn, now)
        if user_email:
            set_meta(conn, META_KEY_USER_EMAIL, user_email)
    except sqlite3.Error as e:
        raise DatabaseError(
            f"Failed to initialize meta: {e}",
            operation="initialize_meta",
        ) from e
    return sync_uuid


def get_meta(conn: sqlite3.Connection, key: str) -> str | None:
    try:
        row = conn.execute(f"SELECT value FROM {META_TABLE} WHERE key = ?", (key,)).fetchone()
    except sqlite3.OperationalError:
        # Table doesn't exist
        return None
    return row[0] if row is not None else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        f"INSERT INTO {META_TABLE} (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )


def record_checkpoint(conn: sqlite3.Connection, now: datetime | None = None) -> datetime:
    """Store now (UTC) as the last checkpoint time."""
    stamp = now or datetime.now(timezone.utc)
    set_meta(conn, META_KEY_LAST_CHECKPOINT, format_iso(stamp))
    return stamp


def get_last_checkpoint(conn: sqlite3.Connection) -> datetime | None:
    raw = get_meta(conn, META_KEY_LAST_CHECKPOINT)
    if raw is None:
        return None
    try:
        return parse_iso(raw)
    except ValidationError:
        logger.warning(f"Ignoring unparseable last_checkpoint {raw!r}")
        return None


def should_checkpoint(
    last_checkpoint: datetime | None,
    now: datetime,
    days: int = CHECKPOINT_AFTER_DAYS,
) -> bool:
    """
    Solo-user checkpoint rule: a checkpoint is due when none was ever
    taken or the last one is at least `days` old.
    """
    if last_checkpoint is None:
        return True
    return now - last_checkpoint >= timedelta(days=days)
