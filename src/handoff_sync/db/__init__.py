"""SQLite layer: connections, sync-tracking envelope, metadata."""

from handoff_sync.db.connection import (
    create_connection,
    execute_in_transaction,
    set_tracking_disabled,
    tracking_disabled,
)
from handoff_sync.db.meta import (
    get_last_checkpoint,
    get_meta,
    initialize_meta,
    record_checkpoint,
    set_meta,
    should_checkpoint,
)
from handoff_sync.db.schema import SYNCED_TABLES, SyncTableSpec
from handoff_sync.db.triggers import (
    has_sync_tracking,
    install_sync_tracking,
    verify_sync_tracking,
)

__all__ = [
    "create_connection",
    "execute_in_transaction",
    "set_tracking_disabled",
    "tracking_disabled",
    "get_last_checkpoint",
    "get_meta",
    "initialize_meta",
    "record_checkpoint",
    "set_meta",
    "should_checkpoint",
    "SYNCED_TABLES",
    "SyncTableSpec",
    "has_sync_tracking",
    "install_sync_tracking",
    "verify_sync_tracking",
]
