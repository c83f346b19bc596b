"""
handoff_sync - Single-writer handoff for a SQLite file in a shared folder

Coordinates who may edit a database that lives in a consumer cloud-sync
folder, and reconciles two diverged copies table by table.
"""

from handoff_sync.config import LockSettings
from handoff_sync.errors import (
    DatabaseError,
    ForceUnlockError,
    LockError,
    MergeError,
    SchemaError,
    StoreError,
    SyncError,
    ValidationError,
)
from handoff_sync.lock import AcquireResult, LockCoordinator, LockState
from handoff_sync.store import LocalFolderStore, MemoryFolderBackend, MemoryFolderStore

__version__ = "0.1.0"
__all__ = [
    # Lock
    "AcquireResult",
    "LockCoordinator",
    "LockSettings",
    "LockState",
    # Stores
    "LocalFolderStore",
    "MemoryFolderBackend",
    "MemoryFolderStore",
    # Errors
    "SyncError",
    "StoreError",
    "LockError",
    "ForceUnlockError",
    "SchemaError",
    "DatabaseError",
    "ValidationError",
    "MergeError",
]
