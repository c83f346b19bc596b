"""
store - Shared folder store abstraction and backends.
"""

from handoff_sync.store.base import FolderStore
from handoff_sync.store.local import LocalFolderStore
from handoff_sync.store.memory import MemoryFolderBackend, MemoryFolderStore

__all__ = [
    "FolderStore",
    "LocalFolderStore",
    "MemoryFolderBackend",
    "MemoryFolderStore",
]
