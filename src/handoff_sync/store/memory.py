"""
memory.py - In-memory simulation of an eventually consistent sync folder.

A MemoryFolderBackend plays the role of the cloud: every client gets its
own MemoryFolderStore view. A write made by one client becomes visible to
the others only after the view's propagation delay, which is how the
race windows the lock coordinator defends against are reproduced in tests
and simulations. Deletes propagate immediately.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from handoff_sync.clock import Clock, SystemClock
from handoff_sync.errors import StoreError
from handoff_sync.store.base import FolderStore


@dataclass
class _Version:
    written_at: datetime
    writer: str
    data: bytes


@dataclass
class _Entry:
    versions: list[_Version] = field(default_factory=list)


class MemoryFolderBackend:
    """Shared state behind all MemoryFolderStore views."""

    def __init__(self) -> None:
        self.entries: dict[str, _Entry] = {}

    def names(self) -> list[str]:
        return sorted(self.entries)


class MemoryFolderStore(FolderStore):
    """
    One client's view of a MemoryFolderBackend.

    Args:
        backend: Shared backend (a private one is created if omitted)
        client_id: Identifies this view's own writes
        clock: Clock used to time-stamp writes and evaluate visibility
        propagation_delay: Seconds before other clients' writes show up
    """

    def __init__(
        self,
        backend: MemoryFolderBackend | None = None,
        client_id: str = "local",
        clock: Clock | None = None,
        propagation_delay: float = 0.0,
    ):
        self._backend = backend or MemoryFolderBackend()
        self._client_id = client_id
        self._clock = clock or SystemClock()
        self._delay = timedelta(seconds=propagation_delay)
        # Operation names ("list", "read", "write", "delete") that should fail
        self.failing_operations: set[str] = set()

    @property
    def backend(self) -> MemoryFolderBackend:
        return self._backend

    @property
    def name(self) -> str:
        return f"memory:{self._client_id}"

    def _check(self, operation: str, entry: str | None = None) -> None:
        if operation in self.failing_operations:
            raise StoreError("Simulated store failure", operation=operation, entry=entry)

    def _visible(self, version: _Version) -> bool:
        if version.writer == self._client_id:
            return True
        return version.written_at + self._delay <= self._clock.now()

    def _latest_visible(self, name: str) -> _Version | None:
        entry = self._backend.entries.get(name)
        if entry is None:
            return None
        for version in reversed(entry.versions):
            if self._visible(version):
                return version
        return None

    def list_entries(self) -> list[str]:
        self._check("list")
        return [n for n in self._backend.names() if self._latest_visible(n) is not None]

    def read_file(self, name: str) -> bytes:
        self._check("read", name)
        version = self._latest_visible(name)
        if version is None:
            raise FileNotFoundError(name)
        return version.data

    def write_file(self, name: str, data: bytes) -> None:
        self._check("write", name)
        entry = self._backend.entries.setdefault(name, _Entry())
        entry.versions.append(_Version(self._clock.now(), self._client_id, bytes(data)))

    def delete_entry(self, name: str) -> None:
        self._check("delete", name)
        self._backend.entries.pop(name, None)

    def rename_entry(self, old: str, new: str) -> None:
        """Simulate the sync layer renaming a file away on a write conflict."""
        entry = self._backend.entries.pop(old, None)
        if entry is not None:
            self._backend.entries[new] = entry
