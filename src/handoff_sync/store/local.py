"""
local.py - Folder store backed by a directory on disk.

This is the usual production backend: the directory is the locally
synced copy of the shared cloud-drive folder.
"""

import os
import tempfile
from pathlib import Path

from handoff_sync.errors import StoreError
from handoff_sync.store.base import FolderStore


class LocalFolderStore(FolderStore):
    """FolderStore over a local directory."""

    def __init__(self, path: str | os.PathLike):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return f"local:{self._path}"

    def list_entries(self) -> list[str]:
        try:
            return sorted(entry.name for entry in self._path.iterdir() if entry.is_file())
        except OSError as e:
            raise StoreError(
                f"Failed to list folder: {e}", operation="list", entry=str(self._path)
            ) from e

    def read_file(self, name: str) -> bytes:
        try:
            return (self._path / name).read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise StoreError(f"Failed to read file: {e}", operation="read", entry=name) from e

    def write_file(self, name: str, data: bytes) -> None:
        # Write to a hidden temp file first so readers never see a torn file
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=self._path)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path / name)
            tmp_path = None
        except OSError as e:
            raise StoreError(f"Failed to write file: {e}", operation="write", entry=name) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def delete_entry(self, name: str) -> None:
        try:
            (self._path / name).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete file: {e}", operation="delete", entry=name) from e
