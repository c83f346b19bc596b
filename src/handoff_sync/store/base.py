"""
base.py - Abstract base class for shared folder stores.

The lock coordinator depends only on this capability interface.
Implementations must assume the folder is eventually consistent:
other clients' writes may appear late, last-writer-wins is not
guaranteed and the sync layer may rename files on conflict.
"""

from abc import ABC, abstractmethod


class FolderStore(ABC):
    """
    Abstract base class for a shared folder.

    Implementations must provide methods for:
    - Listing entry names
    - Reading a file
    - Writing a file (create-or-replace)
    - Deleting an entry
    """

    @abstractmethod
    def list_entries(self) -> list[str]:
        """
        List the names of all entries currently visible in the folder.

        Raises:
            StoreError: If the folder cannot be listed
        """
        pass

    @abstractmethod
    def read_file(self, name: str) -> bytes:
        """
        Read the full contents of a file.

        Raises:
            FileNotFoundError: If the entry is not visible
            StoreError: On any other failure
        """
        pass

    @abstractmethod
    def write_file(self, name: str, data: bytes) -> None:
        """
        Create or replace a file.

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def delete_entry(self, name: str) -> None:
        """
        Delete an entry. Deleting a missing entry is not an error.

        Raises:
            StoreError: If the entry exists but cannot be deleted
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name for logging."""
        pass
