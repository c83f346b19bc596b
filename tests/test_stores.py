"""
test_stores.py - Tests for the shared folder stores.
"""

import os

import pytest

from handoff_sync.clock import ManualClock
from handoff_sync.errors import StoreError
from handoff_sync.store import LocalFolderStore, MemoryFolderBackend, MemoryFolderStore


class TestLocalFolderStore:
    """Tests for the on-disk folder."""

    def test_write_read_list_delete(self, temp_dir):
        store = LocalFolderStore(temp_dir)

        store.write_file("b.json", b"two")
        store.write_file("a.json", b"one")

        assert store.list_entries() == ["a.json", "b.json"]
        assert store.read_file("a.json") == b"one"

        store.delete_entry("a.json")
        assert store.list_entries() == ["b.json"]

    def test_write_replaces_and_leaves_no_temp_files(self, temp_dir):
        store = LocalFolderStore(temp_dir)
        store.write_file("lock.json", b"old")
        store.write_file("lock.json", b"new")

        assert store.read_file("lock.json") == b"new"
        assert os.listdir(temp_dir) == ["lock.json"]

    def test_delete_missing_is_not_an_error(self, temp_dir):
        LocalFolderStore(temp_dir).delete_entry("nothing.json")

    def test_read_missing_raises_file_not_found(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            LocalFolderStore(temp_dir).read_file("nothing.json")

    def test_missing_folder_raises_store_error(self, temp_dir):
        store = LocalFolderStore(os.path.join(temp_dir, "absent"))
        with pytest.raises(StoreError):
            store.list_entries()
        with pytest.raises(StoreError):
            store.write_file("x.json", b"")

    def test_subdirectories_not_listed(self, temp_dir):
        os.mkdir(os.path.join(temp_dir, "nested"))
        assert LocalFolderStore(temp_dir).list_entries() == []


class TestMemoryFolderStore:
    """Tests for the simulated eventually consistent folder."""

    def test_others_writes_appear_after_delay(self):
        clock = ManualClock()
        backend = MemoryFolderBackend()
        writer = MemoryFolderStore(backend, client_id="a", clock=clock, propagation_delay=2.0)
        reader = MemoryFolderStore(backend, client_id="b", clock=clock, propagation_delay=2.0)

        writer.write_file("f.json", b"v1")

        assert writer.list_entries() == ["f.json"]
        assert reader.list_entries() == []
        with pytest.raises(FileNotFoundError):
            reader.read_file("f.json")

        clock.advance(2.0)
        assert reader.read_file("f.json") == b"v1"

    def test_reader_sees_last_propagated_version(self):
        clock = ManualClock()
        backend = MemoryFolderBackend()
        writer = MemoryFolderStore(backend, client_id="a", clock=clock, propagation_delay=2.0)
        reader = MemoryFolderStore(backend, client_id="b", clock=clock, propagation_delay=2.0)

        writer.write_file("f.json", b"v1")
        clock.advance(3.0)
        writer.write_file("f.json", b"v2")

        assert reader.read_file("f.json") == b"v1"
        assert writer.read_file("f.json") == b"v2"

    def test_delete_is_immediate(self):
        clock = ManualClock()
        backend = MemoryFolderBackend()
        a = MemoryFolderStore(backend, client_id="a", clock=clock)
        b = MemoryFolderStore(backend, client_id="b", clock=clock)
        a.write_file("f.json", b"x")

        b.delete_entry("f.json")

        assert a.list_entries() == []

    def test_rename_entry(self):
        store = MemoryFolderStore(clock=ManualClock())
        store.write_file("f.json", b"x")

        store.rename_entry("f.json", "f (1).json")

        assert store.list_entries() == ["f (1).json"]
        assert store.read_file("f (1).json") == b"x"

    @pytest.mark.parametrize("operation", ["list", "read", "write", "delete"])
    def test_failure_injection(self, operation):
        store = MemoryFolderStore(clock=ManualClock())
        store.write_file("f.json", b"x")
        store.failing_operations.add(operation)

        calls = {
            "list": store.list_entries,
            "read": lambda: store.read_file("f.json"),
            "write": lambda: store.write_file("f.json", b"y"),
            "delete": lambda: store.delete_entry("f.json"),
        }
        with pytest.raises(StoreError) as exc_info:
            calls[operation]()
        assert exc_info.value.operation == operation
