"""
conftest.py - pytest fixtures for handoff_sync tests.
"""

import os
import sqlite3
import tempfile

import pytest

from handoff_sync.clock import ManualClock
from handoff_sync.config import LockSettings
from handoff_sync.db import SyncTableSpec, create_connection, install_sync_tracking
from handoff_sync.lock import LockCoordinator
from handoff_sync.store import MemoryFolderBackend, MemoryFolderStore

ASSIGNMENT_DDL = """
CREATE TABLE assignment (
    id INTEGER PRIMARY KEY,
    date TEXT NOT NULL,
    person_id INTEGER NOT NULL,
    segment TEXT NOT NULL
)
"""

ASSIGNMENT_SPEC = SyncTableSpec("assignment", ("date", "person_id", "segment"))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases and folders."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    """Deterministic clock that also schedules the coordinator's timers."""
    return ManualClock()


@pytest.fixture
def backend():
    """Shared in-memory sync folder."""
    return MemoryFolderBackend()


@pytest.fixture
def make_client(backend, clock):
    """
    Factory for (store, coordinator) pairs sharing one simulated folder.

    propagation_delay is how long this client takes to see others' writes.
    """
    def _make(user, machine_id, propagation_delay=0.0, settings=None):
        store = MemoryFolderStore(
            backend,
            client_id=machine_id,
            clock=clock,
            propagation_delay=propagation_delay,
        )
        coordinator = LockCoordinator(
            store,
            user=user,
            machine_id=machine_id,
            settings=settings or LockSettings(),
            clock=clock,
        )
        return store, coordinator

    return _make


@pytest.fixture
def tracked_db(temp_dir):
    """A database with a sync-tracked assignment table."""
    conn = create_connection(os.path.join(temp_dir, "tracked.db"))
    conn.execute(ASSIGNMENT_DDL)
    install_sync_tracking(conn, ASSIGNMENT_SPEC)
    yield conn
    conn.close()


@pytest.fixture
def two_dbs(temp_dir):
    """Two database copies, each with a sync-tracked assignment table."""
    conns = []
    for name in ("mine.db", "theirs.db"):
        conn = create_connection(os.path.join(temp_dir, name))
        conn.execute(ASSIGNMENT_DDL)
        install_sync_tracking(conn, ASSIGNMENT_SPEC)
        conns.append(conn)
    yield conns[0], conns[1]
    for conn in conns:
        conn.close()


def insert_assignment(conn: sqlite3.Connection, date: str, person_id: int, segment: str, **extra):
    columns = ["date", "person_id", "segment", *extra]
    values = [date, person_id, segment, *extra.values()]
    conn.execute(
        f"INSERT INTO assignment ({', '.join(columns)}) VALUES ({', '.join('?' for _ in values)})",
        values,
    )
