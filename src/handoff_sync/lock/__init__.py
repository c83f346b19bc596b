"""Soft exclusive-edit lock over an eventually consistent shared folder."""

from handoff_sync.lock.conflict import find_conflicts, partition_locks, scan_locks
from handoff_sync.lock.coordinator import AcquireResult, LockCoordinator, LockState
from handoff_sync.lock.naming import LockName, make_lock_name, parse_lock_name
from handoff_sync.lock.record import LockRecord, ObservedLock

__all__ = [
    "AcquireResult",
    "LockCoordinator",
    "LockState",
    "LockName",
    "LockRecord",
    "ObservedLock",
    "find_conflicts",
    "make_lock_name",
    "parse_lock_name",
    "partition_locks",
    "scan_locks",
]
