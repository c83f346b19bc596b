"""
conflict.py - Scanning the lock folder and detecting acquisition conflicts.

Conflict rule: another non-stale lock L conflicts with our claim when

    key(baseline) < key(L) < key(ours)

where key = (creation timestamp, file name) and baseline is the
lastSeenLock we recorded before creating our own file (None sorts
before everything). Such an L belongs to a claimant that started
concurrently with us but had not propagated when we took our snapshot.
We cannot prove we were first, so we yield.
"""

import logging
from datetime import datetime
from typing import Iterable

from handoff_sync.errors import StoreError, ValidationError
from handoff_sync.lock.naming import LockName, parse_lock_name
from handoff_sync.lock.record import LockRecord, ObservedLock
from handoff_sync.store.base import FolderStore

logger = logging.getLogger(__name__)


def scan_locks(store: FolderStore) -> list[ObservedLock]:
    """
    List and read every lock file in the store, sorted earliest first.

    Unreadable contents yield a lock with no record. A file that vanishes
    between list and read is skipped.

    Raises:
        StoreError: If the folder cannot be listed
    """
    locks = []
    for entry in store.list_entries():
        lock_name = parse_lock_name(entry)
        if lock_name is None:
            continue
        try:
            record = LockRecord.from_json(store.read_file(entry))
        except FileNotFoundError:
            continue
        except (StoreError, ValidationError) as e:
            logger.debug(f"Lock contents not readable yet for {entry}: {e}")
            record = None
        locks.append(ObservedLock(lock_name=lock_name, record=record))
    locks.sort(key=lambda lock: lock.sort_key)
    return locks


def partition_locks(
    locks: Iterable[ObservedLock], now: datetime, stale_threshold: float
) -> tuple[list[ObservedLock], list[ObservedLock]]:
    """Split locks into (valid, stale), preserving order."""
    valid, stale = [], []
    for lock in locks:
        (stale if lock.is_stale(now, stale_threshold) else valid).append(lock)
    return valid, stale


def earliest_lock(locks: Iterable[ObservedLock]) -> ObservedLock | None:
    return min(locks, key=lambda lock: lock.sort_key, default=None)


def latest_lock(locks: Iterable[ObservedLock]) -> ObservedLock | None:
    return max(locks, key=lambda lock: lock.sort_key, default=None)


def find_conflicts(
    valid_locks: Iterable[ObservedLock],
    own: LockName,
    baseline: str | None,
) -> list[ObservedLock]:
    """
    Return the valid locks that conflict with our claim, earliest first.

    Args:
        valid_locks: Non-stale locks from the latest scan
        own: Our own lock file name
        baseline: lastSeenLock recorded before our file was created
    """
    baseline_name = parse_lock_name(baseline) if baseline else None
    conflicts = []
    for lock in valid_locks:
        if lock.name == own.name or lock.machine_id == own.machine_id:
            continue
        if baseline_name is not None and lock.sort_key <= baseline_name.sort_key:
            continue
        if lock.sort_key < own.sort_key:
            conflicts.append(lock)
    conflicts.sort(key=lambda lock: lock.sort_key)
    return conflicts
