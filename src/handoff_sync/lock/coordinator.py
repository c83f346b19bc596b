"""
coordinator.py - Soft exclusive-edit lock over a shared folder.

The coordinator gives advisory mutual exclusion between clients that
only see each other through an eventually consistent sync folder. It
relies on three things:

1. Each claimant writes its own file, named with its creation time
   and machine id, so names are immutable, time-ordered claims.
2. After writing, the claimant waits for the sync layer to converge,
   then rescans. Any valid claim created between the claimant's baseline
   and its own claim is a conflict, and the claimant yields.
3. Extended checks after acquisition catch conflicting claims that
   propagated late. They never interrupt the caller. They flag the
   lock, and the next verify() reports the loss of ownership.

Two clients can briefly both believe they own the lock inside the
propagation window. Callers must verify() immediately before any
durable write.

State machine:

    UNOWNED -> ACQUIRING -> OWNED -> (RELEASING | RESCINDING) -> UNOWNED
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from handoff_sync.clock import Clock, SystemClock
from handoff_sync.config import LOCK_FILE_PREFIX, LOCK_FILE_SUFFIX, LockSettings
from handoff_sync.errors import ForceUnlockError, StoreError
from handoff_sync.identity import generate_machine_id, validate_machine_id
from handoff_sync.lock.conflict import (
    earliest_lock,
    find_conflicts,
    latest_lock,
    partition_locks,
    scan_locks,
)
from handoff_sync.lock.naming import LockName, make_lock_name, parse_lock_name, truncate_to_millis
from handoff_sync.lock.record import LockRecord, ObservedLock
from handoff_sync.metrics import SyncLogger
from handoff_sync.scheduler import Scheduler, ThreadingScheduler, TimerHandle
from handoff_sync.store.base import FolderStore

logger = logging.getLogger(__name__)


class LockState(Enum):
    UNOWNED = "unowned"
    ACQUIRING = "acquiring"
    OWNED = "owned"
    RELEASING = "releasing"
    RESCINDING = "rescinding"


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of acquire(). A denial is a normal result, not an error."""
    granted: bool
    held_by: str | None = None
    lock_name: str | None = None
    reason: str = ""


class LockCoordinator:
    """
    Acquires, heartbeats, verifies and releases the folder lock.

    Args:
        store: Shared folder holding the lock files
        user: Identity recorded in our lock file and reported to others
        machine_id: Stable id of this client (generated if omitted)
        settings: Lock timings
        clock: Time source; also used for the propagation wait
        scheduler: Timer source for heartbeats and extended checks.
            Defaults to the clock when it is a Scheduler (ManualClock),
            otherwise to a ThreadingScheduler.
    """

    def __init__(
        self,
        store: FolderStore,
        user: str,
        machine_id: str | None = None,
        settings: LockSettings | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
    ):
        self._store = store
        self._user = user
        self._machine_id = validate_machine_id(machine_id) if machine_id else generate_machine_id()
        self._settings = settings or LockSettings()
        self._clock = clock or SystemClock()
        if scheduler is None:
            scheduler = self._clock if isinstance(self._clock, Scheduler) else ThreadingScheduler()
        self._scheduler = scheduler

        self._mutex = threading.RLock()
        self._state = LockState.UNOWNED
        self._own: LockName | None = None
        self._last_seen_lock: str | None = None
        self._rescind_reason: str | None = None
        self._rescind_holder: str | None = None
        self._yielded_to: str | None = None

        self._heartbeat: TimerHandle | None = None
        self._checks: list[TimerHandle] = []
        self._generation = 0
        self._events = SyncLogger(__name__)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def is_owned(self) -> bool:
        return self._state is LockState.OWNED

    @property
    def store(self) -> FolderStore:
        return self._store

    @property
    def machine_id(self) -> str:
        return self._machine_id

    @property
    def user(self) -> str:
        return self._user

    @property
    def settings(self) -> LockSettings:
        return self._settings

    @property
    def lock_name(self) -> str | None:
        return self._own.name if self._own is not None else None

    @property
    def owner(self) -> str | None:
        """Our user while we hold the lock, else None."""
        return self._user if self._state is LockState.OWNED else None

    @property
    def last_seen_lock(self) -> str | None:
        return self._last_seen_lock

    @property
    def yielded_to(self) -> str | None:
        """Owner we last gave the lock up to, if ownership was lost to a conflict."""
        return self._yielded_to

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def acquire(self) -> AcquireResult:
        """
        Try to take the lock.

        Blocks for the propagation wait when a new claim is made. A denied
        result leaves no lock file of ours behind.
        """
        with self._mutex:
            if self._state is LockState.ACQUIRING:
                return AcquireResult(False, reason="acquire already in progress")

            try:
                locks = scan_locks(self._store)
            except StoreError as e:
                logger.warning(f"Cannot list lock folder: {e}")
                return AcquireResult(False, reason="store error")

            valid, _ = partition_locks(locks, self._clock.now(), self._settings.stale_threshold)
            others = [lock for lock in valid if lock.machine_id != self._machine_id]
            holder = earliest_lock(others)

            if self._state is LockState.OWNED and self._own is not None:
                current = [lock for lock in valid if lock.name == self._own.name]
                if current:
                    return self._adopt(current[0])
                # Our file went stale or was removed; drop the old claim and its timers
                self._rescind("own lock file missing or stale", holder.owner if holder else None)

            mine = [lock for lock in valid if lock.machine_id == self._machine_id]
            if mine:
                return self._adopt(mine[-1])

            if holder is not None:
                self._events.lock_denied(self._machine_id, holder.owner, "held")
                return AcquireResult(False, held_by=holder.owner, lock_name=holder.name, reason="held")

            baseline = latest_lock(others)
            self._last_seen_lock = baseline.name if baseline is not None else None

            created_at = truncate_to_millis(self._clock.now())
            own = parse_lock_name(make_lock_name(created_at, self._machine_id))
            record = LockRecord(self._user, self._last_seen_lock, created_at)
            try:
                self._store.write_file(own.name, record.to_json())
            except StoreError as e:
                logger.warning(f"Cannot create lock file {own.name}: {e}")
                self._delete_quietly(own.name)
                return AcquireResult(False, reason="store error")

            self._own = own
            self._state = LockState.ACQUIRING
            self._rescind_reason = None
            self._rescind_holder = None
            self._yielded_to = None
            logger.debug(f"Created {own.name}, waiting {self._settings.propagation_wait}s")

        self._clock.sleep(self._settings.propagation_wait)

        with self._mutex:
            if self._state is not LockState.ACQUIRING or self._own is not own:
                return AcquireResult(False, reason="acquire cancelled")
            return self._confirm_acquisition(own)

    def verify(self) -> bool:
        """
        Check that we still own the lock.

        A lost lock (own file gone or stale, an earlier valid claim, a
        conflict, or a flag raised by an extended check) downgrades the
        coordinator to UNOWNED. A store error only returns False.
        """
        with self._mutex:
            if self._state is not LockState.OWNED or self._own is None:
                return False

            if self._rescind_reason is not None:
                self._rescind(self._rescind_reason, self._rescind_holder)
                return False

            try:
                locks = scan_locks(self._store)
            except StoreError as e:
                logger.warning(f"Cannot verify lock, folder not readable: {e}")
                return False

            valid, _ = partition_locks(locks, self._clock.now(), self._settings.stale_threshold)
            own = self._own
            if own.name not in {lock.name for lock in valid}:
                present = any(lock.name == own.name for lock in locks)
                self._rescind("own lock file is stale" if present else "own lock file missing", None)
                return False

            earlier = [
                lock for lock in valid
                if lock.machine_id != self._machine_id and lock.sort_key < own.sort_key
            ]
            conflicts = find_conflicts(valid, own, self._last_seen_lock)
            if earlier or conflicts:
                winner = earliest_lock(earlier + conflicts)
                self._rescind(f"earlier claim {winner.name}", winner.owner)
                return False

            return True

    def release(self) -> None:
        """Stop timers, then delete our lock file. Idempotent."""
        with self._mutex:
            own = self._own
            if own is None and self._state is LockState.UNOWNED:
                return

            self._state = LockState.RELEASING
            self._cancel_timers()
            if own is not None:
                self._delete_quietly(own.name)
            self._own = None
            self._state = LockState.UNOWNED
            self._events.lock_released(self._machine_id, own.name if own else None)

    def force_unlock(self) -> list[str]:
        """
        Delete every lock file in the folder, ours and everyone else's.

        This revokes other clients' sessions; callers must warn the user.

        Returns:
            Names of deleted entries

        Raises:
            ForceUnlockError: If any lock file could not be deleted
        """
        with self._mutex:
            self._cancel_timers()
            self._own = None
            self._state = LockState.UNOWNED

            try:
                entries = self._store.list_entries()
            except StoreError as e:
                raise ForceUnlockError(f"Cannot list lock folder: {e}", remaining=[]) from e

            deleted, remaining = [], []
            for entry in entries:
                if not entry.startswith(LOCK_FILE_PREFIX):
                    continue
                try:
                    self._store.delete_entry(entry)
                    deleted.append(entry)
                except StoreError as e:
                    logger.error(f"Force unlock could not delete {entry}: {e}")
                    remaining.append(entry)

            self._events.force_unlock(self._machine_id, deleted)
            if remaining:
                raise ForceUnlockError(
                    f"Force unlock left {len(remaining)} lock file(s) behind",
                    remaining=remaining,
                )
            return deleted

    def is_held_by_other(self) -> str | None:
        """Owner of the earliest valid lock that is not ours. Read-only."""
        try:
            locks = scan_locks(self._store)
        except StoreError as e:
            logger.warning(f"Cannot probe lock folder: {e}")
            return None
        valid, _ = partition_locks(locks, self._clock.now(), self._settings.stale_threshold)
        holder = earliest_lock(lock for lock in valid if lock.machine_id != self._machine_id)
        return holder.owner if holder is not None else None

    def start(self) -> None:
        """Arm the heartbeat and extended checks if we own the lock."""
        with self._mutex:
            if self._state is LockState.OWNED and self._heartbeat is None:
                self._arm_timers(extended_checks=True)

    def stop(self) -> None:
        """Cancel timers without giving up the lock file."""
        with self._mutex:
            self._cancel_timers()

    # ------------------------------------------------------------------
    # Acquisition helpers
    # ------------------------------------------------------------------

    def _adopt(self, lock: ObservedLock) -> AcquireResult:
        # Our own valid claim, e.g. left over from a restart of this client
        self._own = lock.lock_name
        if lock.record is not None:
            self._last_seen_lock = lock.record.last_seen_lock
        self._state = LockState.OWNED
        self._rescind_reason = None
        self._rescind_holder = None
        if self._heartbeat is None:
            self._write_heartbeat()
            self._arm_timers(extended_checks=False)
        self._events.lock_acquired(self._machine_id, lock.name, adopted=True)
        return AcquireResult(True, lock_name=lock.name, reason="adopted")

    def _confirm_acquisition(self, own: LockName) -> AcquireResult:
        try:
            locks = scan_locks(self._store)
        except StoreError as e:
            logger.warning(f"Cannot rescan lock folder: {e}")
            self._rescind("store error during rescan", None)
            return AcquireResult(False, reason="store error")

        valid, stale = partition_locks(locks, self._clock.now(), self._settings.stale_threshold)

        if own.name not in {lock.name for lock in locks}:
            holder = earliest_lock(lock for lock in valid if lock.machine_id != self._machine_id)
            held_by = holder.owner if holder is not None else None
            self._rescind("own lock file renamed or removed", held_by)
            return AcquireResult(False, held_by=held_by, reason="renamed")

        conflicts = find_conflicts(valid, own, self._last_seen_lock)
        if conflicts:
            winner = conflicts[0]
            self._rescind(f"conflict with {winner.name}", winner.owner)
            return AcquireResult(False, held_by=winner.owner, lock_name=winner.name, reason="conflict")

        for lock in stale:
            if lock.machine_id != self._machine_id:
                logger.info(f"Removing stale lock {lock.name} held by {lock.owner}")
                self._delete_quietly(lock.name)

        self._state = LockState.OWNED
        self._arm_timers(extended_checks=True)
        self._events.lock_acquired(self._machine_id, own.name)
        return AcquireResult(True, lock_name=own.name, reason="acquired")

    def _rescind(self, reason: str, holder: str | None) -> None:
        own = self._own
        self._state = LockState.RESCINDING
        self._cancel_timers()
        if own is not None:
            self._delete_own_copies(own)
        self._own = None
        self._rescind_reason = None
        self._rescind_holder = None
        self._yielded_to = holder
        self._state = LockState.UNOWNED
        self._events.lock_rescinded(self._machine_id, own.name if own else None, reason)

    def _delete_own_copies(self, own: LockName) -> None:
        # The sync layer may have renamed our file, e.g. "<stem> (1).json"
        stem = own.name[: -len(LOCK_FILE_SUFFIX)]
        self._delete_quietly(own.name)
        try:
            entries = self._store.list_entries()
        except StoreError as e:
            logger.warning(f"Cannot look for renamed copies of {own.name}: {e}")
            return
        for entry in entries:
            if entry != own.name and entry.startswith(stem):
                self._delete_quietly(entry)

    def _delete_quietly(self, name: str) -> None:
        try:
            self._store.delete_entry(name)
        except StoreError as e:
            logger.warning(f"Could not delete {name}: {e}")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_timers(self, extended_checks: bool) -> None:
        gen = self._generation
        self._arm_heartbeat(gen)
        if extended_checks:
            for delay in self._settings.extended_check_delays:
                self._checks.append(
                    self._scheduler.call_later(delay, lambda: self._on_extended_check(gen))
                )

    def _arm_heartbeat(self, gen: int) -> None:
        self._heartbeat = self._scheduler.call_later(
            self._settings.heartbeat_interval, lambda: self._on_heartbeat(gen)
        )

    def _cancel_timers(self) -> None:
        self._generation += 1
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        for handle in self._checks:
            handle.cancel()
        self._heartbeat = None
        self._checks = []

    def _on_heartbeat(self, gen: int) -> None:
        with self._mutex:
            if gen != self._generation or self._state is not LockState.OWNED:
                return
            if self._write_heartbeat():
                self._arm_heartbeat(gen)

    def _write_heartbeat(self) -> bool:
        """Refresh our lock file. Returns False once the lock is known to be lost."""
        own = self._own
        try:
            if own.name not in self._store.list_entries():
                # Never resurrect a file someone else deleted
                self._rescind_reason = "own lock file missing at heartbeat"
                return False
            record = LockRecord(self._user, self._last_seen_lock, self._clock.now())
            self._store.write_file(own.name, record.to_json())
        except StoreError as e:
            self._events.heartbeat_failed(self._machine_id, str(e))
        return True

    def _on_extended_check(self, gen: int) -> None:
        with self._mutex:
            if gen != self._generation or self._state is not LockState.OWNED:
                return
            if self._rescind_reason is not None:
                return
            own = self._own
            try:
                locks = scan_locks(self._store)
            except StoreError as e:
                logger.warning(f"Extended conflict check skipped: {e}")
                return

            if own.name not in {lock.name for lock in locks}:
                self._rescind_reason = "own lock file missing"
                return

            valid, _ = partition_locks(locks, self._clock.now(), self._settings.stale_threshold)
            conflicts = find_conflicts(valid, own, self._last_seen_lock)
            if conflicts:
                winner = conflicts[0]
                logger.warning(f"Late conflicting claim {winner.name}; lock should be rescinded")
                self._rescind_reason = f"late conflict with {winner.name}"
                self._rescind_holder = winner.owner
