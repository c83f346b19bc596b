"""
test_lock_naming.py - Tests for lock file names, records and conflict detection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from handoff_sync.config import LockSettings
from handoff_sync.errors import LockError, ValidationError
from handoff_sync.lock import (
    LockRecord,
    ObservedLock,
    find_conflicts,
    make_lock_name,
    parse_lock_name,
)
from handoff_sync.lock.naming import format_iso, parse_iso

T0 = datetime(2024, 1, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)


def observed(seconds: float, machine_id: str, user: str = "someone") -> ObservedLock:
    created = T0 + timedelta(seconds=seconds)
    lock_name = parse_lock_name(make_lock_name(created, machine_id))
    return ObservedLock(lock_name, LockRecord(user, None, lock_name.created_at))


class TestLockNames:
    """Tests for the file name wire format."""

    def test_name_format(self):
        """Colons and the decimal point become dashes; milliseconds are kept."""
        assert make_lock_name(T0, "abc123") == "lock-2024-01-01T12-30-45-123Z-abc123.json"

    def test_parse_round_trip(self):
        """Parsing recovers the millisecond timestamp and machine id."""
        parsed = parse_lock_name("lock-2024-01-01T12-30-45-123Z-abc123.json")
        assert parsed.machine_id == "abc123"
        assert parsed.created_at == T0.replace(microsecond=123000)

    @pytest.mark.parametrize("name", [
        "schedule.db",
        "lock-2024-01-01T12-30-45-123Z-abc123 (1).json",
        "lock-2024-01-01T12-30-45-123Z-abc123.json.tmp",
        "lock-2024-01-01T12-30-45Z-abc123.json",
        "lock-2024-13-01T12-30-45-123Z-abc123.json",
    ])
    def test_non_lock_entries_ignored(self, name):
        """Anything not matching the pattern, including conflict copies, is not a lock."""
        assert parse_lock_name(name) is None

    def test_invalid_machine_id_rejected(self):
        with pytest.raises(ValidationError):
            make_lock_name(T0, "abc-123")

    def test_names_sort_in_creation_order(self):
        """Lexicographic order of names follows creation time."""
        names = [make_lock_name(T0 + timedelta(milliseconds=ms), "zzz") for ms in (900, 5, 120)]
        parsed = [parse_lock_name(n) for n in names]
        assert sorted(names) == [p.name for p in sorted(parsed, key=lambda p: p.sort_key)]

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 0, 0, 0)
        assert make_lock_name(naive, "m1") == "lock-2024-01-01T00-00-00-000Z-m1.json"


class TestLockRecord:
    """Tests for lock file contents."""

    def test_json_uses_wire_keys(self):
        """Contents use camelCase keys and ISO timestamps."""
        data = LockRecord("alice", "lock-x.json", T0).to_json()
        assert b'"lastSeenLock": "lock-x.json"' in data
        assert b'"lastHeartbeat": "2024-01-01T12:30:45.123Z"' in data
        assert LockRecord.from_json(data).user == "alice"

    @pytest.mark.parametrize("data", [
        b"",
        b"[]",
        b'{"user": "alice"}',
        b'{"user": "alice", "lastHeartbeat": "yesterday"}',
        b'{"user": "alice", "lastHeartbeat": "2024-01-01T00:00:00.000Z", "lastSeenLock": 5}',
    ])
    def test_invalid_contents_rejected(self, data):
        with pytest.raises(ValidationError):
            LockRecord.from_json(data)

    def test_unknown_owner_without_record(self):
        """A lock with no readable contents is owned by 'unknown'."""
        lock_name = parse_lock_name(make_lock_name(T0, "abc"))
        lock = ObservedLock(lock_name, None)
        assert lock.owner == "unknown"
        assert lock.last_heartbeat == lock_name.created_at

    def test_heartbeat_never_before_creation(self):
        lock_name = parse_lock_name(make_lock_name(T0, "abc"))
        lock = ObservedLock(lock_name, LockRecord("a", None, T0 - timedelta(hours=1)))
        assert lock.last_heartbeat == lock_name.created_at

    def test_staleness_threshold(self):
        lock = observed(0, "abc")
        created = lock.created_at
        assert not lock.is_stale(created + timedelta(seconds=300), 300)
        assert lock.is_stale(created + timedelta(seconds=300.001), 300)

    def test_iso_round_trip(self):
        assert parse_iso(format_iso(T0)) == T0.replace(microsecond=123000)


class TestFindConflicts:
    """Tests for the acquisition conflict rule."""

    def test_lock_between_baseline_and_ours_conflicts(self):
        baseline = observed(0, "base")
        between = observed(1, "other")
        ours = observed(2, "mine")

        conflicts = find_conflicts([baseline, between, ours], ours.lock_name, baseline.name)

        assert conflicts == [between]

    def test_null_baseline_is_minus_infinity(self):
        earlier = observed(0, "other")
        ours = observed(2, "mine")
        assert find_conflicts([earlier, ours], ours.lock_name, None) == [earlier]

    def test_later_locks_do_not_conflict(self):
        ours = observed(0, "mine")
        later = observed(1, "other")
        assert find_conflicts([ours, later], ours.lock_name, None) == []

    def test_same_machine_ignored(self):
        ours = observed(2, "mine")
        old_own = observed(1, "mine")
        assert find_conflicts([old_own, ours], ours.lock_name, None) == []

    def test_conflicts_sorted_earliest_first(self):
        a, b = observed(1, "bbb"), observed(0.5, "aaa")
        ours = observed(2, "mine")
        assert find_conflicts([a, b, ours], ours.lock_name, None) == [b, a]


class TestLockSettings:
    """Tests for timing configuration."""

    def test_defaults(self):
        settings = LockSettings()
        assert settings.stale_threshold == 300
        assert settings.heartbeat_interval == 30
        assert settings.propagation_wait == 5
        assert settings.extended_check_delays == (10, 20, 30)

    def test_heartbeat_must_fit_stale_window(self):
        with pytest.raises(LockError):
            LockSettings(heartbeat_interval=100)

    def test_non_positive_rejected(self):
        with pytest.raises(LockError):
            LockSettings(stale_threshold=0)
        with pytest.raises(LockError):
            LockSettings(propagation_wait=-1)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HANDOFF_SYNC_PROPAGATION_SECONDS", "0.5")
        monkeypatch.setenv("HANDOFF_SYNC_STALE_SECONDS", "600")
        settings = LockSettings.from_env()
        assert settings.propagation_wait == 0.5
        assert settings.stale_threshold == 600
        assert settings.heartbeat_interval == 30

    def test_from_env_bad_value(self, monkeypatch):
        monkeypatch.setenv("HANDOFF_SYNC_HEARTBEAT_SECONDS", "often")
        with pytest.raises(LockError):
            LockSettings.from_env()
