"""
record.py - Lock record contents and observed lock files.

The file contents are a JSON object:

    {"user": "...", "lastSeenLock": "lock-...json" | null, "lastHeartbeat": "ISO8601"}

A file name can become visible before its contents have propagated, so
an observed lock may have no readable record. Such a lock is owned by
"unknown" and its heartbeat is the creation time embedded in its name.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta

from handoff_sync.config import UNKNOWN_OWNER
from handoff_sync.errors import ValidationError
from handoff_sync.lock.naming import LockName, format_iso, parse_iso


@dataclass(frozen=True, slots=True)
class LockRecord:
    user: str
    last_seen_lock: str | None
    last_heartbeat: datetime

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "user": self.user,
                "lastSeenLock": self.last_seen_lock,
                "lastHeartbeat": format_iso(self.last_heartbeat),
            },
            indent=2,
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "LockRecord":
        try:
            obj = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Lock file is not valid JSON: {e}", field="contents") from e

        if not isinstance(obj, dict):
            raise ValidationError("Lock file must hold a JSON object", field="contents", value=obj)

        user = obj.get("user")
        last_seen = obj.get("lastSeenLock")
        heartbeat = obj.get("lastHeartbeat")
        if not isinstance(user, str) or not isinstance(heartbeat, str):
            raise ValidationError("Lock file is missing user or lastHeartbeat", field="contents", value=obj)
        if last_seen is not None and not isinstance(last_seen, str):
            raise ValidationError("lastSeenLock must be a string or null", field="lastSeenLock", value=last_seen)

        return cls(user=user, last_seen_lock=last_seen, last_heartbeat=parse_iso(heartbeat))


@dataclass(frozen=True, slots=True)
class ObservedLock:
    """A lock file as seen in one listing of the shared folder."""
    lock_name: LockName
    record: LockRecord | None

    @property
    def name(self) -> str:
        return self.lock_name.name

    @property
    def created_at(self) -> datetime:
        return self.lock_name.created_at

    @property
    def machine_id(self) -> str:
        return self.lock_name.machine_id

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return self.lock_name.sort_key

    @property
    def owner(self) -> str:
        return self.record.user if self.record is not None else UNKNOWN_OWNER

    @property
    def last_heartbeat(self) -> datetime:
        if self.record is None:
            return self.created_at
        # A heartbeat can never predate the claim itself
        return max(self.record.last_heartbeat, self.created_at)

    def is_stale(self, now: datetime, stale_threshold: float) -> bool:
        return now - self.last_heartbeat > timedelta(seconds=stale_threshold)
