"""
naming.py - Lock file naming wire contract.

Lock files are named lock-<timestamp>-<machineId>.json, where the
timestamp is ISO 8601 UTC with millisecond precision and the ':' and '.'
replaced by '-' so the name is safe on every file system, e.g.

    lock-2024-01-01T00-00-00-000Z-aaa111.json

Names sort lexicographically in creation order. Other tooling may parse
these names, so the format must remain stable.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Final

from handoff_sync.config import (
    LOCK_FILE_PATTERN,
    LOCK_FILE_PREFIX,
    LOCK_FILE_SUFFIX,
    LOCK_TIMESTAMP_FORMAT,
)
from handoff_sync.errors import ValidationError
from handoff_sync.identity import validate_machine_id

LOCK_FILE_RE: Final[re.Pattern[str]] = re.compile(LOCK_FILE_PATTERN)


@dataclass(frozen=True, slots=True)
class LockName:
    """A parsed lock file name."""
    name: str
    created_at: datetime
    machine_id: str

    @property
    def sort_key(self) -> tuple[datetime, str]:
        # Earliest timestamp first; equal timestamps fall back to the full name
        return (self.created_at, self.name)


def truncate_to_millis(dt: datetime) -> datetime:
    """Drop sub-millisecond precision and normalize to UTC."""
    dt = _as_utc(dt)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def format_lock_timestamp(dt: datetime) -> str:
    """Format a datetime as the file-name-safe timestamp used in lock names."""
    dt = truncate_to_millis(dt)
    return f"{dt.strftime(LOCK_TIMESTAMP_FORMAT)}-{dt.microsecond // 1000:03d}Z"


def parse_lock_timestamp(text: str) -> datetime:
    """Inverse of format_lock_timestamp."""
    try:
        base, millis = text[:-1].rsplit("-", 1)
        dt = datetime.strptime(base, LOCK_TIMESTAMP_FORMAT)
        return dt.replace(microsecond=int(millis) * 1000, tzinfo=timezone.utc)
    except ValueError as e:
        raise ValidationError(
            f"Invalid lock timestamp: {e}", field="timestamp", value=text
        ) from e


def make_lock_name(created_at: datetime, machine_id: str) -> str:
    """Build the lock file name for a claimant starting at created_at."""
    validate_machine_id(machine_id)
    return f"{LOCK_FILE_PREFIX}{format_lock_timestamp(created_at)}-{machine_id}{LOCK_FILE_SUFFIX}"


def parse_lock_name(name: str) -> LockName | None:
    """
    Parse a folder entry name.

    Returns:
        LockName, or None if the entry is not a lock file (including
        copies the sync layer renamed on conflict)
    """
    match = LOCK_FILE_RE.match(name)
    if match is None:
        return None
    try:
        created_at = parse_lock_timestamp(match.group(1))
    except ValidationError:
        return None
    return LockName(name=name, created_at=created_at, machine_id=match.group(2))


def format_iso(dt: datetime) -> str:
    """ISO 8601 UTC with milliseconds, as used inside lock files."""
    dt = truncate_to_millis(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(text: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    try:
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return _as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid ISO timestamp: {e}", field="timestamp", value=text) from e


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
