"""
config.py - Configuration constants for handoff_sync.

All defaults are immutable and defined at module level.
Tunable lock timings live in LockSettings, which starts from these
values and can be overridden per coordinator or from the environment.
"""

import os
from dataclasses import dataclass
from typing import Final

from handoff_sync.errors import LockError

# Lock timing defaults (seconds)
STALE_THRESHOLD_SECONDS: Final[float] = 300.0
HEARTBEAT_INTERVAL_SECONDS: Final[float] = 30.0
PROPAGATION_WAIT_SECONDS: Final[float] = 5.0
EXTENDED_CHECK_DELAYS_SECONDS: Final[tuple[float, ...]] = (10.0, 20.0, 30.0)

# Heartbeats must fit several times into the staleness window so that a
# slow sync layer can drop a few of them without the lock going stale
MIN_HEARTBEATS_PER_STALE_WINDOW: Final[int] = 5

# Lock file naming wire contract
LOCK_FILE_PREFIX: Final[str] = "lock-"
LOCK_FILE_SUFFIX: Final[str] = ".json"
LOCK_FILE_PATTERN: Final[str] = (
    r"^lock-(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z)-([A-Za-z0-9]+)\.json$"
)
LOCK_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H-%M-%S"
UNKNOWN_OWNER: Final[str] = "unknown"

# Sync-tracking envelope columns
SYNC_ID_COLUMN: Final[str] = "sync_id"
MODIFIED_AT_COLUMN: Final[str] = "modified_at"
MODIFIED_BY_COLUMN: Final[str] = "modified_by"
DELETED_AT_COLUMN: Final[str] = "deleted_at"
TRACKING_COLUMNS: Final[tuple[str, ...]] = (
    SYNC_ID_COLUMN,
    MODIFIED_AT_COLUMN,
    MODIFIED_BY_COLUMN,
    DELETED_AT_COLUMN,
)
ACTIVE_VIEW_SUFFIX: Final[str] = "_active"
SQL_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%fZ"
DEFAULT_MODIFIED_BY: Final[str] = "system"

# Metadata table and keys
META_TABLE: Final[str] = "meta"
META_KEY_SYNC_UUID: Final[str] = "sync_uuid"
META_KEY_LAST_CHECKPOINT: Final[str] = "last_checkpoint"
META_KEY_USER_EMAIL: Final[str] = "user_email"

# Solo-user checkpoint rule
CHECKPOINT_AFTER_DAYS: Final[int] = 3

# Merge reporting
DEFAULT_SAMPLE_SIZE: Final[int] = 3

# SQLite PRAGMA settings for tracked databases
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
    "busy_timeout": "5000",
}

# Tables that can never be sync-tracked
RESERVED_TABLE_NAMES: Final[frozenset[str]] = frozenset({META_TABLE})

# Environment overrides for LockSettings
ENV_STALE_SECONDS: Final[str] = "HANDOFF_SYNC_STALE_SECONDS"
ENV_HEARTBEAT_SECONDS: Final[str] = "HANDOFF_SYNC_HEARTBEAT_SECONDS"
ENV_PROPAGATION_SECONDS: Final[str] = "HANDOFF_SYNC_PROPAGATION_SECONDS"


@dataclass(frozen=True)
class LockSettings:
    """
    Timing configuration for the lock coordinator.

    The defaults are tuned to one consumer sync client's typical latency.
    They are a heuristic, not a bound: the lock is best-effort advisory
    locking.
    """
    stale_threshold: float = STALE_THRESHOLD_SECONDS
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS
    propagation_wait: float = PROPAGATION_WAIT_SECONDS
    extended_check_delays: tuple[float, ...] = EXTENDED_CHECK_DELAYS_SECONDS

    def __post_init__(self) -> None:
        if self.stale_threshold <= 0 or self.heartbeat_interval <= 0:
            raise LockError(
                "Lock timings must be positive",
                context={
                    "stale_threshold": self.stale_threshold,
                    "heartbeat_interval": self.heartbeat_interval,
                },
            )
        if self.propagation_wait < 0:
            raise LockError(
                "Propagation wait cannot be negative",
                context={"propagation_wait": self.propagation_wait},
            )
        if self.heartbeat_interval * MIN_HEARTBEATS_PER_STALE_WINDOW > self.stale_threshold:
            raise LockError(
                "Heartbeat interval must be well under the staleness threshold",
                context={
                    "heartbeat_interval": self.heartbeat_interval,
                    "stale_threshold": self.stale_threshold,
                },
            )

    @classmethod
    def from_env(cls) -> "LockSettings":
        """Build settings, letting HANDOFF_SYNC_* variables override defaults."""
        return cls(
            stale_threshold=_env_float(ENV_STALE_SECONDS, STALE_THRESHOLD_SECONDS),
            heartbeat_interval=_env_float(ENV_HEARTBEAT_SECONDS, HEARTBEAT_INTERVAL_SECONDS),
            propagation_wait=_env_float(ENV_PROPAGATION_SECONDS, PROPAGATION_WAIT_SECONDS),
        )


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise LockError(
            f"Environment variable {name} is not a number",
            context={"value": raw},
        ) from e
