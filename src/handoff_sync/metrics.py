"""
metrics.py - Observability for lock coordination and merges.

Provides:
- In-process counters and gauges with labels
- Structured JSON logging
- Event helpers that log and count lock and merge events
"""

import json
import logging
import os
import threading
from typing import Dict, List


# =============================================================================
# Metric Types
# =============================================================================

class Counter:
    """Prometheus-style counter metric."""

    def __init__(self, name: str, help_text: str, labels: List[str] = None):
        self.name = name
        self.help = help_text
        self.labels = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    def inc(self, value: float = 1, **label_values) -> None:
        """Increment counter."""
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def get(self, **label_values) -> float:
        """Get current value."""
        key = self._label_key(label_values)
        return self._values.get(key, 0)

    def _label_key(self, label_values: dict) -> tuple:
        return tuple(label_values.get(l, "") for l in self.labels)


class Gauge(Counter):
    """Prometheus-style gauge metric."""

    def set(self, value: float, **label_values) -> None:
        key = self._label_key(label_values)
        with self._lock:
            self._values[key] = value


# =============================================================================
# Metrics Registry
# =============================================================================

class MetricsRegistry:
    """Global metrics registry."""

    def __init__(self, prefix: str = "handoff_sync"):
        self.prefix = prefix
        self._metrics: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, labels: List[str] = None) -> Counter:
        """Register or get a counter metric."""
        return self._register(Counter, name, help_text, labels)

    def gauge(self, name: str, help_text: str, labels: List[str] = None) -> Gauge:
        """Register or get a gauge metric."""
        return self._register(Gauge, name, help_text, labels)

    def _register(self, cls, name, help_text, labels):
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._metrics:
                self._metrics[full_name] = cls(full_name, help_text, labels)
            return self._metrics[full_name]


_registry = MetricsRegistry()

lock_events_total = _registry.counter(
    "lock_events_total",
    "Lock coordinator events by type",
    labels=["event"],
)

merge_tables_total = _registry.counter(
    "merge_tables_total",
    "Tables compared by the merge engine, by divergence kind",
    labels=["kind"],
)

lock_owned = _registry.gauge(
    "lock_owned",
    "1 while this process holds the folder lock",
    labels=["machine_id"],
)


# =============================================================================
# Structured Logging
# =============================================================================

_RESERVED_RECORD_KEYS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName',
})


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self._hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self._hostname,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_KEYS:
                    log_data[key] = value

        return json.dumps(log_data, default=str)


class SyncLogger:
    """
    Structured logger for lock and merge events.

    Every event is logged with an "event" extra field and counted.
    """

    def __init__(self, name: str = "handoff_sync"):
        self._logger = logging.getLogger(name)

    def lock_acquired(self, machine_id: str, lock_name: str, adopted: bool = False) -> None:
        self._logger.info(
            f"Lock acquired: {lock_name}" + (" (adopted)" if adopted else ""),
            extra={"event": "lock_acquired", "machine_id": machine_id, "lock_name": lock_name},
        )
        lock_events_total.inc(event="acquired")
        lock_owned.set(1, machine_id=machine_id)

    def lock_denied(self, machine_id: str, held_by: str | None, reason: str) -> None:
        self._logger.info(
            f"Lock denied ({reason}), held by {held_by}",
            extra={"event": "lock_denied", "machine_id": machine_id, "held_by": held_by, "reason": reason},
        )
        lock_events_total.inc(event="denied")

    def lock_rescinded(self, machine_id: str, lock_name: str | None, reason: str) -> None:
        self._logger.warning(
            f"Lock rescinded: {reason}",
            extra={"event": "lock_rescinded", "machine_id": machine_id, "lock_name": lock_name, "reason": reason},
        )
        lock_events_total.inc(event="rescinded")
        lock_owned.set(0, machine_id=machine_id)

    def lock_released(self, machine_id: str, lock_name: str | None) -> None:
        self._logger.info(
            "Lock released",
            extra={"event": "lock_released", "machine_id": machine_id, "lock_name": lock_name},
        )
        lock_events_total.inc(event="released")
        lock_owned.set(0, machine_id=machine_id)

    def heartbeat_failed(self, machine_id: str, error: str) -> None:
        self._logger.warning(
            f"Heartbeat failed: {error}",
            extra={"event": "heartbeat_failed", "machine_id": machine_id, "error": error},
        )
        lock_events_total.inc(event="heartbeat_failed")

    def force_unlock(self, machine_id: str, deleted: list[str]) -> None:
        self._logger.warning(
            f"Force unlock deleted {len(deleted)} lock file(s)",
            extra={"event": "force_unlock", "machine_id": machine_id, "deleted": deleted},
        )
        lock_events_total.inc(event="force_unlock")
        lock_owned.set(0, machine_id=machine_id)

    def merge_analyzed(self, scanned: int, differing: int, skipped: int) -> None:
        self._logger.info(
            f"Merge analysis: {scanned} tables scanned, {differing} with differences",
            extra={"event": "merge_analyzed", "scanned": scanned, "differing": differing, "skipped": skipped},
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str = None
) -> None:
    """
    Configure logging for production.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting
        log_file: Optional log file path
    """
    handlers = []

    console = logging.StreamHandler()
    if json_format:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    handlers.append(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers
    )
