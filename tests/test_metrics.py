"""
test_metrics.py - Tests for counters and structured logging.
"""

import json
import logging

from handoff_sync.metrics import (
    JSONFormatter,
    MetricsRegistry,
    SyncLogger,
    lock_events_total,
    lock_owned,
)


class TestMetrics:
    """Tests for the in-process metrics registry."""

    def test_counter_labels(self):
        registry = MetricsRegistry(prefix="test")
        counter = registry.counter("things_total", "Things", labels=["kind"])

        counter.inc(kind="a")
        counter.inc(2, kind="a")
        counter.inc(kind="b")

        assert counter.get(kind="a") == 3
        assert counter.get(kind="b") == 1
        assert registry.counter("things_total", "Things", labels=["kind"]) is counter


class TestSyncLogger:
    """Tests for lock event logging."""

    def test_events_counted_and_logged(self, caplog):
        events = SyncLogger("handoff_sync.test")
        before = lock_events_total.get(event="acquired")

        with caplog.at_level(logging.INFO, logger="handoff_sync.test"):
            events.lock_acquired("m1", "lock-x.json")

        assert lock_events_total.get(event="acquired") == before + 1
        assert lock_owned.get(machine_id="m1") == 1
        assert caplog.records[-1].event == "lock_acquired"

        events.lock_released("m1", "lock-x.json")
        assert lock_owned.get(machine_id="m1") == 0


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_extra_fields_included(self):
        record = logging.LogRecord("handoff_sync", logging.WARNING, __file__, 1, "Lock rescinded", None, None)
        record.event = "lock_rescinded"
        record.reason = "conflict"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Lock rescinded"
        assert data["level"] == "WARNING"
        assert data["event"] == "lock_rescinded"
        assert data["reason"] == "conflict"
