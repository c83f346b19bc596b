"""
registry.py - Which tables the merge engine compares, and how rows read.

A registry maps table names to TableSpec. Row descriptions are what a
person sees when deciding between "keep mine" and "keep theirs", so
they name people and dates rather than ids where the data allows.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from handoff_sync.config import DELETED_AT_COLUMN, SYNC_ID_COLUMN

logger = logging.getLogger(__name__)

Row = dict[str, Any]
RowDescriber = Callable[[Row, "sqlite3.Connection | None"], str]


@dataclass(frozen=True)
class TableSpec:
    """
    Merge settings for one table.

    Args:
        label: Short human-readable name
        description: What the table holds
        describe_row: Renders one row for display; may query conn
        columns: Columns compared by content hash (default: all shared)
        compare_rows: False compares row counts only
    """
    label: str
    description: str
    describe_row: RowDescriber | None = None
    columns: tuple[str, ...] | None = None
    compare_rows: bool = True


def generic_description(table: str, row: Row) -> str:
    ident = row.get("id")
    if ident is None:
        ident = row.get(SYNC_ID_COLUMN)
    return f"{table} row {ident}"


def describe(table: str, spec: TableSpec | None, row: Row, conn: sqlite3.Connection | None) -> str:
    """Describe a row for display, marking tombstones."""
    text = None
    if spec is not None and spec.describe_row is not None:
        try:
            text = spec.describe_row(row, conn)
        except (sqlite3.Error, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Row description failed for {table}: {e}")
    if not text:
        text = generic_description(table, row)
    if row.get(DELETED_AT_COLUMN) is not None:
        text += " (deleted)"
    return text


def _person_name(row: Row, conn: sqlite3.Connection | None) -> str:
    person_id = row.get("person_id")
    if conn is not None and person_id is not None:
        try:
            found = conn.execute(
                "SELECT first_name, last_name FROM person WHERE id = ?", (person_id,)
            ).fetchone()
        except sqlite3.Error:
            found = None
        if found is not None:
            return f"{found[0]} {found[1]}"
    return f"person {person_id}"


def _describe_assignment(row: Row, conn) -> str:
    return f"{_person_name(row, conn)} on {row['date']} ({row.get('segment')})"


def _describe_timeoff(row: Row, conn) -> str:
    return f"{_person_name(row, conn)}: {row['start_ts']} to {row['end_ts']}"


def _describe_availability_override(row: Row, conn) -> str:
    return f"{_person_name(row, conn)} on {row['date']}: {row.get('avail')}"


def _describe_monthly_default(row: Row, conn) -> str:
    return f"{_person_name(row, conn)}, {row['month']} {row.get('segment')}"


def _describe_monthly_default_day(row: Row, conn) -> str:
    return f"{_person_name(row, conn)}, {row['month']} weekday {row['weekday']} {row.get('segment')}"


def _describe_monthly_default_week(row: Row, conn) -> str:
    return f"{_person_name(row, conn)}, {row['month']} week {row['week_number']} {row.get('segment')}"


# High-conflict scheduling tables
DEFAULT_REGISTRY: Mapping[str, TableSpec] = {
    "assignment": TableSpec(
        "Daily Assignments", "Who's assigned where each day", _describe_assignment
    ),
    "timeoff": TableSpec(
        "Time Off", "Vacation and leave entries", _describe_timeoff
    ),
    "availability_override": TableSpec(
        "Availability Overrides", "Per-day availability changes", _describe_availability_override
    ),
    "monthly_default": TableSpec(
        "Monthly Defaults", "Default monthly assignments", _describe_monthly_default
    ),
    "monthly_default_day": TableSpec(
        "Monthly Weekday Overrides", "Weekday-specific defaults", _describe_monthly_default_day
    ),
    "monthly_default_week": TableSpec(
        "Monthly Week Overrides", "Week-specific defaults", _describe_monthly_default_week
    ),
}
