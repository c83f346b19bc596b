"""
analyze.py - Table-level comparison of two database copies.

Each registered table is compared by row count and by per-row content
hash. A row whose hash appears in only one copy is "unique" to that
copy. The outcome per table is one of:

    content_divergent   some row exists in only one copy
    count_only          same distinct rows, different counts
                        (or a count-only table with different counts)
    none                identical; omitted from the result

Merging is deliberately coarse: the person resolving picks a whole
table from one side.
"""

import logging
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from handoff_sync.config import DEFAULT_SAMPLE_SIZE
from handoff_sync.db.connection import get_columns, table_exists
from handoff_sync.errors import ValidationError
from handoff_sync.merge.registry import DEFAULT_REGISTRY, TableSpec, describe
from handoff_sync.metrics import SyncLogger, merge_tables_total
from handoff_sync.utils.hashing import row_hash

logger = logging.getLogger(__name__)
events = SyncLogger(__name__)


class DivergenceKind(str, Enum):
    NONE = "none"
    COUNT_ONLY = "count_only"
    CONTENT_DIVERGENT = "content_divergent"


class Resolution(str, Enum):
    KEEP_MINE = "keep_mine"
    KEEP_THEIRS = "keep_theirs"


@dataclass
class TableDiff:
    table: str
    label: str
    description: str
    my_count: int
    their_count: int
    kind: DivergenceKind
    mine_only_sample: list[str] = field(default_factory=list)
    theirs_only_sample: list[str] = field(default_factory=list)
    mine_only_count: int = 0
    theirs_only_count: int = 0
    resolution: Resolution = Resolution.KEEP_MINE

    @property
    def has_differences(self) -> bool:
        return self.kind is not DivergenceKind.NONE


@dataclass
class MergeReport:
    diffs: list[TableDiff]
    tables_scanned: int
    skipped: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return f"{self.tables_scanned} tables scanned, {len(self.diffs)} with differences"

    def get(self, table: str) -> TableDiff | None:
        return next((d for d in self.diffs if d.table == table), None)


def analyze(
    mine: sqlite3.Connection,
    theirs: sqlite3.Connection,
    registry: Mapping[str, TableSpec] = DEFAULT_REGISTRY,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> list[TableDiff]:
    """Return the diffs of registered tables that differ, in registry order."""
    return analyze_tables(mine, theirs, registry, sample_size).diffs


def analyze_tables(
    mine: sqlite3.Connection,
    theirs: sqlite3.Connection,
    registry: Mapping[str, TableSpec] = DEFAULT_REGISTRY,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> MergeReport:
    """
    Compare every registered table present in both copies.

    A table missing from either copy, or one that fails to compare, is
    skipped with a warning and does not stop the others.
    """
    diffs: list[TableDiff] = []
    skipped: list[str] = []
    scanned = 0

    for table, spec in registry.items():
        if not (table_exists(mine, table) and table_exists(theirs, table)):
            logger.warning(f"Skipping {table}: not present in both databases")
            skipped.append(table)
            continue
        try:
            diff = _compare_table(mine, theirs, table, spec, sample_size)
        except (sqlite3.Error, ValidationError) as e:
            logger.warning(f"Could not compare table {table}: {e}")
            skipped.append(table)
            continue

        scanned += 1
        merge_tables_total.inc(kind=diff.kind.value)
        if diff.has_differences:
            diffs.append(diff)

    report = MergeReport(diffs=diffs, tables_scanned=scanned, skipped=skipped)
    events.merge_analyzed(scanned, len(diffs), len(skipped))
    return report


def _compare_table(
    mine: sqlite3.Connection,
    theirs: sqlite3.Connection,
    table: str,
    spec: TableSpec,
    sample_size: int,
) -> TableDiff:
    my_rows = _fetch_rows(mine, table)
    their_rows = _fetch_rows(theirs, table)
    diff = TableDiff(
        table=table,
        label=spec.label,
        description=spec.description,
        my_count=len(my_rows),
        their_count=len(their_rows),
        kind=DivergenceKind.NONE,
    )

    if not spec.compare_rows:
        if diff.my_count != diff.their_count:
            diff.kind = DivergenceKind.COUNT_ONLY
        return diff

    if spec.columns is not None:
        columns = list(spec.columns)
    else:
        columns = sorted(set(get_columns(mine, table)) | set(get_columns(theirs, table)))

    my_hashes = [row_hash(row, columns) for row in my_rows]
    their_hashes = [row_hash(row, columns) for row in their_rows]
    my_set, their_set = set(my_hashes), set(their_hashes)

    mine_only = [row for row, h in zip(my_rows, my_hashes) if h not in their_set]
    theirs_only = [row for row, h in zip(their_rows, their_hashes) if h not in my_set]
    diff.mine_only_count = len(mine_only)
    diff.theirs_only_count = len(theirs_only)

    if mine_only or theirs_only:
        diff.kind = DivergenceKind.CONTENT_DIVERGENT
    elif Counter(my_hashes) != Counter(their_hashes):
        # Same distinct rows, different multiplicities
        diff.kind = DivergenceKind.COUNT_ONLY

    diff.mine_only_sample = [describe(table, spec, row, mine) for row in mine_only[:sample_size]]
    diff.theirs_only_sample = [describe(table, spec, row, theirs) for row in theirs_only[:sample_size]]
    return diff


def _fetch_rows(conn: sqlite3.Connection, table: str) -> list[dict[str, Any]]:
    cursor = conn.execute(f'SELECT * FROM "{table}"')
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]
