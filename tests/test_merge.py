"""
test_merge.py - Tests for table-level comparison and merge of two copies.

Copies are made with the SQLite backup API so that both start from the
same rows, envelope columns included, as two synced copies would.
"""

import os

import pytest

from conftest import ASSIGNMENT_DDL, ASSIGNMENT_SPEC, insert_assignment
from handoff_sync.db import create_connection, install_sync_tracking
from handoff_sync.errors import MergeError
from handoff_sync.merge import (
    DEFAULT_REGISTRY,
    DivergenceKind,
    Resolution,
    TableSpec,
    analyze,
    analyze_tables,
    apply,
    generic_description,
)

ASSIGNMENTS = {"assignment": DEFAULT_REGISTRY["assignment"]}


@pytest.fixture
def copies(temp_dir):
    """Two identical copies of a database with two assignments."""
    mine = create_connection(os.path.join(temp_dir, "mine.db"))
    mine.execute(ASSIGNMENT_DDL)
    install_sync_tracking(mine, ASSIGNMENT_SPEC)
    insert_assignment(mine, "2024-01-02", 1, "AM")
    insert_assignment(mine, "2024-01-02", 2, "PM")

    theirs = create_connection(os.path.join(temp_dir, "theirs.db"))
    mine.backup(theirs)
    yield mine, theirs
    mine.close()
    theirs.close()


def all_rows(conn, table="assignment"):
    return [tuple(row) for row in conn.execute(f"SELECT * FROM {table} ORDER BY rowid")]


class TestAnalyze:
    """Tests for detecting and classifying divergence."""

    def test_identical_copies_have_no_diffs(self, copies):
        mine, theirs = copies
        assert analyze(mine, theirs, ASSIGNMENTS) == []

    def test_summary_counts_scanned_tables(self, copies):
        """Registered tables missing from the copies are skipped, not scanned."""
        mine, theirs = copies

        report = analyze_tables(mine, theirs)

        assert report.tables_scanned == 1
        assert report.diffs == []
        assert len(report.skipped) == len(DEFAULT_REGISTRY) - 1
        assert report.summary() == "1 tables scanned, 0 with differences"

    def test_rows_unique_to_each_side(self, copies):
        """New rows on either side make the table content-divergent."""
        mine, theirs = copies
        insert_assignment(mine, "2024-01-03", 9, "PM")
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        insert_assignment(theirs, "2024-01-05", 3, "AM")

        diffs = analyze(mine, theirs, ASSIGNMENTS)

        assert len(diffs) == 1
        diff = diffs[0]
        assert diff.table == "assignment"
        assert diff.label == "Daily Assignments"
        assert diff.kind is DivergenceKind.CONTENT_DIVERGENT
        assert (diff.my_count, diff.their_count) == (3, 4)
        assert (diff.mine_only_count, diff.theirs_only_count) == (1, 2)
        assert diff.mine_only_sample == ["person 9 on 2024-01-03 (PM)"]
        assert diff.resolution is Resolution.KEEP_MINE

    def test_edit_shows_on_both_sides(self, copies):
        """An edited row differs in content, so each side has one unique row."""
        mine, theirs = copies
        theirs.execute("UPDATE assignment SET segment = 'B' WHERE person_id = 2")

        diff = analyze(mine, theirs, ASSIGNMENTS)[0]

        assert diff.kind is DivergenceKind.CONTENT_DIVERGENT
        assert diff.my_count == diff.their_count == 2
        assert (diff.mine_only_count, diff.theirs_only_count) == (1, 1)

    def test_description_names_person(self, copies):
        mine, theirs = copies
        mine.execute("CREATE TABLE person (id INTEGER PRIMARY KEY, first_name TEXT, last_name TEXT)")
        mine.execute("INSERT INTO person VALUES (9, 'Ada', 'Lovelace')")
        insert_assignment(mine, "2024-01-03", 9, "PM")

        diff = analyze(mine, theirs, ASSIGNMENTS)[0]

        assert diff.mine_only_sample == ["Ada Lovelace on 2024-01-03 (PM)"]

    def test_tombstone_described_as_deleted(self, copies):
        mine, theirs = copies
        theirs.execute("DELETE FROM assignment WHERE person_id = 1")

        diff = analyze(mine, theirs, ASSIGNMENTS)[0]

        assert diff.theirs_only_sample == ["person 1 on 2024-01-02 (AM) (deleted)"]

    def test_samples_capped(self, copies):
        mine, theirs = copies
        for person_id in range(10, 15):
            insert_assignment(theirs, "2024-02-01", person_id, "AM")

        diff = analyze(mine, theirs, ASSIGNMENTS)[0]
        assert len(diff.theirs_only_sample) == 3
        assert diff.theirs_only_count == 5

        diff = analyze(mine, theirs, ASSIGNMENTS, sample_size=1)[0]
        assert len(diff.theirs_only_sample) == 1

    def test_duplicate_rows_are_count_only(self, copies):
        """Same distinct rows with different multiplicity is a count difference."""
        mine, theirs = copies
        for conn in (mine, theirs):
            conn.execute("CREATE TABLE note_log (text TEXT)")
            conn.execute("INSERT INTO note_log VALUES ('a'), ('b')")
        mine.execute("INSERT INTO note_log VALUES ('a')")

        diffs = analyze(mine, theirs, {"note_log": TableSpec("Notes", "Free-form notes")})

        assert diffs[0].kind is DivergenceKind.COUNT_ONLY
        assert diffs[0].mine_only_sample == []

    def test_count_only_table(self, copies):
        """With row comparison off, only a count change is reported."""
        mine, theirs = copies
        spec = {"assignment": TableSpec("Assignments", "", compare_rows=False)}
        theirs.execute("UPDATE assignment SET segment = 'B' WHERE person_id = 2")
        assert analyze(mine, theirs, spec) == []

        insert_assignment(theirs, "2024-01-03", 4, "AM")
        diffs = analyze(mine, theirs, spec)
        assert diffs[0].kind is DivergenceKind.COUNT_ONLY

    def test_compared_columns_restrict_hash(self, two_dbs):
        """Independently created copies match when only content columns are compared."""
        mine, theirs = two_dbs
        for conn in (mine, theirs):
            insert_assignment(conn, "2024-01-02", 1, "AM")
        content_only = {
            "assignment": TableSpec("Assignments", "", columns=("date", "person_id", "segment")),
        }

        assert analyze(mine, theirs, content_only) == []
        assert len(analyze(mine, theirs, ASSIGNMENTS)) == 1

    def test_missing_table_skipped(self, copies):
        mine, theirs = copies
        theirs.execute("CREATE TABLE timeoff (id INTEGER PRIMARY KEY)")
        registry = {"assignment": ASSIGNMENTS["assignment"], "timeoff": DEFAULT_REGISTRY["timeoff"]}

        report = analyze_tables(mine, theirs, registry)

        assert report.skipped == ["timeoff"]
        assert report.tables_scanned == 1

    def test_generic_description(self):
        assert generic_description("widget", {"id": 4}) == "widget row 4"
        assert generic_description("widget", {"sync_id": "abc"}) == "widget row abc"


class TestApply:
    """Tests for applying resolutions."""

    def test_keep_theirs_replaces_table(self, copies):
        """The table in our copy becomes an exact copy of theirs, tombstones included."""
        mine, theirs = copies
        insert_assignment(mine, "2024-01-03", 9, "PM")
        theirs.execute("DELETE FROM assignment WHERE person_id = 1")
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        diffs = analyze(mine, theirs, ASSIGNMENTS)

        replaced = apply(mine, theirs, diffs, {"assignment": "keep_theirs"})

        assert replaced == ["assignment"]
        assert all_rows(mine) == all_rows(theirs)
        assert analyze(mine, theirs, ASSIGNMENTS) == []

    def test_keep_mine_is_noop(self, copies):
        mine, theirs = copies
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        before = all_rows(mine)

        assert apply(mine, theirs, analyze(mine, theirs, ASSIGNMENTS)) == []
        assert all_rows(mine) == before

    def test_resolution_on_diff(self, copies):
        mine, theirs = copies
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        diffs = analyze(mine, theirs, ASSIGNMENTS)
        diffs[0].resolution = Resolution.KEEP_THEIRS

        assert apply(mine, theirs, diffs) == ["assignment"]
        assert len(all_rows(mine)) == 3

    def test_tracking_active_after_apply(self, copies):
        """Trigger suppression ends with the merge."""
        mine, theirs = copies
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        apply(mine, theirs, analyze(mine, theirs, ASSIGNMENTS), {"assignment": Resolution.KEEP_THEIRS})

        mine.execute("DELETE FROM assignment WHERE person_id = 3")

        row = mine.execute("SELECT deleted_at FROM assignment WHERE person_id = 3").fetchone()
        assert row["deleted_at"] is not None

    def test_failed_replacement_changes_nothing(self, copies):
        """If any table cannot be replaced, every table keeps its rows."""
        mine, theirs = copies
        mine.execute("CREATE TABLE note (id INTEGER PRIMARY KEY, body TEXT NOT NULL)")
        mine.execute("INSERT INTO note VALUES (1, 'kept')")
        theirs.execute("CREATE TABLE note (id INTEGER PRIMARY KEY, body TEXT)")
        theirs.execute("INSERT INTO note VALUES (1, NULL)")
        insert_assignment(theirs, "2024-01-04", 3, "AM")
        registry = {"assignment": ASSIGNMENTS["assignment"], "note": TableSpec("Notes", "")}
        diffs = analyze(mine, theirs, registry)
        assignments_before, notes_before = all_rows(mine), all_rows(mine, "note")

        with pytest.raises(MergeError):
            apply(mine, theirs, diffs, {"assignment": "keep_theirs", "note": "keep_theirs"})

        assert all_rows(mine) == assignments_before
        assert all_rows(mine, "note") == notes_before
