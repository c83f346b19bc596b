"""
schema.py - Schema definitions for sync metadata and tracked tables.

Defines the meta key/value table and the DDL templates that make up
the sync-tracking envelope of a user-data table:

- sync_id, modified_at, modified_by, deleted_at columns
- insert/update triggers that stamp sync_id, modified_at, modified_by
- a BEFORE DELETE trigger that turns deletes into tombstones
- a <table>_active view and a partial unique index on the natural key
"""

from dataclasses import dataclass
from typing import Final

from handoff_sync.config import META_KEY_USER_EMAIL, META_TABLE, SQL_TIMESTAMP_FORMAT

META_SCHEMA: Final[str] = f"""
CREATE TABLE IF NOT EXISTS {META_TABLE} (
    key TEXT PRIMARY KEY,
    value TEXT
)
"""

# SQL expressions shared by the trigger templates
SQL_NOW: Final[str] = f"strftime('{SQL_TIMESTAMP_FORMAT}', 'now')"

SQL_UUID_V4: Final[str] = (
    "lower(hex(randomblob(4)) || '-' || hex(randomblob(2)) || '-4' || "
    "substr(hex(randomblob(2)), 2) || '-' || "
    "substr('89ab', abs(random()) % 4 + 1, 1) || substr(hex(randomblob(2)), 2) || '-' || "
    "hex(randomblob(6)))"
)

SQL_CURRENT_USER: Final[str] = (
    f"(SELECT value FROM {META_TABLE} WHERE key = '{META_KEY_USER_EMAIL}')"
)

INSERT_TRIGGER_TEMPLATE: Final[str] = """
CREATE TRIGGER {table_name}_insert_sync
AFTER INSERT ON {table_name}
FOR EACH ROW
WHEN sync_is_disabled() = 0 AND (NEW.sync_id IS NULL OR NEW.modified_at IS NULL)
BEGIN
    UPDATE {table_name} SET
        sync_id = COALESCE(NEW.sync_id, {uuid}),
        modified_at = COALESCE(NEW.modified_at, {now}),
        modified_by = COALESCE(NEW.modified_by, {current_user}, '{default_user}')
    WHERE rowid = NEW.rowid;
END
"""

# Fires only when the application did not stamp modified_at itself, and
# not for the stamping UPDATE issued by the insert trigger (sync_id changes)
UPDATE_TRIGGER_TEMPLATE: Final[str] = """
CREATE TRIGGER {table_name}_update_sync
AFTER UPDATE ON {table_name}
FOR EACH ROW
WHEN sync_is_disabled() = 0
    AND NEW.modified_at IS OLD.modified_at
    AND NEW.sync_id IS OLD.sync_id
BEGIN
    UPDATE {table_name} SET
        modified_at = {now},
        modified_by = COALESCE({current_user}, '{default_user}')
    WHERE rowid = NEW.rowid;
END
"""

# Deleting an active row tombstones it; deleting a tombstone purges it
SOFT_DELETE_TRIGGER_TEMPLATE: Final[str] = """
CREATE TRIGGER {table_name}_soft_delete
BEFORE DELETE ON {table_name}
FOR EACH ROW
WHEN sync_is_disabled() = 0 AND OLD.deleted_at IS NULL
BEGIN
    UPDATE {table_name} SET
        deleted_at = {now},
        modified_at = {now},
        modified_by = COALESCE({current_user}, '{default_user}')
    WHERE rowid = OLD.rowid;
    SELECT RAISE(IGNORE);
END
"""

ACTIVE_VIEW_TEMPLATE: Final[str] = """
CREATE VIEW {view_name} AS
SELECT {columns} FROM {table_name} WHERE deleted_at IS NULL
"""

ACTIVE_UNIQUE_INDEX_TEMPLATE: Final[str] = """
CREATE UNIQUE INDEX {table_name}_active_unique
ON {table_name}({key_columns}) WHERE deleted_at IS NULL
"""

DELETED_AT_INDEX_TEMPLATE: Final[str] = """
CREATE INDEX IF NOT EXISTS {table_name}_deleted_at_idx ON {table_name}(deleted_at)
"""


def trigger_names(table_name: str) -> tuple[str, str, str]:
    return (
        f"{table_name}_insert_sync",
        f"{table_name}_update_sync",
        f"{table_name}_soft_delete",
    )


@dataclass(frozen=True)
class SyncTableSpec:
    """
    A user-data table to put under sync tracking.

    Args:
        name: Table name
        natural_key: Columns that identify a live row. Uniqueness is
            enforced among active rows only, so a tombstone never blocks
            re-creating the same record.
    """
    name: str
    natural_key: tuple[str, ...] = ()


# User-data tables of the scheduling application, with the natural keys
# its schema enforces among active rows
SYNCED_TABLES: Final[tuple[SyncTableSpec, ...]] = (
    SyncTableSpec("person"),
    SyncTableSpec("assignment"),
    SyncTableSpec("training", ("person_id", "role_id")),
    SyncTableSpec("training_rotation"),
    SyncTableSpec("training_area_override"),
    SyncTableSpec("monthly_default", ("month", "person_id", "segment")),
    SyncTableSpec("monthly_default_day"),
    SyncTableSpec("monthly_default_week"),
    SyncTableSpec("monthly_default_note"),
    SyncTableSpec("timeoff"),
    SyncTableSpec("availability_override"),
    SyncTableSpec("needs_baseline", ("group_id", "role_id", "segment")),
    SyncTableSpec("needs_override"),
    SyncTableSpec("competency"),
    SyncTableSpec("person_quality"),
    SyncTableSpec("person_skill"),
    SyncTableSpec("department_event"),
)


def is_synced_table(table_name: str) -> bool:
    return any(spec.name == table_name for spec in SYNCED_TABLES)
