"""
errors.py - Domain-specific exceptions for handoff_sync.

All exceptions inherit from SyncError for unified handling.
Each exception type represents a distinct failure mode.

Note: lock contention is NOT an error. A denied acquire or a failed
verify is a normal outcome the caller must branch on.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all handoff_sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class StoreError(SyncError):
    """
    Raised when a shared folder operation fails.

    These are usually transient (permission hiccups, I/O errors while the
    sync client holds the file). Callers inside the lock coordinator log
    them and retry on the next cycle.
    """

    def __init__(
        self, message: str, operation: str | None = None, entry: str | None = None
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if entry is not None:
            context["entry"] = entry
        super().__init__(message, context=context)
        self.operation = operation
        self.entry = entry


class LockError(SyncError):
    """Raised when the lock coordinator is misused (e.g. bad settings)."""


class ForceUnlockError(LockError):
    """
    Raised when a forced unlock could not delete every lock file.

    Force unlock is an explicit, human-invoked recovery step, so partial
    success must be visible to the operator.
    """

    def __init__(self, message: str, remaining: list[str]) -> None:
        super().__init__(message, context={"remaining": remaining})
        self.remaining = remaining


class SchemaError(SyncError):
    """
    Raised when the sync metadata contract is not met.

    This includes missing tracking columns, missing active views
    or tables that cannot be tracked.
    """

    def __init__(self, message: str, expected: Any = None, actual: Any = None) -> None:
        context = {}
        if expected is not None:
            context["expected"] = expected
        if actual is not None:
            context["actual"] = actual
        super().__init__(message, context=context)
        self.expected = expected
        self.actual = actual


class DatabaseError(SyncError):
    """
    Raised when a database operation fails unexpectedly.

    This wraps SQLite errors with additional context about
    what operation was being attempted.
    """

    def __init__(
        self, message: str, operation: str | None = None, sql: str | None = None
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if sql is not None:
            context["sql"] = sql[:200] + "..." if len(sql) > 200 else sql
        super().__init__(message, context=context)
        self.operation = operation
        self.sql = sql


class ValidationError(SyncError):
    """
    Raised when input validation fails.

    This includes malformed lock file names, unsafe table names
    or values that don't meet expected constraints.
    """

    def __init__(
        self, message: str, field: str | None = None, value: Any = None
    ) -> None:
        context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = repr(value)[:100]
        super().__init__(message, context=context)
        self.field = field
        self.value = value


class MergeError(SyncError):
    """Raised when applying a merge resolution fails."""

    def __init__(self, message: str, table_name: str | None = None) -> None:
        context = {}
        if table_name is not None:
            context["table_name"] = table_name
        super().__init__(message, context=context)
        self.table_name = table_name
