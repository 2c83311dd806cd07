"""Error taxonomy for the replication engine.

Fatal conditions (DecodeError, HandlerError, SnapshotError, transport errors)
terminate ``Engine.run``.  StreamTimeoutError is fatal to the current run but
leaves the engine resumable.  ExcludedTableError and SyncTimeoutError are
returned to the immediate caller and never cross the run-loop boundary.
"""

from __future__ import annotations

from typing import Any


class CDCError(Exception):
    """Base class for every error raised by binlog_cdc."""


class ExcludedTableError(CDCError):
    """The table is filtered out by the include/exclude rules.

    This is a control-flow signal, distinct from TableNotFoundError: callers
    routinely branch on it.
    """

    def __init__(self, schema: str, table: str) -> None:
        self.schema = schema
        self.table = table
        super().__init__(f"table {schema}.{table} is excluded by the table filter")


class TableNotFoundError(CDCError):
    """The source has no metadata for the requested table."""

    def __init__(self, schema: str, table: str) -> None:
        self.schema = schema
        self.table = table
        super().__init__(f"table {schema}.{table} does not exist")


class SourceError(CDCError):
    """A query against the source database failed.

    ``code`` carries the MySQL error number when the server reported one.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(f"[{code}] {message}" if code is not None else message)


class DecodeError(CDCError):
    """A binlog record was malformed or uses an unsupported feature."""

    def __init__(self, message: str, *, position: Any = None) -> None:
        self.position = position
        if position is not None:
            message = f"{message} (at {position})"
        super().__init__(message)


class StreamTimeoutError(CDCError):
    """No byte arrived on the replication stream within the read timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"no replication data received within {timeout:g}s")


class HandlerError(CDCError):
    """An event handler capability raised; the cause is chained."""

    def __init__(self, capability: str, error: BaseException) -> None:
        self.capability = capability
        self.error = error
        super().__init__(f"handler {capability} failed: {error}")


class SnapshotError(CDCError):
    """The initial snapshot could not be completed."""


class SyncTimeoutError(CDCError):
    """``catch_position`` gave up before the target position was reached."""

    def __init__(self, target: Any, current: Any, timeout: float) -> None:
        self.target = target
        self.current = current
        self.timeout = timeout
        super().__init__(
            f"position {current} did not reach {target} within {timeout:g}s"
        )


class EngineClosedError(CDCError):
    """The engine was closed while the operation was pending."""


def is_excluded_table(error: BaseException | None) -> bool:
    """Return True if *error* or anything in its cause chain is an exclusion."""
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, ExcludedTableError):
            return True
        seen.add(id(error))
        error = error.__cause__ or error.__context__
    return False
