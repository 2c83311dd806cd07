"""Typed binlog records produced by the decoder.

Reference: https://dev.mysql.com/doc/dev/mysql-server/latest/page_protocol_replication_binlog_event.html
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any

from binlog_cdc.schema.statement import DDLTarget

EVENT_HEADER_SIZE = 19
CHECKSUM_SIZE = 4


class EventType(IntEnum):
    UNKNOWN = 0
    START_V3 = 1
    QUERY = 2
    STOP = 3
    ROTATE = 4
    INTVAR = 5
    LOAD = 6
    SLAVE = 7
    CREATE_FILE = 8
    APPEND_BLOCK = 9
    EXEC_LOAD = 10
    DELETE_FILE = 11
    NEW_LOAD = 12
    RAND = 13
    USER_VAR = 14
    FORMAT_DESCRIPTION = 15
    XID = 16
    BEGIN_LOAD_QUERY = 17
    EXECUTE_LOAD_QUERY = 18
    TABLE_MAP = 19
    WRITE_ROWS_V0 = 20
    UPDATE_ROWS_V0 = 21
    DELETE_ROWS_V0 = 22
    WRITE_ROWS_V1 = 23
    UPDATE_ROWS_V1 = 24
    DELETE_ROWS_V1 = 25
    INCIDENT = 26
    HEARTBEAT = 27
    IGNORABLE = 28
    ROWS_QUERY = 29
    WRITE_ROWS_V2 = 30
    UPDATE_ROWS_V2 = 31
    DELETE_ROWS_V2 = 32
    GTID = 33
    ANONYMOUS_GTID = 34
    PREVIOUS_GTIDS = 35
    TRANSACTION_CONTEXT = 36
    VIEW_CHANGE = 37
    XA_PREPARE = 38
    PARTIAL_UPDATE_ROWS = 39
    TRANSACTION_PAYLOAD = 40
    HEARTBEAT_V2 = 41
    MARIADB_ANNOTATE_ROWS = 160
    MARIADB_BINLOG_CHECKPOINT = 161
    MARIADB_GTID = 162
    MARIADB_GTID_LIST = 163
    MARIADB_START_ENCRYPTION = 164


# Events that carry nothing the engine needs but are legitimately present in
# a ROW-format stream.  Anything not listed here and not decoded explicitly is
# an unsupported record.
IGNORED_EVENTS = frozenset(
    {
        EventType.START_V3,
        EventType.STOP,
        EventType.INTVAR,
        EventType.RAND,
        EventType.USER_VAR,
        EventType.IGNORABLE,
        EventType.ROWS_QUERY,
        EventType.ANONYMOUS_GTID,
        EventType.PREVIOUS_GTIDS,
        EventType.TRANSACTION_CONTEXT,
        EventType.VIEW_CHANGE,
        EventType.XA_PREPARE,
        EventType.MARIADB_ANNOTATE_ROWS,
        EventType.MARIADB_BINLOG_CHECKPOINT,
        EventType.MARIADB_GTID_LIST,
    }
)

# LOG_EVENT_IGNORABLE_F: the server marks events a replica may skip.
FLAG_IGNORABLE = 0x80


class ColumnTypeCode(IntEnum):
    """``enum_field_types`` as written to TABLE_MAP events."""

    DECIMAL = 0
    TINY = 1
    SHORT = 2
    LONG = 3
    FLOAT = 4
    DOUBLE = 5
    NULL = 6
    TIMESTAMP = 7
    LONGLONG = 8
    INT24 = 9
    DATE = 10
    TIME = 11
    DATETIME = 12
    YEAR = 13
    NEWDATE = 14
    VARCHAR = 15
    BIT = 16
    TIMESTAMP2 = 17
    DATETIME2 = 18
    TIME2 = 19
    TYPED_ARRAY = 20
    JSON = 245
    NEWDECIMAL = 246
    ENUM = 247
    SET = 248
    TINY_BLOB = 249
    MEDIUM_BLOB = 250
    LONG_BLOB = 251
    BLOB = 252
    VAR_STRING = 253
    STRING = 254
    GEOMETRY = 255


class RowAction(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class EventHeader:
    timestamp: int
    event_type: int
    server_id: int
    event_size: int
    log_pos: int
    flags: int

    @property
    def type_name(self) -> str:
        try:
            return EventType(self.event_type).name
        except ValueError:
            return f"UNKNOWN_{self.event_type}"


@dataclass(slots=True)
class FormatDescriptionRecord:
    header: EventHeader
    binlog_version: int
    server_version: str
    header_length: int
    checksum_enabled: bool


@dataclass(slots=True)
class RotateRecord:
    header: EventHeader
    next_name: str
    next_pos: int


@dataclass(slots=True)
class QueryRecord:
    """Non-DDL statement (BEGIN, COMMIT, SAVEPOINT, ...)."""

    header: EventHeader
    schema: str
    query: str
    error_code: int = 0


@dataclass(slots=True)
class DDLRecord:
    header: EventHeader
    schema: str
    query: str
    targets: tuple[DDLTarget, ...]


@dataclass(slots=True)
class XidRecord:
    header: EventHeader
    xid: int


@dataclass(slots=True)
class GtidRecord:
    header: EventHeader
    sid: str
    gno: int
    commit_flag: bool = True

    @property
    def gtid(self) -> str:
        return f"{self.sid}:{self.gno}"


@dataclass(slots=True)
class HeartbeatRecord:
    header: EventHeader
    log_name: str


@dataclass(slots=True)
class TableMapRecord:
    header: EventHeader
    table_id: int
    schema: str
    table: str
    column_types: tuple[int, ...]
    column_meta: tuple[int, ...]
    null_bitmap: bytes = b""


@dataclass(slots=True)
class RowsRecord:
    """One WRITE/UPDATE/DELETE rows event.

    For updates ``rows`` alternates before- and after-images.
    """

    header: EventHeader
    action: RowAction
    table_id: int
    schema: str
    table: str
    column_types: tuple[int, ...]
    rows: list[list[Any]] = field(default_factory=list)


@dataclass(slots=True)
class UnknownRecord:
    """An ignorable event; decoded only far enough to keep framing intact."""

    header: EventHeader


LogRecord = (
    FormatDescriptionRecord
    | RotateRecord
    | QueryRecord
    | DDLRecord
    | XidRecord
    | GtidRecord
    | HeartbeatRecord
    | TableMapRecord
    | RowsRecord
    | UnknownRecord
)
