"""Binlog v4 event decoder.

Frames a raw byte stream into events and decodes each into a typed record:

- FORMAT_DESCRIPTION: announces the checksum algorithm
- ROTATE: switches to the next binlog file
- QUERY: BEGIN/COMMIT markers and DDL statements
- XID: transaction commit
- GTID: id of the transaction that follows
- TABLE_MAP: column layout for the rows events that follow
- WRITE/UPDATE/DELETE ROWS (v1, v2): row images
- HEARTBEAT: source liveness, never moves the position

The decoder owns the stream position.  It only moves after an event has been
completely decoded, and never backwards.

Reference: https://dev.mysql.com/doc/dev/mysql-server/latest/page_protocol_replication_binlog_event.html
"""

from __future__ import annotations

import zlib
from collections.abc import Iterator

import structlog

from binlog_cdc.errors import DecodeError
from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.schema.statement import parse_ddl
from binlog_cdc.sources.binlog.events import (
    CHECKSUM_SIZE,
    EVENT_HEADER_SIZE,
    FLAG_IGNORABLE,
    IGNORED_EVENTS,
    DDLRecord,
    EventHeader,
    EventType,
    FormatDescriptionRecord,
    GtidRecord,
    HeartbeatRecord,
    LogRecord,
    QueryRecord,
    RotateRecord,
    RowAction,
    RowsRecord,
    TableMapRecord,
    UnknownRecord,
    XidRecord,
)
from binlog_cdc.sources.binlog.rows import PacketReader, decode_row, read_column_meta

logger = structlog.get_logger()

BINLOG_MAGIC = b"\xfebin"

# Table id used by "dummy" rows events that only carry the end-of-statement flag.
_DUMMY_TABLE_ID = 0x00FFFFFF

_ROWS_EVENTS: dict[int, tuple[RowAction, int]] = {
    EventType.WRITE_ROWS_V1: (RowAction.INSERT, 1),
    EventType.UPDATE_ROWS_V1: (RowAction.UPDATE, 1),
    EventType.DELETE_ROWS_V1: (RowAction.DELETE, 1),
    EventType.WRITE_ROWS_V2: (RowAction.INSERT, 2),
    EventType.UPDATE_ROWS_V2: (RowAction.UPDATE, 2),
    EventType.DELETE_ROWS_V2: (RowAction.DELETE, 2),
}

_BINLOG_CHECKSUM_ALG_CRC32 = 1


def _server_version_tuple(version: str) -> tuple[int, ...]:
    digits = []
    for part in version.split("-", 1)[0].split(".")[:3]:
        num = "".join(ch for ch in part if ch.isdigit())
        digits.append(int(num) if num else 0)
    return tuple(digits)


def _parse_header(data: bytes) -> EventHeader:
    reader = PacketReader(data)
    return EventHeader(
        timestamp=reader.u32(),
        event_type=reader.u8(),
        server_id=reader.u32(),
        event_size=reader.u32(),
        log_pos=reader.u32(),
        flags=reader.u16(),
    )


class BinlogDecoder:
    """Stateful decoder for the binlog v4 event stream.

    ``checksum`` forces the CRC32 trailer on (True) or off (False); None
    follows whatever the FORMAT_DESCRIPTION event announces.
    """

    def __init__(
        self,
        position: BinlogPosition | None = None,
        *,
        checksum: bool | None = None,
        gtid_set: GtidSet | None = None,
    ) -> None:
        self._position = position or BinlogPosition("", 4)
        self._checksum_forced = checksum
        self._checksum = bool(checksum)
        self._gtid_set = gtid_set or GtidSet()
        self._pending_gtid: GtidRecord | None = None
        self._table_maps: dict[int, TableMapRecord] = {}
        self._buffer = bytearray()
        self._started = False

    @property
    def position(self) -> BinlogPosition:
        return self._position

    @property
    def gtid_set(self) -> GtidSet:
        return self._gtid_set

    @property
    def checksum_enabled(self) -> bool:
        return self._checksum

    @property
    def buffered(self) -> int:
        """Bytes of an incomplete event waiting for more input."""
        return len(self._buffer)

    def set_checksum(self, enabled: bool) -> None:
        self._checksum_forced = enabled
        self._checksum = enabled

    def feed(self, data: bytes) -> Iterator[tuple[LogRecord, BinlogPosition]]:
        """Frame *data* into events and yield ``(record, position)`` pairs.

        Incomplete trailing bytes are kept until the next call.  The yielded
        position is the one reached after the record was consumed.
        """
        self._buffer.extend(data)
        if not self._started:
            # The magic can only open a file; later bytes are event data.
            if len(self._buffer) < len(BINLOG_MAGIC):
                return
            if self._buffer[:4] == BINLOG_MAGIC:
                del self._buffer[:4]
            self._started = True
        while len(self._buffer) >= EVENT_HEADER_SIZE:
            size = int.from_bytes(self._buffer[9:13], "little")
            if size < EVENT_HEADER_SIZE:
                msg = f"event size {size} is smaller than the header"
                raise DecodeError(msg, position=self._position)
            if len(self._buffer) < size:
                return
            event = bytes(self._buffer[:size])
            del self._buffer[:size]
            yield self.decode_event(event)

    def decode_event(self, event: bytes) -> tuple[LogRecord, BinlogPosition]:
        """Decode one complete event and advance the position past it."""
        if len(event) < EVENT_HEADER_SIZE:
            msg = f"truncated event header ({len(event)} bytes)"
            raise DecodeError(msg, position=self._position)
        header = _parse_header(event)
        if header.event_size != len(event):
            msg = (
                f"{header.type_name} event size mismatch: header says "
                f"{header.event_size}, got {len(event)} bytes"
            )
            raise DecodeError(msg, position=self._position)

        if header.event_type == EventType.FORMAT_DESCRIPTION:
            body = event[EVENT_HEADER_SIZE:]
        else:
            body = self._verify_checksum(header, event)

        try:
            record = self._decode_body(header, body)
        except DecodeError as exc:
            if exc.position is None:
                raise DecodeError(str(exc), position=self._position) from exc
            raise
        self._advance(record)
        return record, self._position

    def _verify_checksum(self, header: EventHeader, event: bytes) -> bytes:
        if not self._checksum:
            return event[EVENT_HEADER_SIZE:]
        if len(event) < EVENT_HEADER_SIZE + CHECKSUM_SIZE:
            msg = f"{header.type_name} event too short for its checksum"
            raise DecodeError(msg, position=self._position)
        expected = int.from_bytes(event[-CHECKSUM_SIZE:], "little")
        actual = zlib.crc32(event[:-CHECKSUM_SIZE]) & 0xFFFFFFFF
        if expected != actual:
            msg = (
                f"{header.type_name} checksum mismatch: "
                f"expected 0x{expected:08x}, computed 0x{actual:08x}"
            )
            raise DecodeError(msg, position=self._position)
        return event[EVENT_HEADER_SIZE:-CHECKSUM_SIZE]

    def _decode_body(self, header: EventHeader, body: bytes) -> LogRecord:
        event_type = header.event_type
        reader = PacketReader(body)

        if event_type == EventType.FORMAT_DESCRIPTION:
            return self._decode_format_description(header, body)
        if event_type == EventType.ROTATE:
            next_pos = reader.u64()
            return RotateRecord(header, reader.rest().decode(), next_pos)
        if event_type == EventType.QUERY:
            return self._decode_query(header, reader)
        if event_type == EventType.XID:
            return XidRecord(header, reader.u64())
        if event_type == EventType.GTID:
            commit_flag = reader.u8() == 1
            sid = reader.read(16).hex()
            sid = f"{sid[:8]}-{sid[8:12]}-{sid[12:16]}-{sid[16:20]}-{sid[20:]}"
            return GtidRecord(header, sid, reader.u64(), commit_flag)
        if event_type == EventType.MARIADB_GTID:
            # MariaDB GTIDs (domain-server-seq) are not representable as a GtidSet.
            return UnknownRecord(header)
        if event_type == EventType.TABLE_MAP:
            return self._decode_table_map(header, reader)
        if event_type in _ROWS_EVENTS:
            action, version = _ROWS_EVENTS[event_type]
            return self._decode_rows(header, reader, action, version)
        if event_type == EventType.HEARTBEAT:
            return HeartbeatRecord(header, reader.rest().decode(errors="replace"))
        if event_type == EventType.HEARTBEAT_V2:
            return HeartbeatRecord(header, "")
        if event_type in IGNORED_EVENTS or header.flags & FLAG_IGNORABLE:
            return UnknownRecord(header)

        msg = f"unsupported binlog event {header.type_name}"
        raise DecodeError(msg)

    def _decode_format_description(
        self, header: EventHeader, body: bytes
    ) -> FormatDescriptionRecord:
        reader = PacketReader(body)
        binlog_version = reader.u16()
        server_version = reader.read(50).rstrip(b"\x00").decode(errors="replace")
        reader.skip(4)  # create timestamp
        header_length = reader.u8()

        checksum = False
        if _server_version_tuple(server_version) >= (5, 6, 1):
            # ... post-header lengths, checksum algorithm (1 byte), checksum (4 bytes)
            if len(body) < CHECKSUM_SIZE + 1:
                raise DecodeError("truncated FORMAT_DESCRIPTION event")
            checksum = body[-CHECKSUM_SIZE - 1] == _BINLOG_CHECKSUM_ALG_CRC32
        if self._checksum_forced is None:
            self._checksum = checksum
        logger.debug(
            "decoder.format_description",
            server_version=server_version,
            checksum=self._checksum,
        )
        return FormatDescriptionRecord(
            header, binlog_version, server_version, header_length, checksum
        )

    def _decode_query(
        self, header: EventHeader, reader: PacketReader
    ) -> QueryRecord | DDLRecord:
        reader.skip(4)  # thread id
        reader.skip(4)  # execution time
        schema_length = reader.u8()
        error_code = reader.u16()
        status_vars_length = reader.u16()
        reader.skip(status_vars_length)
        schema = reader.read(schema_length).decode(errors="replace")
        reader.skip(1)
        query = reader.rest().decode(errors="replace")

        targets = parse_ddl(query, schema)
        if targets:
            return DDLRecord(header, schema, query, tuple(targets))
        return QueryRecord(header, schema, query, error_code)

    def _decode_table_map(
        self, header: EventHeader, reader: PacketReader
    ) -> TableMapRecord:
        table_id = reader.uint(6)
        reader.skip(2)  # flags
        schema = reader.read(reader.u8()).decode()
        reader.skip(1)
        table = reader.read(reader.u8()).decode()
        reader.skip(1)
        column_count = reader.lenenc()
        column_types = tuple(reader.read(column_count))
        meta_length = reader.lenenc()
        meta_reader = PacketReader(reader.read(meta_length))
        column_meta = read_column_meta(meta_reader, column_types)
        null_bitmap = reader.read((column_count + 7) // 8)
        # Optional metadata (binlog_row_metadata=FULL) is ignored.
        record = TableMapRecord(
            header, table_id, schema, table, column_types, column_meta, null_bitmap
        )
        self._table_maps[table_id] = record
        return record

    def _decode_rows(
        self,
        header: EventHeader,
        reader: PacketReader,
        action: RowAction,
        version: int,
    ) -> RowsRecord | UnknownRecord:
        table_id = reader.uint(6)
        reader.skip(2)  # flags
        if version == 2:
            extra_length = reader.u16()
            reader.skip(max(extra_length - 2, 0))

        if table_id == _DUMMY_TABLE_ID:
            return UnknownRecord(header)
        table_map = self._table_maps.get(table_id)
        if table_map is None:
            msg = f"{header.type_name} refers to unknown table id {table_id}"
            raise DecodeError(msg)

        column_count = reader.lenenc()
        if column_count != len(table_map.column_types):
            msg = (
                f"{header.type_name} for {table_map.schema}.{table_map.table} has "
                f"{column_count} columns, table map has {len(table_map.column_types)}"
            )
            raise DecodeError(msg)
        bitmap_size = (column_count + 7) // 8
        present = reader.read(bitmap_size)
        present_after = reader.read(bitmap_size) if action == RowAction.UPDATE else present

        rows = []
        while reader.remaining > 0:
            rows.append(
                decode_row(reader, table_map.column_types, table_map.column_meta, present)
            )
            if action == RowAction.UPDATE:
                rows.append(
                    decode_row(
                        reader,
                        table_map.column_types,
                        table_map.column_meta,
                        present_after,
                    )
                )
        return RowsRecord(
            header,
            action,
            table_id,
            table_map.schema,
            table_map.table,
            table_map.column_types,
            rows,
        )

    def _advance(self, record: LogRecord) -> None:
        header = record.header
        if isinstance(record, HeartbeatRecord):
            return
        if isinstance(record, RotateRecord):
            target = BinlogPosition(record.next_name, record.next_pos)
            # Fake rotates at connection start repeat the current file.
            if not self._position.name or target >= self._position:
                if target.name != self._position.name:
                    logger.info("decoder.rotate", previous=str(self._position), next=str(target))
                    self._table_maps.clear()
                self._position = target
            return

        if isinstance(record, GtidRecord):
            self._pending_gtid = record
        elif isinstance(record, XidRecord) or (
            isinstance(record, (QueryRecord, DDLRecord))
            and record.query.strip().upper() != "BEGIN"
        ):
            self._commit_gtid()

        if header.log_pos > self._position.pos and self._position.name:
            self._position = self._position.with_offset(header.log_pos)

    def _commit_gtid(self) -> None:
        if self._pending_gtid is not None:
            pending, self._pending_gtid = self._pending_gtid, None
            self._gtid_set = self._gtid_set.add(pending.sid, pending.gno)
