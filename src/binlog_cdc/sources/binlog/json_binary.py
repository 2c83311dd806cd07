"""Decoder for MySQL's binary JSON storage format.

JSON columns are written to ROWS events in the server's internal binary
representation rather than as text.

Reference: https://dev.mysql.com/doc/dev/mysql-server/latest/json__binary_8h.html
"""

from __future__ import annotations

import struct
from datetime import date, datetime, timedelta
from typing import Any

from binlog_cdc.errors import DecodeError
from binlog_cdc.sources.binlog.events import ColumnTypeCode
from binlog_cdc.sources.binlog.rows import PacketReader, datetime_or_text, decode_value

SMALL_OBJECT = 0x00
LARGE_OBJECT = 0x01
SMALL_ARRAY = 0x02
LARGE_ARRAY = 0x03
LITERAL = 0x04
INT16 = 0x05
UINT16 = 0x06
INT32 = 0x07
UINT32 = 0x08
INT64 = 0x09
UINT64 = 0x0A
DOUBLE = 0x0B
STRING = 0x0C
OPAQUE = 0x0F

_LITERALS = {0x00: None, 0x01: True, 0x02: False}


def _inlined(value_type: int, large: bool) -> bool:
    if value_type in (LITERAL, INT16, UINT16):
        return True
    return large and value_type in (INT32, UINT32)


def _varlen(data: bytes, offset: int) -> tuple[int, int]:
    """Read a variable-length size; returns (value, bytes consumed)."""
    value = 0
    for i in range(5):
        if offset + i >= len(data):
            raise DecodeError("truncated JSON length")
        byte = data[offset + i]
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value, i + 1
    raise DecodeError("JSON length does not fit in 32 bits")


def _unpack_datetime(packed: int) -> datetime | str:
    intpart = packed >> 24
    micros = packed % (1 << 24)
    ymd = intpart >> 17
    ym = ymd >> 5
    hms = intpart % (1 << 17)
    year, month = divmod(ym, 13)
    day = ymd % (1 << 5)
    if year == 0 or month == 0 or day == 0:
        return "0000-00-00 00:00:00"
    return datetime_or_text(
        year, month, day, hms >> 12, (hms >> 6) % (1 << 6), hms % (1 << 6), micros
    )


def _decode_opaque(field_type: int, data: bytes) -> Any:
    if field_type == ColumnTypeCode.NEWDECIMAL:
        precision, scale = data[0], data[1]
        return decode_value(
            PacketReader(data[2:]), ColumnTypeCode.NEWDECIMAL, precision << 8 | scale
        )
    if field_type in (
        ColumnTypeCode.DATE,
        ColumnTypeCode.DATETIME,
        ColumnTypeCode.TIMESTAMP,
        ColumnTypeCode.TIME,
    ):
        (packed,) = struct.unpack("<q", data[:8])
        if field_type == ColumnTypeCode.TIME:
            sign = -1 if packed < 0 else 1
            packed = abs(packed)
            hms = packed >> 24
            return sign * timedelta(
                hours=(hms >> 12) % (1 << 10),
                minutes=(hms >> 6) % (1 << 6),
                seconds=hms % (1 << 6),
                microseconds=packed % (1 << 24),
            )
        value = _unpack_datetime(packed)
        if field_type == ColumnTypeCode.DATE and isinstance(value, datetime):
            return date(value.year, value.month, value.day)
        return value
    return data


class _JsonReader:
    def __init__(self, data: bytes) -> None:
        self.data = data

    def _check(self, offset: int, size: int) -> None:
        if offset < 0 or offset + size > len(self.data):
            raise DecodeError("JSON value extends past the end of the column")

    def _uint(self, offset: int, size: int) -> int:
        self._check(offset, size)
        return int.from_bytes(self.data[offset : offset + size], "little")

    def _sint(self, offset: int, size: int) -> int:
        self._check(offset, size)
        return int.from_bytes(self.data[offset : offset + size], "little", signed=True)

    def value(self, value_type: int, offset: int) -> Any:
        if value_type in (SMALL_OBJECT, LARGE_OBJECT):
            return self.container(offset, large=value_type == LARGE_OBJECT, is_object=True)
        if value_type in (SMALL_ARRAY, LARGE_ARRAY):
            return self.container(offset, large=value_type == LARGE_ARRAY, is_object=False)
        if value_type == LITERAL:
            literal = self._uint(offset, 1)
            if literal not in _LITERALS:
                raise DecodeError(f"invalid JSON literal 0x{literal:02x}")
            return _LITERALS[literal]
        if value_type == INT16:
            return self._sint(offset, 2)
        if value_type == UINT16:
            return self._uint(offset, 2)
        if value_type == INT32:
            return self._sint(offset, 4)
        if value_type == UINT32:
            return self._uint(offset, 4)
        if value_type == INT64:
            return self._sint(offset, 8)
        if value_type == UINT64:
            return self._uint(offset, 8)
        if value_type == DOUBLE:
            self._check(offset, 8)
            return struct.unpack_from("<d", self.data, offset)[0]
        if value_type == STRING:
            length, consumed = _varlen(self.data, offset)
            start = offset + consumed
            self._check(start, length)
            return self.data[start : start + length].decode("utf-8")
        if value_type == OPAQUE:
            self._check(offset, 1)
            field_type = self.data[offset]
            length, consumed = _varlen(self.data, offset + 1)
            start = offset + 1 + consumed
            self._check(start, length)
            return _decode_opaque(field_type, self.data[start : start + length])
        raise DecodeError(f"unknown JSON value type 0x{value_type:02x}")

    def container(self, offset: int, *, large: bool, is_object: bool) -> Any:
        size = 4 if large else 2
        count = self._uint(offset, size)
        total = self._uint(offset + size, size)
        self._check(offset, total)
        header = offset + 2 * size

        keys: list[str] = []
        if is_object:
            for i in range(count):
                entry = header + i * (size + 2)
                key_offset = self._uint(entry, size)
                key_length = self._uint(entry + size, 2)
                start = offset + key_offset
                self._check(start, key_length)
                keys.append(self.data[start : start + key_length].decode("utf-8"))
            header += count * (size + 2)

        values = []
        for i in range(count):
            entry = header + i * (size + 1)
            value_type = self._uint(entry, 1)
            if _inlined(value_type, large):
                values.append(self.value(value_type, entry + 1))
            else:
                values.append(self.value(value_type, offset + self._uint(entry + 1, size)))

        if is_object:
            return dict(zip(keys, values, strict=True))
        return values


def decode_json(data: bytes) -> Any:
    """Decode a binary JSON column value into Python objects."""
    if not data:
        return None
    return _JsonReader(data).value(data[0], 1)
