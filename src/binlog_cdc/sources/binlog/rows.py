"""Row-image decoding for ROWS events.

Values are decoded from the binary row format using the column type codes and
metadata carried by the preceding TABLE_MAP event.  Integers are decoded as
signed; unsigned columns are fixed up later against TableMeta, which knows the
declared signedness.  String and blob payloads stay ``bytes`` for the same
reason (only TableMeta knows whether a column is text or binary).
"""

from __future__ import annotations

import struct
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from binlog_cdc.errors import DecodeError
from binlog_cdc.sources.binlog.events import ColumnTypeCode as T

ZERO_DATE = "0000-00-00"
ZERO_DATETIME = "0000-00-00 00:00:00"


def datetime_or_text(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    micros: int = 0,
) -> datetime | str:
    """A datetime, or MySQL's text form for dates like 2020-02-31 that
    ALLOW_INVALID_DATES lets through."""
    try:
        return datetime(year, month, day, hour, minute, second, micros)
    except ValueError:
        text = f"{year:04d}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}:{second:02d}"
        return f"{text}.{micros:06d}" if micros else text


_DIG_PER_DEC = 9
_COMPRESSED_BYTES = (0, 1, 1, 2, 2, 3, 3, 4, 4, 4)


class PacketReader:
    """Cursor over an event body; every read is bounds-checked."""

    __slots__ = ("data", "offset")

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, n: int) -> bytes:
        if n < 0 or self.offset + n > len(self.data):
            msg = f"truncated event: need {n} bytes at offset {self.offset}, have {self.remaining}"
            raise DecodeError(msg)
        chunk = self.data[self.offset : self.offset + n]
        self.offset += n
        return chunk

    def skip(self, n: int) -> None:
        self.read(n)

    def uint(self, n: int) -> int:
        return int.from_bytes(self.read(n), "little")

    def sint(self, n: int) -> int:
        return int.from_bytes(self.read(n), "little", signed=True)

    def uint_be(self, n: int) -> int:
        return int.from_bytes(self.read(n), "big")

    def u8(self) -> int:
        return self.uint(1)

    def u16(self) -> int:
        return self.uint(2)

    def u32(self) -> int:
        return self.uint(4)

    def u64(self) -> int:
        return self.uint(8)

    def lenenc(self) -> int:
        """Length-encoded integer."""
        first = self.u8()
        if first < 0xFB:
            return first
        if first == 0xFC:
            return self.uint(2)
        if first == 0xFD:
            return self.uint(3)
        if first == 0xFE:
            return self.uint(8)
        msg = f"invalid length-encoded integer prefix 0x{first:02x}"
        raise DecodeError(msg)

    def cstring(self) -> bytes:
        end = self.data.find(b"\x00", self.offset)
        if end < 0:
            raise DecodeError("unterminated string")
        value = self.data[self.offset : end]
        self.offset = end + 1
        return value

    def rest(self) -> bytes:
        return self.read(self.remaining)


def read_column_meta(reader: PacketReader, column_types: tuple[int, ...]) -> tuple[int, ...]:
    """Decode the TABLE_MAP metadata block into one integer per column."""
    meta = []
    for code in column_types:
        if code in (T.STRING, T.NEWDECIMAL):
            # real type / precision in the first byte, length / scale in the second
            meta.append(reader.uint_be(2))
        elif code in (T.VAR_STRING, T.VARCHAR, T.BIT):
            meta.append(reader.u16())
        elif code in (
            T.BLOB,
            T.DOUBLE,
            T.FLOAT,
            T.GEOMETRY,
            T.JSON,
            T.TIME2,
            T.DATETIME2,
            T.TIMESTAMP2,
        ):
            meta.append(reader.u8())
        elif code in (T.NEWDATE, T.ENUM, T.SET, T.TINY_BLOB, T.MEDIUM_BLOB, T.LONG_BLOB):
            msg = f"column type {code} is not expected in a table map"
            raise DecodeError(msg)
        else:
            meta.append(0)
    return tuple(meta)


def _fractional_seconds(reader: PacketReader, fsp: int) -> int:
    """Read TIME2/DATETIME2/TIMESTAMP2 fractional part as microseconds."""
    size = (fsp + 1) // 2
    if size == 0:
        return 0
    value = reader.uint_be(size)
    return value * 10 ** (6 - size * 2)


def _decode_decimal(reader: PacketReader, precision: int, scale: int) -> Decimal:
    integral = precision - scale
    uncomp_integral, comp_integral = divmod(integral, _DIG_PER_DEC)
    uncomp_fractional, comp_fractional = divmod(scale, _DIG_PER_DEC)
    size = (
        _COMPRESSED_BYTES[comp_integral]
        + uncomp_integral * 4
        + uncomp_fractional * 4
        + _COMPRESSED_BYTES[comp_fractional]
    )
    buf = bytearray(reader.read(size))
    if not buf:
        return Decimal(0)
    negative = not buf[0] & 0x80
    buf[0] ^= 0x80
    if negative:
        buf = bytearray(b ^ 0xFF for b in buf)
    sub = PacketReader(bytes(buf))

    parts: list[str] = []
    if _COMPRESSED_BYTES[comp_integral]:
        parts.append(str(sub.uint_be(_COMPRESSED_BYTES[comp_integral])))
    for _ in range(uncomp_integral):
        parts.append(f"{sub.uint_be(4):09d}")
    integer = "".join(parts).lstrip("0") or "0"

    fraction = "".join(f"{sub.uint_be(4):09d}" for _ in range(uncomp_fractional))
    if _COMPRESSED_BYTES[comp_fractional]:
        value = sub.uint_be(_COMPRESSED_BYTES[comp_fractional])
        fraction += f"{value:0{comp_fractional}d}"

    text = f"{'-' if negative else ''}{integer}"
    if fraction:
        text += f".{fraction}"
    return Decimal(text)


def _decode_datetime2(reader: PacketReader, fsp: int) -> datetime | str:
    packed = reader.uint_be(5) - 0x8000000000
    micros = _fractional_seconds(reader, fsp)
    ymd = packed >> 17
    ym = ymd >> 5
    hms = packed % (1 << 17)
    year, month = divmod(ym, 13)
    day = ymd % (1 << 5)
    hour = hms >> 12
    minute = (hms >> 6) % (1 << 6)
    second = hms % (1 << 6)
    if year == 0 or month == 0 or day == 0:
        return ZERO_DATETIME
    return datetime_or_text(year, month, day, hour, minute, second, micros)


def _decode_time2(reader: PacketReader, fsp: int) -> timedelta:
    # See my_time_packed_from_binary() in the server sources.
    if fsp in (5, 6):
        packed = reader.uint_be(6) - 0x800000000000
    else:
        intpart = reader.uint_be(3) - 0x800000
        frac = 0
        if fsp in (1, 2):
            frac = int.from_bytes(reader.read(1), "big", signed=True)
            if intpart < 0 and frac:
                intpart += 1
                frac -= 0x100
            frac *= 10000
        elif fsp in (3, 4):
            frac = int.from_bytes(reader.read(2), "big", signed=True)
            if intpart < 0 and frac:
                intpart += 1
                frac -= 0x10000
            frac *= 100
        packed = (intpart << 24) + frac
    sign = -1 if packed < 0 else 1
    packed = abs(packed)
    hms = packed >> 24
    micros = packed % (1 << 24)
    hours = (hms >> 12) % (1 << 10)
    minutes = (hms >> 6) % (1 << 6)
    seconds = hms % (1 << 6)
    return sign * timedelta(
        hours=hours, minutes=minutes, seconds=seconds, microseconds=micros
    )


def _decode_date(reader: PacketReader) -> date | str:
    value = reader.uint(3)
    day = value & 31
    month = (value >> 5) & 15
    year = value >> 9
    if year == 0 or month == 0 or day == 0:
        return ZERO_DATE
    try:
        return date(year, month, day)
    except ValueError:
        return f"{year:04d}-{month:02d}-{day:02d}"


def _decode_datetime_v1(reader: PacketReader) -> datetime | str:
    value = reader.u64()
    if value == 0:
        return ZERO_DATETIME
    d, t = divmod(value, 1000000)
    year, rem = divmod(d, 10000)
    month, day = divmod(rem, 100)
    hour, rem = divmod(t, 10000)
    minute, second = divmod(rem, 100)
    return datetime_or_text(year, month, day, hour, minute, second)


def _decode_time_v1(reader: PacketReader) -> timedelta:
    value = reader.sint(3)
    sign = -1 if value < 0 else 1
    hours, rem = divmod(abs(value), 10000)
    minutes, seconds = divmod(rem, 100)
    return sign * timedelta(hours=hours, minutes=minutes, seconds=seconds)


def _string_length(code: int, meta: int) -> tuple[int, int]:
    """Resolve the real type and max length packed into STRING metadata."""
    if code != T.STRING or meta < 256:
        return code, meta
    b0, b1 = meta >> 8, meta & 0xFF
    if b0 & 0x30 != 0x30:
        return b0 | 0x30, b1 | (((b0 & 0x30) ^ 0x30) << 4)
    return b0, b1


def decode_value(reader: PacketReader, code: int, meta: int) -> Any:
    """Decode a single non-NULL column value."""
    code, length = _string_length(code, meta)

    if code == T.TINY:
        return reader.sint(1)
    if code == T.SHORT:
        return reader.sint(2)
    if code == T.INT24:
        return reader.sint(3)
    if code == T.LONG:
        return reader.sint(4)
    if code == T.LONGLONG:
        return reader.sint(8)
    if code == T.FLOAT:
        return struct.unpack("<f", reader.read(4))[0]
    if code == T.DOUBLE:
        return struct.unpack("<d", reader.read(8))[0]
    if code == T.NEWDECIMAL:
        return _decode_decimal(reader, meta >> 8, meta & 0xFF)
    if code == T.YEAR:
        year = reader.u8()
        return 0 if year == 0 else year + 1900
    if code in (T.DATE, T.NEWDATE):
        return _decode_date(reader)
    if code == T.DATETIME:
        return _decode_datetime_v1(reader)
    if code == T.DATETIME2:
        return _decode_datetime2(reader, meta)
    if code == T.TIMESTAMP:
        return datetime.fromtimestamp(reader.u32(), tz=UTC)
    if code == T.TIMESTAMP2:
        seconds = reader.uint_be(4)
        micros = _fractional_seconds(reader, meta)
        return datetime.fromtimestamp(seconds, tz=UTC) + timedelta(microseconds=micros)
    if code == T.TIME:
        return _decode_time_v1(reader)
    if code == T.TIME2:
        return _decode_time2(reader, meta)
    if code == T.BIT:
        nbits = (meta >> 8) * 8 + (meta & 0xFF)
        return reader.uint_be((nbits + 7) // 8)
    if code == T.ENUM:
        return reader.uint(length)
    if code == T.SET:
        return reader.uint(length)
    if code in (T.VARCHAR, T.VAR_STRING):
        size = reader.u8() if length < 256 else reader.u16()
        return reader.read(size)
    if code == T.STRING:
        size = reader.u8() if length < 256 else reader.u16()
        return reader.read(size)
    if code in (T.BLOB, T.GEOMETRY, T.JSON):
        return reader.read(reader.uint(meta))
    if code in (T.TINY_BLOB, T.MEDIUM_BLOB, T.LONG_BLOB):
        return reader.read(reader.uint(meta or 4))

    msg = f"unsupported column type {code}"
    raise DecodeError(msg)


def bit_count(bitmap: bytes) -> int:
    return sum(bin(b).count("1") for b in bitmap)


def bit_set(bitmap: bytes, index: int) -> bool:
    return bool(bitmap[index >> 3] & (1 << (index & 7)))


def decode_row(
    reader: PacketReader,
    column_types: tuple[int, ...],
    column_meta: tuple[int, ...],
    present: bytes,
) -> list[Any]:
    """Decode one row image; absent columns come back as None."""
    count = len(column_types)
    null_bitmap = reader.read((bit_count(present) + 7) // 8)
    row: list[Any] = [None] * count
    present_index = 0
    for i in range(count):
        if not bit_set(present, i):
            continue
        if not bit_set(null_bitmap, present_index):
            row[i] = decode_value(reader, column_types[i], column_meta[i])
        present_index += 1
    return row
