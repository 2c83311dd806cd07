"""Unit tests for binary row-image value decoding."""

from __future__ import annotations

import struct
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from binlog_cdc.errors import DecodeError
from binlog_cdc.sources.binlog.events import ColumnTypeCode as T
from binlog_cdc.sources.binlog.rows import (
    ZERO_DATE,
    ZERO_DATETIME,
    PacketReader,
    decode_row,
    decode_value,
    read_column_meta,
)


def _decode(data: bytes, code: int, meta: int = 0) -> object:
    reader = PacketReader(data)
    value = decode_value(reader, code, meta)
    assert reader.remaining == 0
    return value


def _datetime2(dt: datetime) -> bytes:
    ym = dt.year * 13 + dt.month
    ymd = (ym << 5) | dt.day
    hms = (dt.hour << 12) | (dt.minute << 6) | dt.second
    return ((ymd << 17 | hms) + 0x8000000000).to_bytes(5, "big")


class TestPacketReader:
    def test_lenenc(self):
        reader = PacketReader(b"\x05\xfc\x00\x01\xfd\x01\x00\x01")
        assert reader.lenenc() == 5
        assert reader.lenenc() == 256
        assert reader.lenenc() == 65537

    def test_invalid_lenenc_prefix(self):
        with pytest.raises(DecodeError, match="length-encoded"):
            PacketReader(b"\xff").lenenc()

    def test_read_past_end_raises(self):
        reader = PacketReader(b"\x01\x02")
        with pytest.raises(DecodeError, match="need 4 bytes"):
            reader.u32()

    def test_cstring(self):
        reader = PacketReader(b"abc\x00rest")
        assert reader.cstring() == b"abc"
        assert reader.rest() == b"rest"


class TestColumnMeta:
    def test_meta_per_type(self):
        types = (T.LONG, T.VARCHAR, T.NEWDECIMAL, T.BLOB, T.DATETIME2, T.STRING)
        data = (
            struct.pack("<H", 1020)  # varchar max bytes
            + bytes([10, 2])  # decimal precision, scale
            + bytes([2])  # blob length bytes
            + bytes([3])  # fsp
            + bytes([0xFE, 40])  # real type, length
        )
        meta = read_column_meta(PacketReader(data), types)
        assert meta == (0, 1020, 10 << 8 | 2, 2, 3, 0xFE << 8 | 40)

    def test_unexpected_type_raises(self):
        with pytest.raises(DecodeError):
            read_column_meta(PacketReader(b""), (T.ENUM,))


class TestIntegers:
    @pytest.mark.parametrize(
        ("code", "data", "expected"),
        [
            (T.TINY, b"\xff", -1),
            (T.SHORT, struct.pack("<h", -300), -300),
            (T.INT24, (-5).to_bytes(3, "little", signed=True), -5),
            (T.LONG, struct.pack("<i", 123456), 123456),
            (T.LONGLONG, struct.pack("<q", -(2**40)), -(2**40)),
        ],
    )
    def test_signed(self, code, data, expected):
        assert _decode(data, code) == expected

    def test_year(self):
        assert _decode(bytes([124]), T.YEAR) == 2024
        assert _decode(bytes([0]), T.YEAR) == 0


class TestDecimal:
    def test_positive(self):
        data = bytes.fromhex("810DFB38D204D2")
        assert _decode(data, T.NEWDECIMAL, 14 << 8 | 4) == Decimal("1234567890.1234")

    def test_negative(self):
        data = bytes.fromhex("7EF204C72DFB2D")
        assert _decode(data, T.NEWDECIMAL, 14 << 8 | 4) == Decimal("-1234567890.1234")


class TestFloats:
    def test_double(self):
        assert _decode(struct.pack("<d", 2.5), T.DOUBLE, 8) == 2.5

    def test_float(self):
        assert _decode(struct.pack("<f", 0.5), T.FLOAT, 4) == 0.5


class TestTemporal:
    def test_datetime2(self):
        dt = datetime(2024, 1, 2, 3, 4, 5)
        assert _decode(_datetime2(dt), T.DATETIME2, 0) == dt

    def test_datetime2_with_fraction(self):
        dt = datetime(2024, 1, 2, 3, 4, 5)
        data = _datetime2(dt) + (123456).to_bytes(3, "big")
        assert _decode(data, T.DATETIME2, 6) == dt.replace(microsecond=123456)

    def test_zero_datetime2(self):
        assert _decode((0x8000000000).to_bytes(5, "big"), T.DATETIME2, 0) == ZERO_DATETIME

    def test_timestamp2_is_utc(self):
        value = _decode(struct.pack(">I", 1_700_000_000), T.TIMESTAMP2, 0)
        assert value == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert value.tzinfo is UTC

    def test_date(self):
        packed = (2024 << 9) | (3 << 5) | 15
        assert _decode(packed.to_bytes(3, "little"), T.DATE) == date(2024, 3, 15)

    def test_zero_date(self):
        assert _decode(bytes(3), T.DATE) == ZERO_DATE

    def test_invalid_calendar_date_kept_as_text(self):
        packed = (2020 << 9) | (2 << 5) | 31
        assert _decode(packed.to_bytes(3, "little"), T.DATE) == "2020-02-31"

    def test_invalid_calendar_datetime2_kept_as_text(self):
        ymd = ((2020 * 13 + 2) << 5) | 31
        hms = (10 << 12) | (30 << 6)
        data = ((ymd << 17 | hms) + 0x8000000000).to_bytes(5, "big")
        assert _decode(data, T.DATETIME2, 0) == "2020-02-31 10:30:00"

    def test_invalid_calendar_legacy_datetime(self):
        data = struct.pack("<Q", 20200231235959)
        assert _decode(data, T.DATETIME) == "2020-02-31 23:59:59"

    def test_time2(self):
        intpart = (12 << 12 | 34 << 6 | 56) + 0x800000
        value = _decode(intpart.to_bytes(3, "big"), T.TIME2, 0)
        assert value == timedelta(hours=12, minutes=34, seconds=56)

    def test_negative_time2(self):
        intpart = -(1 << 12) + 0x800000
        value = _decode(intpart.to_bytes(3, "big"), T.TIME2, 0)
        assert value == -timedelta(hours=1)

    def test_legacy_datetime(self):
        data = struct.pack("<Q", 20240102030405)
        assert _decode(data, T.DATETIME) == datetime(2024, 1, 2, 3, 4, 5)


class TestStrings:
    def test_short_varchar(self):
        assert _decode(b"\x03abc", T.VARCHAR, 255) == b"abc"

    def test_long_varchar_uses_two_byte_length(self):
        payload = b"x" * 300
        assert _decode(struct.pack("<H", 300) + payload, T.VARCHAR, 1020) == payload

    def test_char(self):
        assert _decode(b"\x02hi", T.STRING, 0xFE << 8 | 40) == b"hi"

    def test_enum_via_string_meta(self):
        assert _decode(b"\x02", T.STRING, T.ENUM << 8 | 1) == 2

    def test_set_via_string_meta(self):
        assert _decode(b"\x05", T.STRING, T.SET << 8 | 1) == 5

    def test_blob(self):
        assert _decode(struct.pack("<H", 4) + b"\x00\x01\x02\x03", T.BLOB, 2) == bytes(
            range(4)
        )

    def test_bit(self):
        # BIT(10): one full byte plus two bits
        assert _decode(b"\x02\x01", T.BIT, 1 << 8 | 2) == 0x201


class TestDecodeRow:
    def test_nulls_and_absent_columns(self):
        types = (T.LONG, T.LONG, T.LONG)
        meta = (0, 0, 0)
        # only columns 0 and 2 present; column 2 is NULL
        present = bytes([0b101])
        data = bytes([0b10]) + struct.pack("<i", 7)
        reader = PacketReader(data)
        assert decode_row(reader, types, meta, present) == [7, None, None]
        assert reader.remaining == 0

    def test_unsupported_type_raises(self):
        with pytest.raises(DecodeError, match="unsupported column type"):
            _decode(b"\x00", T.TYPED_ARRAY)
