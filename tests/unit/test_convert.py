"""Unit tests for column value normalisation."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from binlog_cdc.engine.convert import (
    convert_snapshot_row,
    convert_snapshot_value,
    convert_stream_row,
    convert_stream_value,
)
from binlog_cdc.errors import DecodeError, SnapshotError
from binlog_cdc.schema.table import Column, TableMeta
from binlog_cdc.sources.binlog.events import ColumnTypeCode as T


def _col(raw_type: str, name: str = "c") -> Column:
    return Column.from_definition(name, raw_type)


class TestStreamValues:
    def test_null_passes_through(self):
        assert convert_stream_value(_col("int(11)"), T.LONG, None) is None

    @pytest.mark.parametrize(
        ("raw_type", "code", "value", "expected"),
        [
            ("tinyint(3) unsigned", T.TINY, -1, 255),
            ("smallint unsigned", T.SHORT, -2, 65534),
            ("mediumint unsigned", T.INT24, -1, 2**24 - 1),
            ("int(10) unsigned", T.LONG, -1, 2**32 - 1),
            ("bigint(20) unsigned", T.LONGLONG, -1, 2**64 - 1),
            ("int(11)", T.LONG, -1, -1),
        ],
    )
    def test_unsigned_integers(self, raw_type, code, value, expected):
        assert convert_stream_value(_col(raw_type), code, value) == expected

    def test_text_is_decoded(self):
        assert convert_stream_value(_col("varchar(20)"), T.VARCHAR, "héllo".encode()) == "héllo"

    def test_invalid_utf8_is_preserved(self):
        value = convert_stream_value(_col("text"), T.BLOB, b"\xff")
        assert value.encode("utf-8", errors="surrogateescape") == b"\xff"

    def test_binary_stays_bytes(self):
        assert convert_stream_value(_col("varbinary(8)"), T.VARCHAR, b"\x00\x01") == b"\x00\x01"

    def test_enum_index_maps_to_member(self):
        col = _col("enum('small','medium','large')")
        assert convert_stream_value(col, T.STRING, 2) == "medium"
        assert convert_stream_value(col, T.STRING, 0) == ""

    def test_set_bits_map_to_members(self):
        col = _col("set('a','b','c')")
        assert convert_stream_value(col, T.STRING, 0b101) == "a,c"

    def test_enum_member_with_quote(self):
        col = _col("enum('it''s','no')")
        assert convert_stream_value(col, T.STRING, 1) == "it's"

    def test_json_is_decoded(self):
        assert convert_stream_value(_col("json"), T.JSON, b"\x0c\x02hi") == "hi"


class TestStreamRow:
    def test_row_length_mismatch_raises(self):
        table = TableMeta("db", "t", (_col("int", "a"), _col("int", "b")))
        with pytest.raises(DecodeError, match="has 1 values"):
            convert_stream_row(table, [T.LONG], [1])

    def test_row_converted_per_column(self):
        table = TableMeta("db", "t", (_col("int unsigned", "a"), _col("text", "b")))
        assert convert_stream_row(table, [T.LONG, T.BLOB], [-1, b"x"]) == [2**32 - 1, "x"]


class TestSnapshotValues:
    @pytest.mark.parametrize(
        ("raw_type", "value", "expected"),
        [
            ("int(11)", 5, 5),
            ("bigint unsigned", 18446744073709551615, 18446744073709551615),
            ("double", Decimal("1.5"), 1.5),
            ("decimal(10,2)", Decimal("3.10"), Decimal("3.10")),
            ("varchar(10)", "abc", "abc"),
            ("enum('x','y')", "y", "y"),
            ("datetime", "2024-01-02 03:04:05", datetime(2024, 1, 2, 3, 4, 5)),
            ("datetime(6)", "2024-01-02 03:04:05.500000", datetime(2024, 1, 2, 3, 4, 5, 500000)),
            ("datetime", "0000-00-00 00:00:00", "0000-00-00 00:00:00"),
            ("date", "2024-03-15", date(2024, 3, 15)),
            ("time", "-01:30:00", -timedelta(hours=1, minutes=30)),
            ("time", "838:59:59", timedelta(hours=838, minutes=59, seconds=59)),
            ("json", '{"a": [1, 2]}', {"a": [1, 2]}),
            ("bit(8)", 5, 5),
            ("bit(16)", b"\x01\x00", 256),
            ("blob", "raw", b"raw"),
            ("varbinary(4)", b"\x00\xff", b"\x00\xff"),
            ("year(4)", 2024, 2024),
        ],
    )
    def test_conversions(self, raw_type, value, expected):
        assert convert_snapshot_value(_col(raw_type), value) == expected

    def test_timestamp_is_utc(self):
        value = convert_snapshot_value(_col("timestamp"), "2024-01-02 03:04:05")
        assert value == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_bad_value_raises_snapshot_error(self):
        with pytest.raises(SnapshotError, match="cannot convert"):
            convert_snapshot_value(_col("int"), "not-a-number")

    def test_row_length_mismatch_raises(self):
        table = TableMeta("db", "t", (_col("int", "a"),))
        with pytest.raises(SnapshotError, match="has 2 values"):
            convert_snapshot_row(table, [1, 2])
