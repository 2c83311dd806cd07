"""Unit tests for the mysqldump output parser."""

from __future__ import annotations

from decimal import Decimal

import pytest

from binlog_cdc.errors import SnapshotError
from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.snapshot.parser import (
    DumpParser,
    GtidPurged,
    InsertRows,
    MasterPosition,
    UseDatabase,
    parse_values,
)

SID = "3e11fa47-71ca-11e1-9e33-c80aa9429562"


class TestParseValues:
    def test_scalars(self):
        rows = parse_values("(1,-2,3.50,1.5e3,NULL,'a');")
        assert rows == [[1, -2, Decimal("3.50"), 1500.0, None, "a"]]

    def test_multiple_rows(self):
        assert parse_values("(1,'a'),(2,'b');") == [[1, "a"], [2, "b"]]

    def test_string_escapes(self):
        (row,) = parse_values(r"('it\'s','a\\b','line\nbreak','tab\t','q''q','\0');")
        assert row == ["it's", "a\\b", "line\nbreak", "tab\t", "q'q", "\0"]

    def test_like_escapes_keep_backslash(self):
        (row,) = parse_values(r"('100\%','a\_b');")
        assert row == ["100\\%", "a\\_b"]

    def test_commas_and_parens_inside_strings(self):
        (row,) = parse_values("('a,b','(c)');")
        assert row == ["a,b", "(c)"]

    def test_hex_blob(self):
        (row,) = parse_values("(0x00FF10,0x);")
        assert row == [b"\x00\xff\x10", b""]

    def test_bit_literal(self):
        (row,) = parse_values("(b'101',b'');")
        assert row == [5, 0]

    def test_binary_introducer(self):
        (row,) = parse_values("(_binary 'ab\\0');")
        assert row == [b"ab\x00"]

    def test_unicode(self):
        (row,) = parse_values("('héllo 世界');")
        assert row == ["héllo 世界"]

    @pytest.mark.parametrize(
        "text",
        ["(1,'unterminated);", "(1,2", "(1 2);", "(1);garbage", "(@x);"],
    )
    def test_malformed_raises(self, text):
        with pytest.raises(SnapshotError):
            parse_values(text)


class TestDumpParser:
    def test_change_master(self):
        item = DumpParser().parse_line(
            "CHANGE MASTER TO MASTER_LOG_FILE='mysql-bin.000003', MASTER_LOG_POS=1543;"
        )
        assert item == MasterPosition(BinlogPosition("mysql-bin.000003", 1543))

    def test_commented_change_master(self):
        item = DumpParser().parse_line(
            "-- CHANGE MASTER TO MASTER_LOG_FILE='mysql-bin.000003', MASTER_LOG_POS=4;"
        )
        assert isinstance(item, MasterPosition)

    def test_change_replication_source(self):
        item = DumpParser().parse_line(
            "CHANGE REPLICATION SOURCE TO SOURCE_LOG_FILE='binlog.000010', SOURCE_LOG_POS=157;"
        )
        assert item == MasterPosition(BinlogPosition("binlog.000010", 157))

    def test_use_switches_schema(self):
        parser = DumpParser("first")
        assert parser.parse_line("USE `second`;") == UseDatabase("second")
        item = parser.parse_line("INSERT INTO `t` VALUES (1);")
        assert item == InsertRows("second", "t", [[1]])

    def test_insert_uses_default_schema(self):
        item = DumpParser("shop").parse_line("INSERT INTO `orders` VALUES (1,'x');")
        assert item == InsertRows("shop", "orders", [[1, "x"]])

    def test_qualified_insert_with_columns(self):
        item = DumpParser().parse_line(
            "INSERT INTO `shop`.`orders` (`id`, `note`) VALUES (1,'x');"
        )
        assert item == InsertRows("shop", "orders", [[1, "x"]])

    def test_single_line_gtid_purged(self):
        item = DumpParser().parse_line(f"SET @@GLOBAL.GTID_PURGED='{SID}:1-10';")
        assert item == GtidPurged(GtidSet.parse(f"{SID}:1-10"))

    def test_multiline_gtid_purged(self):
        parser = DumpParser()
        assert parser.parse_line(f"SET @@GLOBAL.GTID_PURGED=/*!80000 '+'*/ '{SID}:1-5,") is None
        item = parser.parse_line(f"{SID.replace('3e', '4d', 1)}:1-2';")
        assert isinstance(item, GtidPurged)
        assert item.gtid_set.contains(GtidSet.parse(f"{SID}:3"))

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "/*!40101 SET @OLD_CHARACTER_SET_CLIENT=@@CHARACTER_SET_CLIENT */;",
            "SET @@SESSION.SQL_LOG_BIN= 0;",
            "-- Dump completed",
        ],
    )
    def test_other_lines_ignored(self, line):
        assert DumpParser().parse_line(line) is None

    def test_bad_insert_raises(self):
        with pytest.raises(SnapshotError, match="unrecognised INSERT"):
            DumpParser().parse_line("INSERT IGNORE INTO t VALUES (1);")

    async def test_parse_async_lines(self):
        async def lines():
            for line in [
                "CHANGE MASTER TO MASTER_LOG_FILE='mysql-bin.000001', MASTER_LOG_POS=154;",
                "USE `test`;",
                "INSERT INTO `t` VALUES (1);",
            ]:
                yield line

        items = [item async for item in DumpParser().parse(lines())]
        assert [type(i) for i in items] == [MasterPosition, UseDatabase, InsertRows]
