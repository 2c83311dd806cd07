"""Unit tests for SQL normalization and DDL target extraction."""

from __future__ import annotations

import pytest

from binlog_cdc.schema.statement import (
    DDLKind,
    DDLTarget,
    normalize_statement,
    parse_ddl,
    strip_statement,
)


class TestNormalize:
    def test_collapses_whitespace_and_uppercases(self):
        assert normalize_statement("alter  table\r\n t\tadd c int") == "ALTER TABLE T ADD C INT"

    def test_strips_comments(self):
        sql = "/* generated */ ALTER TABLE t -- trailing\n ADD c INT # another"
        assert normalize_statement(sql) == "ALTER TABLE T ADD C INT"

    def test_idempotent(self):
        sql = "  create /*x*/ table\n`a`.`b` (id int)  "
        once = normalize_statement(sql)
        assert normalize_statement(once) == once

    def test_strip_preserves_case(self):
        assert strip_statement("ALTER TABLE `MyTable`  ADD x INT") == "ALTER TABLE `MyTable` ADD x INT"


class TestParseDDL:
    @pytest.mark.parametrize(
        ("sql", "expected"),
        [
            ("ALTER TABLE t ADD c INT", [(DDLKind.ALTER, "db", "t")]),
            ("alter table `s`.`t` drop column c", [(DDLKind.ALTER, "s", "t")]),
            ("ALTER TABLE s . t ADD c INT", [(DDLKind.ALTER, "s", "t")]),
            ("CREATE TABLE IF NOT EXISTS s.t (id INT)", [(DDLKind.CREATE, "s", "t")]),
            ("CREATE TEMPORARY TABLE tmp (id INT)", [(DDLKind.CREATE, "db", "tmp")]),
            (
                "DROP TABLE IF EXISTS a, `s`.`b`",
                [(DDLKind.DROP, "db", "a"), (DDLKind.DROP, "s", "b")],
            ),
            (
                "RENAME TABLE a TO b, s.c TO s.d",
                [
                    (DDLKind.RENAME, "db", "a"),
                    (DDLKind.RENAME, "db", "b"),
                    (DDLKind.RENAME, "s", "c"),
                    (DDLKind.RENAME, "s", "d"),
                ],
            ),
            ("TRUNCATE TABLE s.t", [(DDLKind.TRUNCATE, "s", "t")]),
            ("truncate t", [(DDLKind.TRUNCATE, "db", "t")]),
        ],
    )
    def test_targets(self, sql, expected):
        targets = [(t.kind, t.schema, t.table) for t in parse_ddl(sql, "db")]
        assert targets == expected

    def test_alter_rename_reports_both_tables(self):
        targets = parse_ddl("ALTER TABLE a RENAME TO b", "db")
        assert targets == [
            DDLTarget(DDLKind.ALTER, "db", "a"),
            DDLTarget(DDLKind.RENAME, "db", "b"),
        ]

    def test_backtick_escapes(self):
        (target,) = parse_ddl("ALTER TABLE `we``ird` ADD c INT", "db")
        assert target.table == "we`ird"

    def test_comment_before_keyword(self):
        (target,) = parse_ddl("/* app */ ALTER TABLE t ADD c INT", "db")
        assert target.table == "t"

    @pytest.mark.parametrize(
        "sql",
        ["BEGIN", "COMMIT", "INSERT INTO t VALUES (1)", "CREATE DATABASE x", "GRANT ALL ON *.* TO u"],
    )
    def test_non_table_ddl(self, sql):
        assert parse_ddl(sql, "db") == []

    def test_lowercase_statement(self):
        (target,) = parse_ddl("alter table t add c int", "db")
        assert target.kind == DDLKind.ALTER
