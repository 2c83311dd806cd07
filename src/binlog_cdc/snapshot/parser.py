"""Parser for mysqldump ``--compact`` output.

Only the statements a data-only dump produces are recognised:

- ``CHANGE MASTER TO MASTER_LOG_FILE='f', MASTER_LOG_POS=n;`` (and the
  ``CHANGE REPLICATION SOURCE TO SOURCE_LOG_FILE=...`` spelling)
- ``SET @@GLOBAL.GTID_PURGED='...';`` (possibly spanning several lines)
- ``USE `db`;``
- ``INSERT INTO `t` VALUES (...),(...);``

Everything else (version-conditional ``/*!...*/`` settings, blank lines) is
skipped.
"""

from __future__ import annotations

import re
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from binlog_cdc.errors import SnapshotError
from binlog_cdc.position import BinlogPosition, GtidSet


@dataclass(frozen=True, slots=True)
class MasterPosition:
    position: BinlogPosition


@dataclass(frozen=True, slots=True)
class UseDatabase:
    name: str


@dataclass(frozen=True, slots=True)
class GtidPurged:
    gtid_set: GtidSet


@dataclass(slots=True)
class InsertRows:
    schema: str
    table: str
    rows: list[list[Any]]


DumpItem = MasterPosition | UseDatabase | GtidPurged | InsertRows

_CHANGE_MASTER = re.compile(
    r"^(?:--\s*)?CHANGE\s+(?:MASTER|REPLICATION\s+SOURCE)\s+TO\s+"
    r"(?:MASTER|SOURCE)_LOG_FILE\s*=\s*'(?P<file>[^']+)'\s*,\s*"
    r"(?:MASTER|SOURCE)_LOG_POS\s*=\s*(?P<pos>\d+)",
    re.IGNORECASE,
)
_USE = re.compile(r"^USE\s+`(?P<db>(?:[^`]|``)+)`\s*;\s*$", re.IGNORECASE)
_GTID_PURGED = re.compile(r"^SET\s+@@GLOBAL\.GTID_PURGED\s*=", re.IGNORECASE)
_GTID_VALUE = re.compile(r"'([^']*)'\s*;?\s*$", re.DOTALL)
_INSERT = re.compile(
    r"^INSERT\s+INTO\s+`(?P<first>(?:[^`]|``)+)`(?:\.`(?P<second>(?:[^`]|``)+)`)?"
    r"\s*(?:\([^)]*\)\s*)?VALUES\s*",
    re.IGNORECASE,
)
_INT = re.compile(r"^[+-]?\d+$")
_DECIMAL = re.compile(r"^[+-]?(?:\d+\.\d*|\.\d+)$")
_FLOAT = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)[eE][+-]?\d+$")

_ESCAPES = {
    "0": "\0",
    "'": "'",
    '"': '"',
    "b": "\b",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "Z": "\x1a",
    "\\": "\\",
    # \% and \_ keep their backslash, as in MySQL.
    "%": "\\%",
    "_": "\\_",
}


def _unquote_identifier(name: str) -> str:
    return name.replace("``", "`")


class _ValuesScanner:
    """Scanner over the ``(...),(...)`` tail of an INSERT statement."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.i = 0

    def error(self, message: str) -> SnapshotError:
        snippet = self.text[max(self.i - 20, 0) : self.i + 20]
        return SnapshotError(f"cannot parse dump values ({message}) near {snippet!r}")

    def skip_space(self) -> None:
        while self.i < len(self.text) and self.text[self.i].isspace():
            self.i += 1

    def peek(self) -> str:
        return self.text[self.i] if self.i < len(self.text) else ""

    def expect(self, ch: str) -> None:
        self.skip_space()
        if self.peek() != ch:
            raise self.error(f"expected {ch!r}")
        self.i += 1

    def rows(self) -> list[list[Any]]:
        rows = []
        while True:
            rows.append(self.row())
            self.skip_space()
            ch = self.peek()
            if ch == ",":
                self.i += 1
                continue
            if ch == ";":
                self.i += 1
                self.skip_space()
                if self.i != len(self.text):
                    raise self.error("trailing data")
                return rows
            raise self.error("expected ',' or ';'")

    def row(self) -> list[Any]:
        self.expect("(")
        values: list[Any] = []
        while True:
            values.append(self.value())
            self.skip_space()
            ch = self.peek()
            self.i += 1
            if ch == ",":
                continue
            if ch == ")":
                return values
            self.i -= 1
            raise self.error("expected ',' or ')'")

    def value(self) -> Any:
        self.skip_space()
        ch = self.peek()
        if ch == "'":
            return self.quoted()
        if self.text.startswith("_binary", self.i):
            self.i += len("_binary")
            self.skip_space()
            if self.peek() != "'":
                raise self.error("expected string after _binary")
            return self.quoted().encode("utf-8", errors="surrogateescape")
        token = self.token()
        if token.upper() == "NULL":
            return None
        if token[:2].lower() == "0x":
            try:
                return bytes.fromhex(token[2:])
            except ValueError:
                raise self.error(f"bad hex literal {token!r}") from None
        if token[:2].lower() == "b'":
            return int(token[2:-1] or "0", 2)
        if _INT.match(token):
            return int(token)
        if _DECIMAL.match(token):
            return Decimal(token)
        if _FLOAT.match(token):
            return float(token)
        raise self.error(f"unknown literal {token!r}")

    def token(self) -> str:
        start = self.i
        if self.text.startswith(("b'", "B'"), self.i):
            end = self.text.find("'", self.i + 2)
            if end < 0:
                raise self.error("unterminated bit literal")
            self.i = end + 1
            return self.text[start : self.i]
        while self.i < len(self.text) and self.text[self.i] not in ",)":
            self.i += 1
        token = self.text[start : self.i].strip()
        if not token:
            raise self.error("empty value")
        return token

    def quoted(self) -> str:
        self.i += 1
        out = []
        text = self.text
        while True:
            if self.i >= len(text):
                raise self.error("unterminated string")
            ch = text[self.i]
            if ch == "\\":
                nxt = text[self.i + 1 : self.i + 2]
                if not nxt:
                    raise self.error("dangling escape")
                out.append(_ESCAPES.get(nxt, nxt))
                self.i += 2
            elif ch == "'":
                if text[self.i + 1 : self.i + 2] == "'":
                    out.append("'")
                    self.i += 2
                else:
                    self.i += 1
                    return "".join(out)
            else:
                out.append(ch)
                self.i += 1


def parse_values(text: str) -> list[list[Any]]:
    """Parse ``(v, ...),(v, ...);`` into rows of Python values."""
    return _ValuesScanner(text).rows()


class DumpParser:
    """Line-oriented parser; tracks the current database across ``USE`` lines."""

    def __init__(self, default_schema: str = "") -> None:
        self.schema = default_schema
        self._gtid_buffer: list[str] | None = None

    def parse_line(self, line: str) -> DumpItem | None:
        if self._gtid_buffer is not None:
            return self._continue_gtid(line)

        stripped = line.strip()
        if not stripped:
            return None

        if stripped[:6].upper() == "INSERT":
            match = _INSERT.match(stripped)
            if match is None:
                raise SnapshotError(f"unrecognised INSERT statement: {stripped[:80]!r}")
            if match.group("second") is not None:
                schema = _unquote_identifier(match.group("first"))
                table = _unquote_identifier(match.group("second"))
            else:
                schema = self.schema
                table = _unquote_identifier(match.group("first"))
            rows = parse_values(stripped[match.end() :])
            return InsertRows(schema, table, rows)

        match = _CHANGE_MASTER.match(stripped)
        if match:
            position = BinlogPosition(match.group("file"), int(match.group("pos")))
            return MasterPosition(position)

        match = _USE.match(stripped)
        if match:
            self.schema = _unquote_identifier(match.group("db"))
            return UseDatabase(self.schema)

        if _GTID_PURGED.match(stripped):
            self._gtid_buffer = []
            return self._continue_gtid(stripped)

        return None

    def _continue_gtid(self, line: str) -> GtidPurged | None:
        assert self._gtid_buffer is not None
        self._gtid_buffer.append(line.strip())
        if not line.rstrip().endswith(";"):
            return None
        text = "".join(self._gtid_buffer)
        self._gtid_buffer = None
        match = _GTID_VALUE.search(text)
        if match is None:
            raise SnapshotError(f"unrecognised GTID_PURGED statement: {text[:80]!r}")
        try:
            return GtidPurged(GtidSet.parse(match.group(1)))
        except ValueError as exc:
            raise SnapshotError(f"invalid GTID_PURGED value: {exc}") from exc

    async def parse(self, lines: AsyncIterable[str]) -> AsyncIterator[DumpItem]:
        async for line in lines:
            item = self.parse_line(line)
            if item is not None:
                yield item
