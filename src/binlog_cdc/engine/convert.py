"""Column value normalisation against TableMeta.

Snapshot literals and decoded binlog values arrive in different shapes (dump
text vs. binary row images).  Both are normalised here so a consumer sees the
same Python types for a column regardless of where the row came from:

=========== ===========================================
ColumnType  Python value
=========== ===========================================
NUMBER      int (unsigned columns are never negative)
FLOAT       float
DECIMAL     Decimal
STRING      str
ENUM / SET  str (SET members comma separated)
DATETIME    datetime (zero dates stay as strings)
TIMESTAMP   datetime (UTC aware)
DATE        date
TIME        timedelta
BIT         int
JSON        decoded JSON (dict / list / scalar)
BINARY      bytes
=========== ===========================================
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from binlog_cdc.errors import DecodeError, SnapshotError
from binlog_cdc.schema.table import Column, ColumnType, TableMeta
from binlog_cdc.sources.binlog.events import ColumnTypeCode
from binlog_cdc.sources.binlog.json_binary import decode_json

_INT_BITS = {
    ColumnTypeCode.TINY: 8,
    ColumnTypeCode.SHORT: 16,
    ColumnTypeCode.INT24: 24,
    ColumnTypeCode.LONG: 32,
    ColumnTypeCode.LONGLONG: 64,
}

_ENUM_ITEM = re.compile(r"'((?:[^']|'')*)'")
_TIME = re.compile(r"^(-)?(\d+):(\d{2}):(\d{2})(?:\.(\d{1,6}))?$")


def _members(column: Column) -> list[str]:
    """Declared ENUM/SET members, in order."""
    return [m.replace("''", "'") for m in _ENUM_ITEM.findall(column.raw_type)]


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="surrogateescape")


def convert_stream_value(column: Column, type_code: int, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, int) and column.unsigned and value < 0:
        bits = _INT_BITS.get(type_code)
        if bits is not None:
            value += 1 << bits
    if column.type == ColumnType.ENUM and isinstance(value, int):
        members = _members(column)
        return members[value - 1] if 0 < value <= len(members) else ""
    if column.type == ColumnType.SET and isinstance(value, int):
        members = _members(column)
        return ",".join(m for i, m in enumerate(members) if value & (1 << i))
    if column.type == ColumnType.JSON and isinstance(value, bytes):
        return decode_json(value)
    if isinstance(value, bytes) and column.type not in (ColumnType.BINARY, ColumnType.OTHER):
        return _text(value)
    return value


def convert_stream_row(
    table: TableMeta, column_types: Sequence[int], row: Sequence[Any]
) -> list[Any]:
    """Normalise one decoded row image against the table's metadata."""
    if len(row) != len(table.columns):
        msg = (
            f"row for {table.qualified_name} has {len(row)} values, "
            f"table has {len(table.columns)} columns"
        )
        raise DecodeError(msg)
    return [
        convert_stream_value(column, code, value)
        for column, code, value in zip(table.columns, column_types, row, strict=True)
    ]


def _parse_time(text: str) -> timedelta | str:
    match = _TIME.match(text)
    if match is None:
        return text
    sign, hours, minutes, seconds, frac = match.groups()
    delta = timedelta(
        hours=int(hours),
        minutes=int(minutes),
        seconds=int(seconds),
        microseconds=int((frac or "0").ljust(6, "0")),
    )
    return -delta if sign else delta


def _parse_datetime(text: str) -> datetime | str:
    if text.startswith("0000-00-00"):
        return text
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return text


def _parse_date(text: str) -> date | str:
    if text.startswith("0000-00-00"):
        return text
    try:
        return date.fromisoformat(text)
    except ValueError:
        return text


def convert_snapshot_value(column: Column, value: Any) -> Any:
    """Convert a dump literal (str / int / Decimal / bytes) to the column's type."""
    if value is None:
        return None
    kind = column.type
    try:
        if kind in (ColumnType.NUMBER, ColumnType.MEDIUM_INT):
            return int(value)
        if kind == ColumnType.FLOAT:
            return float(value)
        if kind == ColumnType.DECIMAL:
            return Decimal(str(value))
        if kind == ColumnType.BIT:
            if isinstance(value, bytes):
                return int.from_bytes(value, "big")
            return int(value)
        if kind == ColumnType.BINARY:
            if isinstance(value, str):
                return value.encode("utf-8", errors="surrogateescape")
            return value
        if isinstance(value, bytes):
            value = _text(value)
        if kind == ColumnType.DATETIME:
            return _parse_datetime(str(value))
        if kind == ColumnType.TIMESTAMP:
            # The dump session runs in UTC (mysqldump --tz-utc).
            parsed = _parse_datetime(str(value))
            if isinstance(parsed, datetime):
                return parsed.replace(tzinfo=UTC)
            return parsed
        if kind == ColumnType.DATE:
            return _parse_date(str(value))
        if kind == ColumnType.TIME:
            return _parse_time(str(value))
        if kind == ColumnType.JSON:
            return json.loads(value)
    except (ValueError, ArithmeticError) as exc:
        msg = f"cannot convert {value!r} for column {column.name} ({column.raw_type})"
        raise SnapshotError(msg) from exc
    return str(value) if not isinstance(value, str) else value


def convert_snapshot_row(table: TableMeta, row: Sequence[Any]) -> list[Any]:
    if len(row) != len(table.columns):
        msg = (
            f"dump row for {table.qualified_name} has {len(row)} values, "
            f"table has {len(table.columns)} columns"
        )
        raise SnapshotError(msg)
    return [convert_snapshot_value(c, v) for c, v in zip(table.columns, row, strict=True)]
