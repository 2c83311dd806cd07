"""Table metadata as seen by the registry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ColumnType(StrEnum):
    NUMBER = "number"
    MEDIUM_INT = "mediumint"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    ENUM = "enum"
    SET = "set"
    DATETIME = "datetime"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    BIT = "bit"
    JSON = "json"
    BINARY = "binary"
    OTHER = "other"


# Checked in order: "datetime" must win over "date"/"time", "mediumint" over "int".
_TYPE_PREFIXES: tuple[tuple[tuple[str, ...], ColumnType], ...] = (
    (("enum",), ColumnType.ENUM),
    (("set(",), ColumnType.SET),
    (("datetime",), ColumnType.DATETIME),
    (("timestamp",), ColumnType.TIMESTAMP),
    (("date",), ColumnType.DATE),
    (("time",), ColumnType.TIME),
    (("year",), ColumnType.NUMBER),
    (("mediumint",), ColumnType.MEDIUM_INT),
    (("tinyint", "smallint", "bigint", "int", "integer"), ColumnType.NUMBER),
    (("float", "double", "real"), ColumnType.FLOAT),
    (("decimal", "numeric"), ColumnType.DECIMAL),
    (("bit",), ColumnType.BIT),
    (("json",), ColumnType.JSON),
    (("binary", "varbinary", "tinyblob", "blob", "mediumblob", "longblob"),
     ColumnType.BINARY),
    (("char", "varchar", "tinytext", "text", "mediumtext", "longtext"),
     ColumnType.STRING),
)


def classify_column_type(raw_type: str) -> ColumnType:
    """Map MySQL column type text (``int(11) unsigned``) to a ColumnType."""
    text = raw_type.strip().lower()
    for prefixes, column_type in _TYPE_PREFIXES:
        if text.startswith(prefixes):
            return column_type
    return ColumnType.OTHER


@dataclass(frozen=True, slots=True)
class Column:
    name: str
    type: ColumnType
    raw_type: str
    nullable: bool = True
    unsigned: bool = False

    @classmethod
    def from_definition(cls, name: str, raw_type: str, nullable: bool = True) -> Column:
        return cls(
            name=name,
            type=classify_column_type(raw_type),
            raw_type=raw_type,
            nullable=nullable,
            unsigned="unsigned" in raw_type.lower(),
        )


@dataclass(frozen=True, slots=True)
class TableMeta:
    """Immutable snapshot of a table's shape; replaced wholesale on DDL."""

    schema: str
    table: str
    columns: tuple[Column, ...]
    pk_indexes: tuple[int, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def pk_columns(self) -> list[Column]:
        return [self.columns[i] for i in self.pk_indexes]

    def find_column(self, name: str) -> int | None:
        lowered = name.lower()
        for index, column in enumerate(self.columns):
            if column.name.lower() == lowered:
                return index
        return None

    def is_primary_key(self, index: int) -> bool:
        return index in self.pk_indexes

    def __str__(self) -> str:
        return self.qualified_name
