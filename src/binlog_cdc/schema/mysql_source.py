"""MetadataSource backed by MySQL ``SHOW`` statements."""

from __future__ import annotations

import structlog

from binlog_cdc.errors import SourceError
from binlog_cdc.schema.table import Column, TableMeta
from binlog_cdc.sources.connection import SourceConnection

logger = structlog.get_logger()

_ER_BAD_DB = 1049
_ER_NO_SUCH_TABLE = 1146


def _quote(identifier: str) -> str:
    return "`" + identifier.replace("`", "``") + "`"


class MySQLMetadataSource:
    def __init__(self, connection: SourceConnection) -> None:
        self._conn = connection

    async def fetch_table(self, schema: str, table: str) -> TableMeta | None:
        name = f"{_quote(schema)}.{_quote(table)}"
        try:
            column_rows = await self._conn.query(f"SHOW FULL COLUMNS FROM {name}")
            index_rows = await self._conn.query(f"SHOW INDEX FROM {name}")
        except SourceError as exc:
            if exc.code in (_ER_BAD_DB, _ER_NO_SUCH_TABLE):
                return None
            raise

        columns = tuple(
            Column.from_definition(
                name=str(row["Field"]),
                raw_type=str(row["Type"]),
                nullable=str(row.get("Null", "YES")).upper() == "YES",
            )
            for row in column_rows
        )
        names = [c.name.lower() for c in columns]
        pk_rows = sorted(
            (row for row in index_rows if row.get("Key_name") == "PRIMARY"),
            key=lambda row: int(row.get("Seq_in_index", 0)),
        )
        pk_indexes = tuple(
            names.index(str(row["Column_name"]).lower())
            for row in pk_rows
            if str(row["Column_name"]).lower() in names
        )
        return TableMeta(schema=schema, table=table, columns=columns, pk_indexes=pk_indexes)
