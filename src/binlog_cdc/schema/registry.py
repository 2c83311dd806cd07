"""Schema registry: filtered, cached table metadata.

Lookups consult the TableFilter first, so an excluded table never reaches the
metadata source.  Cache entries are immutable ``TableMeta`` objects replaced
wholesale, so a reader never observes a half-updated entry; loads for the same
key are serialized by a per-key lock.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import structlog

from binlog_cdc.errors import ExcludedTableError, TableNotFoundError
from binlog_cdc.schema.filter import TableFilter
from binlog_cdc.schema.statement import DDLTarget, parse_ddl
from binlog_cdc.schema.table import TableMeta

logger = structlog.get_logger()

TableKey = tuple[str, str]


@runtime_checkable
class MetadataSource(Protocol):
    """Loads table metadata from the source database."""

    async def fetch_table(self, schema: str, table: str) -> TableMeta | None:
        """Return the table's metadata, or None if it does not exist."""
        ...


class SchemaRegistry:
    def __init__(
        self,
        source: MetadataSource,
        table_filter: TableFilter | None = None,
    ) -> None:
        self._source = source
        self._filter = table_filter or TableFilter()
        self._tables: dict[TableKey, TableMeta] = {}
        self._versions: dict[TableKey, int] = {}
        self._locks: dict[TableKey, asyncio.Lock] = {}

    @property
    def table_filter(self) -> TableFilter:
        return self._filter

    def is_excluded(self, schema: str, table: str) -> bool:
        return self._filter.is_excluded(schema, table)

    async def get_table(self, schema: str, table: str) -> TableMeta:
        """Resolve ``schema.table``.

        Raises ExcludedTableError for filtered tables (without touching the
        source) and TableNotFoundError when the source has no such table.
        """
        if self._filter.is_excluded(schema, table):
            raise ExcludedTableError(schema, table)

        key = (schema, table)
        cached = self._tables.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._tables.get(key)
            if cached is not None:
                return cached
            version = self._versions.get(key, 0)
            meta = await self._source.fetch_table(schema, table)
            if meta is None:
                raise TableNotFoundError(schema, table)
            # An invalidation that raced the load wins; the caller still gets
            # the freshly loaded copy but it is not cached.
            if self._versions.get(key, 0) == version:
                self._tables[key] = meta
            logger.debug(
                "registry.table_loaded",
                table=meta.qualified_name,
                columns=len(meta.columns),
            )
            return meta

    def invalidate(self, schema: str, table: str) -> bool:
        """Drop the cached entry for a table; True if one was cached."""
        key = (schema, table)
        self._versions[key] = self._versions.get(key, 0) + 1
        removed = self._tables.pop(key, None) is not None
        if removed:
            logger.info("registry.invalidated", table=f"{schema}.{table}")
        return removed

    def invalidate_all(self) -> None:
        for schema, table in list(self._tables):
            self.invalidate(schema, table)

    def apply_ddl(self, sql: str, default_schema: str = "") -> list[DDLTarget]:
        """Invalidate every table named by a DDL statement."""
        targets = parse_ddl(sql, default_schema)
        for target in targets:
            self.invalidate(target.schema, target.table)
        return targets

    def cached_tables(self) -> list[str]:
        return sorted(f"{schema}.{table}" for schema, table in self._tables)
