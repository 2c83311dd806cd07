"""Maps decoded log records to domain events and invokes the handler.

Each record produces at most one handler call, awaited before the next record
is dispatched, so handler latency applies backpressure to the stream reader.
"""

from __future__ import annotations

from typing import Any

import structlog

from binlog_cdc.engine.convert import convert_stream_row
from binlog_cdc.engine.events import DDLEvent, GtidEvent, RotateEvent, RowEvent, XidEvent
from binlog_cdc.engine.handler import HandlerAdapter
from binlog_cdc.errors import (
    DecodeError,
    ExcludedTableError,
    HandlerError,
    TableNotFoundError,
)
from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.schema.registry import SchemaRegistry
from binlog_cdc.schema.table import TableMeta
from binlog_cdc.sources.binlog.events import (
    DDLRecord,
    GtidRecord,
    LogRecord,
    RotateRecord,
    RowsRecord,
    XidRecord,
)

logger = structlog.get_logger()


class EventDispatcher:
    def __init__(
        self,
        registry: SchemaRegistry,
        handler: Any | None = None,
        *,
        discard_no_meta_row_events: bool = False,
    ) -> None:
        self._registry = registry
        self._handler = HandlerAdapter(handler)
        self._discard_no_meta = discard_no_meta_row_events
        self.dispatched = 0
        self.dropped = 0

    @property
    def handler(self) -> Any:
        return self._handler.handler

    def set_handler(self, handler: Any | None) -> None:
        self._handler = HandlerAdapter(handler)

    async def notify(self, capability: str, argument: Any) -> None:
        """Invoke one handler capability, wrapping failures in HandlerError."""
        try:
            await self._handler.call(capability, argument)
        except Exception as exc:
            raise HandlerError(capability, exc) from exc

    async def dispatch_row_event(self, event: RowEvent) -> None:
        await self.notify("on_row", event)
        self.dispatched += 1

    async def dispatch(
        self,
        record: LogRecord,
        position: BinlogPosition,
        gtid_set: GtidSet | None = None,
    ) -> None:
        """Route one decoded record; *position* is the one reached after it."""
        if isinstance(record, RowsRecord):
            await self._dispatch_rows(record, position)
        elif isinstance(record, DDLRecord):
            await self._dispatch_ddl(record, position)
        elif isinstance(record, RotateRecord):
            await self.notify(
                "on_rotate", RotateEvent(record.next_name, record.next_pos, position)
            )
        elif isinstance(record, XidRecord):
            await self.notify(
                "on_xid", XidEvent(record.xid, position, gtid_set or GtidSet())
            )
        elif isinstance(record, GtidRecord):
            await self.notify("on_gtid", GtidEvent(record.gtid, position))

    async def _table_for(self, record: RowsRecord) -> TableMeta | None:
        try:
            table = await self._registry.get_table(record.schema, record.table)
        except ExcludedTableError:
            return None
        except TableNotFoundError:
            if self._discard_no_meta:
                logger.warning(
                    "dispatcher.row_discarded",
                    table=f"{record.schema}.{record.table}",
                    reason="no table metadata",
                )
                return None
            raise

        if len(table.columns) != len(record.column_types):
            # Cached metadata predates a schema change we have not seen a DDL
            # for; reload once before giving up.
            self._registry.invalidate(record.schema, record.table)
            table = await self._registry.get_table(record.schema, record.table)
            if len(table.columns) != len(record.column_types):
                msg = (
                    f"{record.header.type_name} for {table.qualified_name} has "
                    f"{len(record.column_types)} columns, metadata has {len(table.columns)}"
                )
                raise DecodeError(msg)
        return table

    async def _dispatch_rows(self, record: RowsRecord, position: BinlogPosition) -> None:
        table = await self._table_for(record)
        if table is None:
            self.dropped += 1
            return
        rows = [convert_stream_row(table, record.column_types, row) for row in record.rows]
        event = RowEvent(table, record.action, rows, position, record.header)
        await self.dispatch_row_event(event)

    async def _dispatch_ddl(self, record: DDLRecord, position: BinlogPosition) -> None:
        # Invalidate before the handler runs so any later row resolves fresh metadata.
        self._registry.apply_ddl(record.query, record.schema)
        targets = tuple(
            t for t in record.targets if not self._registry.is_excluded(t.schema, t.table)
        )
        logger.info(
            "dispatcher.ddl",
            schema=record.schema,
            tables=[str(t) for t in record.targets],
            position=str(position),
        )
        if not targets:
            self.dropped += 1
            return
        await self.notify(
            "on_ddl", DDLEvent(record.schema, record.query, targets, position, record.header)
        )
