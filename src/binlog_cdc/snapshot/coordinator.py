"""Initial snapshot through mysqldump.

The dump runs with ``--single-transaction --master-data``: mysqldump takes a
global read lock just long enough to open a consistent snapshot and read the
binlog coordinates, so the ``CHANGE MASTER`` line it prints is exactly the
position the snapshot corresponds to.  That marker precedes all row data;
streaming resumes from it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from binlog_cdc.config.models import DumpConfig, EngineConfig, SourceConfig
from binlog_cdc.engine.convert import convert_snapshot_row
from binlog_cdc.engine.events import RowEvent
from binlog_cdc.errors import ExcludedTableError, SnapshotError, TableNotFoundError
from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.schema.registry import SchemaRegistry
from binlog_cdc.snapshot.dumper import Dumper
from binlog_cdc.snapshot.parser import (
    DumpParser,
    GtidPurged,
    InsertRows,
    MasterPosition,
    UseDatabase,
)
from binlog_cdc.sources.binlog.events import RowAction
from binlog_cdc.sources.connection import SourceConnection, fetch_master_position

logger = structlog.get_logger()

DumperFactory = Callable[[SourceConfig, DumpConfig], Dumper]
RowEmitter = Callable[[RowEvent], Awaitable[None]]


class SnapshotCoordinator:
    def __init__(
        self,
        config: EngineConfig,
        registry: SchemaRegistry,
        connection: SourceConnection,
        emit: RowEmitter,
        dumper_factory: DumperFactory | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._connection = connection
        self._emit = emit
        self._dumper_factory = dumper_factory or Dumper
        self._gtid_set = GtidSet()
        self.rows_emitted = 0
        self.rows_skipped = 0

    @property
    def gtid_set(self) -> GtidSet:
        """GTID_PURGED reported by the dump (empty when GTIDs are off)."""
        return self._gtid_set

    async def run(self) -> BinlogPosition:
        """Run the snapshot and return the position streaming resumes from."""
        dump = self._config.dump
        if not dump.enabled:
            position = await fetch_master_position(self._connection)
            logger.info("snapshot.skipped", position=str(position))
            return position

        marker: BinlogPosition | None = None
        if dump.skip_master_data:
            # No marker in the output; the head read here is only approximate.
            marker = await fetch_master_position(self._connection)

        dumper = self._dumper_factory(self._config.source, dump)
        parser = DumpParser(dumper.default_schema)
        await dumper.start()
        try:
            async for item in parser.parse(dumper.lines()):
                if isinstance(item, MasterPosition):
                    marker = item.position
                    logger.info("snapshot.marker", position=str(marker))
                elif isinstance(item, GtidPurged):
                    self._gtid_set = item.gtid_set
                elif isinstance(item, UseDatabase):
                    logger.debug("snapshot.database", database=item.name)
                elif isinstance(item, InsertRows):
                    if marker is None:
                        msg = "dump produced row data before the binlog position marker"
                        raise SnapshotError(msg)
                    await self._emit_rows(item, marker)
            await dumper.wait()
        except BaseException:
            await dumper.terminate()
            raise

        if marker is None:
            raise SnapshotError("dump output did not contain a binlog position marker")
        logger.info(
            "snapshot.finished",
            position=str(marker),
            rows=self.rows_emitted,
            skipped=self.rows_skipped,
        )
        return marker

    async def _emit_rows(self, item: InsertRows, marker: BinlogPosition) -> None:
        try:
            table = await self._registry.get_table(item.schema, item.table)
        except ExcludedTableError:
            self.rows_skipped += len(item.rows)
            return
        except TableNotFoundError as exc:
            msg = f"dumped table {item.schema}.{item.table} has no metadata"
            raise SnapshotError(msg) from exc

        rows = [convert_snapshot_row(table, row) for row in item.rows]
        await self._emit(RowEvent(table, RowAction.INSERT, rows, marker))
        self.rows_emitted += len(rows)
