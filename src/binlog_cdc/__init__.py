"""MySQL binlog change-data-capture client."""

from binlog_cdc.config.loader import load_engine_config
from binlog_cdc.config.models import DumpConfig, EngineConfig, SourceConfig
from binlog_cdc.engine.core import Engine
from binlog_cdc.engine.events import DDLEvent, GtidEvent, RotateEvent, RowEvent, XidEvent
from binlog_cdc.engine.handler import EventHandler, NoopHandler
from binlog_cdc.engine.state import EngineState
from binlog_cdc.errors import (
    CDCError,
    DecodeError,
    EngineClosedError,
    ExcludedTableError,
    HandlerError,
    SnapshotError,
    SourceError,
    StreamTimeoutError,
    SyncTimeoutError,
    TableNotFoundError,
    is_excluded_table,
)
from binlog_cdc.position import BinlogPosition, GtidSet, Ordering
from binlog_cdc.schema.table import Column, ColumnType, TableMeta
from binlog_cdc.sources.binlog.events import RowAction

__version__ = "0.1.0"

__all__ = [
    "BinlogPosition",
    "CDCError",
    "Column",
    "ColumnType",
    "DDLEvent",
    "DecodeError",
    "DumpConfig",
    "Engine",
    "EngineClosedError",
    "EngineConfig",
    "EngineState",
    "EventHandler",
    "ExcludedTableError",
    "GtidEvent",
    "GtidSet",
    "HandlerError",
    "NoopHandler",
    "Ordering",
    "RotateEvent",
    "RowAction",
    "RowEvent",
    "SnapshotError",
    "SourceConfig",
    "SourceError",
    "StreamTimeoutError",
    "SyncTimeoutError",
    "TableMeta",
    "TableNotFoundError",
    "XidEvent",
    "is_excluded_table",
    "load_engine_config",
]
