"""Domain events delivered to an EventHandler."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.schema.statement import DDLTarget
from binlog_cdc.schema.table import TableMeta
from binlog_cdc.sources.binlog.events import EventHeader, RowAction


@dataclass(slots=True)
class RowEvent:
    """One insert/update/delete affecting one or more rows of a table.

    For updates ``rows`` alternates before- and after-images.  Snapshot
    events have no ``header`` and carry the snapshot's resume position.
    """

    table: TableMeta
    action: RowAction
    rows: list[list[Any]]
    position: BinlogPosition
    header: EventHeader | None = None

    @property
    def is_snapshot(self) -> bool:
        return self.header is None

    def pairs(self) -> list[tuple[list[Any], list[Any]]]:
        """``(before, after)`` image pairs of an update."""
        if self.action != RowAction.UPDATE:
            msg = f"pairs() is only defined for updates, not {self.action}"
            raise ValueError(msg)
        return list(zip(self.rows[0::2], self.rows[1::2], strict=True))

    def as_dicts(self) -> list[dict[str, Any]]:
        names = self.table.column_names
        return [dict(zip(names, row, strict=True)) for row in self.rows]

    def __str__(self) -> str:
        return f"{self.action} {self.table.qualified_name} {self.rows}"


@dataclass(frozen=True, slots=True)
class DDLEvent:
    schema: str
    query: str
    targets: tuple[DDLTarget, ...]
    position: BinlogPosition
    header: EventHeader | None = None


@dataclass(frozen=True, slots=True)
class RotateEvent:
    next_name: str
    next_pos: int
    position: BinlogPosition

    @property
    def next_position(self) -> BinlogPosition:
        return BinlogPosition(self.next_name, self.next_pos)


@dataclass(frozen=True, slots=True)
class XidEvent:
    """Transaction commit boundary."""

    xid: int
    position: BinlogPosition
    gtid_set: GtidSet = field(default_factory=GtidSet)


@dataclass(frozen=True, slots=True)
class GtidEvent:
    """Id of the transaction whose events follow."""

    gtid: str
    position: BinlogPosition
