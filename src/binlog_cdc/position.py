"""Replication checkpoints.

Two flavours of position are tracked:

- ``BinlogPosition``: binlog file name + byte offset; totally ordered.
- ``GtidSet``: the set of executed global transaction ids; only ever grows.

Both are immutable: every operation that "moves" a position returns a new one.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from functools import total_ordering


class Ordering(StrEnum):
    BEFORE = "before"
    EQUAL = "equal"
    AFTER = "after"


_FILE_SUFFIX = re.compile(r"^(?P<base>.*?)\.?(?P<seq>\d+)$")


def _file_key(name: str) -> tuple[str, int, str]:
    """Sort key for binlog file names: numeric suffix wins over lexical order."""
    match = _FILE_SUFFIX.match(name)
    if match is None:
        return (name, -1, name)
    return (match.group("base"), int(match.group("seq")), name)


@total_ordering
@dataclass(frozen=True, slots=True)
class BinlogPosition:
    """A byte offset inside a named binlog file."""

    name: str
    pos: int

    def __post_init__(self) -> None:
        if self.pos < 0:
            msg = f"binlog offset must be non-negative, got {self.pos}"
            raise ValueError(msg)

    @classmethod
    def parse(cls, text: str) -> BinlogPosition:
        """Parse ``"mysql-bin.000003:1234"``."""
        name, sep, pos = text.rpartition(":")
        if not sep or not name or not pos.isdigit():
            msg = f"invalid binlog position {text!r}, expected 'file:offset'"
            raise ValueError(msg)
        return cls(name, int(pos))

    def advance(self, delta: int) -> BinlogPosition:
        if delta < 0:
            msg = f"cannot move a position backwards (delta={delta})"
            raise ValueError(msg)
        return BinlogPosition(self.name, self.pos + delta)

    def with_offset(self, pos: int) -> BinlogPosition:
        return BinlogPosition(self.name, pos)

    def rotate(self, name: str, pos: int = 4) -> BinlogPosition:
        return BinlogPosition(name, pos)

    def _key(self) -> tuple[tuple[str, int, str], int]:
        return (_file_key(self.name), self.pos)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BinlogPosition):
            return NotImplemented
        return self._key() < other._key()

    def compare(self, other: BinlogPosition) -> Ordering:
        if self == other:
            return Ordering.EQUAL
        return Ordering.BEFORE if self < other else Ordering.AFTER

    def __str__(self) -> str:
        return f"{self.name}:{self.pos}"


Interval = tuple[int, int]  # inclusive [start, stop]


def _coalesce(intervals: list[Interval]) -> tuple[Interval, ...]:
    merged: list[Interval] = []
    for start, stop in sorted(intervals):
        if merged and start <= merged[-1][1] + 1:
            merged[-1] = (merged[-1][0], max(merged[-1][1], stop))
        else:
            merged.append((start, stop))
    return tuple(merged)


@dataclass(frozen=True, slots=True)
class GtidSet:
    """MySQL GTID set, e.g. ``3E11FA47-...:1-5:7,4D22...:1-3``."""

    sets: dict[str, tuple[Interval, ...]] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str) -> GtidSet:
        sets: dict[str, list[Interval]] = {}
        for chunk in text.replace("\n", "").split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            sid, *ranges = chunk.split(":")
            try:
                sid = str(uuid.UUID(sid.strip()))
            except ValueError as exc:
                msg = f"invalid GTID source id in {chunk!r}"
                raise ValueError(msg) from exc
            if not ranges:
                msg = f"GTID set entry {chunk!r} has no intervals"
                raise ValueError(msg)
            for item in ranges:
                start, _, stop = item.partition("-")
                if not start.isdigit() or (stop and not stop.isdigit()):
                    msg = f"invalid GTID interval {item!r}"
                    raise ValueError(msg)
                lo = int(start)
                hi = int(stop) if stop else lo
                if hi < lo:
                    msg = f"invalid GTID interval {item!r}"
                    raise ValueError(msg)
                sets.setdefault(sid, []).append((lo, hi))
        return cls({sid: _coalesce(iv) for sid, iv in sets.items()})

    def add(self, sid: str, gno: int) -> GtidSet:
        """Return a new set that also contains ``sid:gno``."""
        return self.update(GtidSet({str(uuid.UUID(sid)): ((gno, gno),)}))

    def update(self, other: GtidSet) -> GtidSet:
        merged = {sid: list(iv) for sid, iv in self.sets.items()}
        for sid, intervals in other.sets.items():
            merged.setdefault(sid, []).extend(intervals)
        return GtidSet({sid: _coalesce(iv) for sid, iv in merged.items()})

    def contains(self, other: GtidSet) -> bool:
        for sid, intervals in other.sets.items():
            mine = self.sets.get(sid, ())
            for start, stop in intervals:
                if not any(lo <= start and stop <= hi for lo, hi in mine):
                    return False
        return True

    def compare(self, other: GtidSet) -> Ordering:
        if self == other:
            return Ordering.EQUAL
        return Ordering.AFTER if self.contains(other) else Ordering.BEFORE

    def __ge__(self, other: GtidSet) -> bool:
        return self.contains(other)

    def __bool__(self) -> bool:
        return bool(self.sets)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GtidSet):
            return NotImplemented
        return self.sets == other.sets

    def __hash__(self) -> int:
        return hash(str(self))

    def __str__(self) -> str:
        parts = []
        for sid in sorted(self.sets):
            ranges = ":".join(
                str(lo) if lo == hi else f"{lo}-{hi}" for lo, hi in self.sets[sid]
            )
            parts.append(f"{sid}:{ranges}")
        return ",".join(parts)
