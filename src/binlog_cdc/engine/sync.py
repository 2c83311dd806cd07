"""Synchronization primitives shared by the engine and its callers."""

from __future__ import annotations

import asyncio

from binlog_cdc.position import BinlogPosition, GtidSet


class SnapshotLatch:
    """Settle-once latch signalled when the snapshot phase ends.

    ``set()`` and ``fail()`` are idempotent; only the first call wins.
    Waiters that arrive after settlement return (or raise) immediately.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._error: BaseException | None = None

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> BaseException | None:
        return self._error

    def set(self) -> None:
        self._event.set()

    def fail(self, error: BaseException) -> None:
        if self._event.is_set():
            return
        self._error = error
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
        if self._error is not None:
            raise self._error


class PositionTracker:
    """Holds the engine's committed position.

    There is a single writer (the stream worker).  Positions are immutable and
    the reference is replaced in one assignment, so readers on any thread see
    either the old or the new value, never a mix.
    """

    def __init__(
        self,
        position: BinlogPosition | None = None,
        gtid_set: GtidSet | None = None,
    ) -> None:
        self._position = position
        self._gtid_set = gtid_set or GtidSet()

    @property
    def current(self) -> BinlogPosition | None:
        return self._position

    @property
    def gtid_set(self) -> GtidSet:
        return self._gtid_set

    def update(self, position: BinlogPosition, gtid_set: GtidSet | None = None) -> None:
        if self._position is not None and position < self._position:
            msg = f"position moved backwards: {self._position} -> {position}"
            raise ValueError(msg)
        self._position = position
        if gtid_set is not None:
            self._gtid_set = gtid_set

    def reached(self, target: BinlogPosition) -> bool:
        return self._position is not None and self._position >= target
