"""Unit tests for the snapshot latch, position tracker and lifecycle states."""

from __future__ import annotations

import asyncio

import pytest

from binlog_cdc.engine.state import EngineState, StateMachine
from binlog_cdc.engine.sync import PositionTracker, SnapshotLatch
from binlog_cdc.position import BinlogPosition


class TestSnapshotLatch:
    async def test_waiters_released_on_set(self):
        latch = SnapshotLatch()
        waiter = asyncio.create_task(latch.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        latch.set()
        await asyncio.wait_for(waiter, 1)
        assert latch.done

    async def test_late_waiter_returns_immediately(self):
        latch = SnapshotLatch()
        latch.set()
        await asyncio.wait_for(latch.wait(), 0.1)

    async def test_fail_raises_in_waiters(self):
        latch = SnapshotLatch()
        latch.fail(RuntimeError("dump failed"))
        with pytest.raises(RuntimeError, match="dump failed"):
            await latch.wait()

    async def test_first_settlement_wins(self):
        latch = SnapshotLatch()
        latch.set()
        latch.fail(RuntimeError("too late"))
        assert latch.error is None
        await latch.wait()


class TestPositionTracker:
    def test_update_and_reached(self):
        tracker = PositionTracker()
        target = BinlogPosition("f.000001", 100)
        assert not tracker.reached(target)
        tracker.update(BinlogPosition("f.000001", 100))
        assert tracker.reached(target)
        tracker.update(BinlogPosition("f.000002", 4))
        assert tracker.reached(target)

    def test_backwards_update_rejected(self):
        tracker = PositionTracker(BinlogPosition("f.000002", 4))
        with pytest.raises(ValueError, match="backwards"):
            tracker.update(BinlogPosition("f.000001", 900))
        assert tracker.current == BinlogPosition("f.000002", 4)


class TestStateMachine:
    def test_normal_lifecycle(self):
        sm = StateMachine()
        for state in (
            EngineState.SNAPSHOT_RUNNING,
            EngineState.SNAPSHOT_DONE,
            EngineState.STREAMING,
            EngineState.STREAMING,
            EngineState.CLOSED,
        ):
            sm.transition(state)
        assert sm.state == EngineState.CLOSED
        assert sm.terminal

    def test_start_from_position_skips_snapshot(self):
        sm = StateMachine()
        sm.transition(EngineState.SNAPSHOT_DONE)
        assert sm.can_transition(EngineState.STREAMING)

    @pytest.mark.parametrize(
        ("path", "target"),
        [
            ((), EngineState.STREAMING),
            ((EngineState.SNAPSHOT_RUNNING,), EngineState.STREAMING),
            ((EngineState.FAILED,), EngineState.STREAMING),
            ((EngineState.CLOSED,), EngineState.FAILED),
        ],
    )
    def test_invalid_transitions(self, path, target):
        sm = StateMachine()
        for state in path:
            sm.transition(state)
        with pytest.raises(ValueError, match="invalid engine state transition"):
            sm.transition(target)
