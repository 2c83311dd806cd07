"""End-to-end: mysqldump snapshot + binlog stream against a live MySQL."""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from binlog_cdc import Engine, EngineState, RowAction
from binlog_cdc.engine.events import DDLEvent, RowEvent, XidEvent


class Collector:
    def __init__(self) -> None:
        self.rows: list[RowEvent] = []
        self.ddls: list[DDLEvent] = []
        self.xids: list[XidEvent] = []

    async def on_row(self, event: RowEvent) -> None:
        self.rows.append(event)

    async def on_ddl(self, event: DDLEvent) -> None:
        self.ddls.append(event)

    async def on_xid(self, event: XidEvent) -> None:
        self.xids.append(event)

    def streamed(self) -> list[RowEvent]:
        return [e for e in self.rows if not e.is_snapshot]


@pytest.mark.integration
class TestMySQLEngine:
    async def test_snapshot_then_stream(self, engine_config, database, execute):
        collector = Collector()
        engine = Engine(engine_config, handler=collector)
        worker = asyncio.create_task(engine.run())
        try:
            await asyncio.wait_for(engine.wait_snapshot_done(), 60)
            snapshot = sorted(
                (row for e in collector.rows for row in e.as_dicts()),
                key=lambda r: r["id"],
            )
            assert snapshot[0]["name"] == "alice"
            assert snapshot[0]["balance"] == Decimal("10.50")
            assert snapshot[0]["created"] == datetime(2024, 1, 2, 3, 4, 5, 250000)
            assert snapshot[1]["balance"] is None

            execute(
                f"INSERT INTO `{database}`.users VALUES (3, 'carol', 1.25, NULL)",
                f"UPDATE `{database}`.users SET name = 'bobby' WHERE id = 2",
                f"DELETE FROM `{database}`.users WHERE id = 1",
            )
            await engine.catch_position(timeout=30)

            streamed = collector.streamed()
            assert [e.action for e in streamed] == [
                RowAction.INSERT,
                RowAction.UPDATE,
                RowAction.DELETE,
            ]
            assert streamed[0].as_dicts()[0]["balance"] == Decimal("1.25")
            before, after = streamed[1].as_dicts()
            assert (before["name"], after["name"]) == ("bob", "bobby")
            assert streamed[2].as_dicts()[0]["id"] == 1
            assert len(collector.xids) >= 3
        finally:
            engine.close()
            await asyncio.wait_for(worker, 10)
        assert engine.state == EngineState.CLOSED

    async def test_ddl_changes_row_shape(self, engine_config, database, execute):
        collector = Collector()
        engine = Engine(engine_config, handler=collector)
        worker = asyncio.create_task(engine.run())
        try:
            await asyncio.wait_for(engine.wait_snapshot_done(), 60)
            execute(
                f"ALTER TABLE `{database}`.users ADD COLUMN age INT NULL",
                f"INSERT INTO `{database}`.users VALUES (9, 'zed', NULL, NULL, 42)",
            )
            await engine.catch_position(timeout=30)

            (ddl,) = collector.ddls
            assert ddl.targets[0].table == "users"
            assert collector.streamed()[-1].as_dicts()[0]["age"] == 42
        finally:
            engine.close()
            await asyncio.wait_for(worker, 10)

    async def test_excluded_table_is_not_delivered(
        self, engine_config, database, execute
    ):
        execute(f"CREATE TABLE `{database}`.audit (id INT PRIMARY KEY)")
        config = engine_config.model_copy(
            update={"exclude_table_regex": [rf"^{database}\.audit$"]}
        )
        collector = Collector()
        engine = Engine(config, handler=collector)
        worker = asyncio.create_task(engine.run())
        try:
            await asyncio.wait_for(engine.wait_snapshot_done(), 60)
            execute(
                f"INSERT INTO `{database}`.audit VALUES (1)",
                f"INSERT INTO `{database}`.users VALUES (4, 'dora', NULL, NULL)",
            )
            await engine.catch_position(timeout=30)
            tables = {e.table.table for e in collector.rows}
            assert tables == {"users"}
        finally:
            engine.close()
            await asyncio.wait_for(worker, 10)
