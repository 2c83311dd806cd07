#!/usr/bin/env python3
"""Runnable demo: snapshot a MySQL database, then print its changes.

Prerequisites:
    a MySQL server with log_bin=ON and binlog_format=ROW
    uv run python examples/binlog_demo.py
"""

from __future__ import annotations

import asyncio
import sys

from rich.console import Console

from binlog_cdc import Engine, RowEvent
from binlog_cdc.config.loader import build_engine_config
from binlog_cdc.engine.events import DDLEvent
from binlog_cdc.observability.health import check_engine_health
from binlog_cdc.observability.logging import configure_logging

console = Console()


class PrintingHandler:
    def __init__(self) -> None:
        self.snapshot_rows = 0

    async def on_row(self, event: RowEvent) -> None:
        if event.is_snapshot:
            self.snapshot_rows += len(event.rows)
            return
        console.print(
            f"[cyan]{event.table.qualified_name}[/cyan] {event.action} "
            f"[dim]{event.position}[/dim]"
        )
        for row in event.as_dicts():
            console.print(f"  {row}")

    async def on_ddl(self, event: DDLEvent) -> None:
        console.print(f"[yellow]DDL[/yellow] {event.query}")


def main() -> None:
    configure_logging(level="WARNING")

    # 1. Build config from defaults + minimal overrides
    config = build_engine_config(
        {
            "source": {"password": "cdc_password", "server_id": 4001},
            "dump": {"databases": ["shop"]},
            "include_table_regex": [r"^shop\."],
        }
    )

    # 2. Health check
    health = check_engine_health(config)
    if not health.healthy:
        console.print("[red]Source not ready:[/red]", health.summary)
        sys.exit(1)
    console.print("[green]Source healthy[/green]")

    # 3. Snapshot, then stream until Ctrl+C
    handler = PrintingHandler()
    engine = Engine(config, handler=handler)

    async def run() -> None:
        worker = asyncio.create_task(engine.run())
        await engine.wait_snapshot_done()
        console.print(
            f"[green]Snapshot done:[/green] {handler.snapshot_rows} rows, "
            f"resuming at {engine.position}"
        )
        head = await engine.catch_position()
        console.print(f"[green]Caught up[/green] to {head}")
        console.print("[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            await worker
        finally:
            engine.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print(f"\nStopped at {engine.position}")


if __name__ == "__main__":
    main()
