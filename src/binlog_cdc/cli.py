"""Typer CLI for binlog-cdc."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.table import Table

from binlog_cdc.config.loader import load_engine_config
from binlog_cdc.config.models import EngineConfig
from binlog_cdc.engine.core import Engine
from binlog_cdc.engine.events import DDLEvent, RotateEvent, RowEvent, XidEvent
from binlog_cdc.errors import CDCError
from binlog_cdc.observability.health import Status, check_engine_health
from binlog_cdc.observability.logging import configure_logging
from binlog_cdc.position import BinlogPosition
from binlog_cdc.sources.connection import PyMySQLConnection, fetch_master_status

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="binlog-cdc", help="MySQL binlog change-data-capture client")


def _load(config_path: str) -> EngineConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_engine_config(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(1) from exc


class ConsoleHandler:
    """Prints every event; used by ``binlog-cdc run``."""

    async def on_row(self, event: RowEvent) -> None:
        origin = "snapshot" if event.is_snapshot else str(event.position)
        console.print(
            f"[cyan]{event.table.qualified_name}[/cyan] {event.action} "
            f"[dim]{origin}[/dim]"
        )
        for row in event.as_dicts():
            console.print(f"  {row}")

    async def on_ddl(self, event: DDLEvent) -> None:
        console.print(f"[yellow]DDL[/yellow] {event.query} [dim]{event.position}[/dim]")

    async def on_rotate(self, event: RotateEvent) -> None:
        console.print(f"[magenta]rotate[/magenta] -> {event.next_position}")

    async def on_xid(self, event: XidEvent) -> None:
        console.print(f"[dim]commit xid={event.xid} {event.position}[/dim]")


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to engine YAML"),
) -> None:
    """Validate an engine configuration file."""
    cfg = _load(config_path)
    console.print(f"[green]Valid[/green] source={cfg.source.address}")
    console.print(f"  server_id: {cfg.source.server_id} ({cfg.source.flavor})")
    if cfg.dump.enabled:
        if cfg.dump.tables:
            selection = f"{cfg.dump.table_db}: {', '.join(cfg.dump.tables)}"
        elif cfg.dump.databases:
            selection = ", ".join(cfg.dump.databases)
        else:
            selection = "all databases"
        console.print(f"  snapshot: {cfg.dump.execution_path} ({selection})")
    else:
        console.print("  snapshot: disabled")
    console.print(f"  include:  {cfg.include_table_regex or '(all)'}")
    console.print(f"  exclude:  {cfg.exclude_table_regex or '(none)'}")
    console.print(
        f"  liveness: heartbeat={cfg.heartbeat_period_seconds:g}s "
        f"read_timeout={cfg.read_timeout_seconds:g}s"
    )


@app.command()
def health(
    config_path: str = typer.Argument(..., help="Path to engine YAML"),
) -> None:
    """Check the source database and snapshot tool."""
    cfg = _load(config_path)
    result = check_engine_health(cfg)

    table = Table(title="binlog-cdc health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")

    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)

    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def position(
    config_path: str = typer.Argument(..., help="Path to engine YAML"),
) -> None:
    """Print the source's current binlog position."""
    cfg = _load(config_path)

    async def _position() -> None:
        conn = PyMySQLConnection(cfg.source)
        try:
            status = await fetch_master_status(conn)
        finally:
            await conn.close()
        console.print(f"{status['File']}:{status['Position']}")
        gtids = status.get("Executed_Gtid_Set")
        if gtids:
            console.print(f"[dim]gtid_set: {gtids}[/dim]")

    try:
        asyncio.run(_position())
    except CDCError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to engine YAML"),
    start: str | None = typer.Option(
        None, "--start", help="Skip the snapshot and stream from FILE:POS"
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    """Snapshot, then stream changes to the console until interrupted."""
    configure_logging(json=json_logs, level=log_level)
    cfg = _load(config_path)
    try:
        start_pos = BinlogPosition.parse(start) if start else None
    except ValueError as exc:
        console.print(f"[red]Invalid --start:[/red] {exc}")
        raise typer.Exit(1) from exc

    engine = Engine(cfg, handler=ConsoleHandler())

    async def _run() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, engine.close)
        await engine.run(start_pos)

    try:
        asyncio.run(_run())
    except CDCError as exc:
        console.print(f"[red]Engine stopped:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(f"[green]Stopped[/green] at {engine.position}")
