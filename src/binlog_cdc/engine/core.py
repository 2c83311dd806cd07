"""Replication engine: snapshot, then stream, dispatching to one handler.

A single worker (the coroutine running ``Engine.run``) owns the position and
the lifecycle state.  Everything it does is sequential: the snapshot finishes
before streaming starts, and each record is fully handled before the next
packet is read.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import structlog

from binlog_cdc.config.models import ChecksumMode, EngineConfig, SourceConfig
from binlog_cdc.engine.dispatcher import EventDispatcher
from binlog_cdc.engine.liveness import LivenessMonitor
from binlog_cdc.engine.state import EngineState, StateMachine
from binlog_cdc.engine.sync import PositionTracker, SnapshotLatch
from binlog_cdc.errors import (
    EngineClosedError,
    HandlerError,
    SourceError,
    StreamTimeoutError,
    SyncTimeoutError,
)
from binlog_cdc.position import BinlogPosition, GtidSet
from binlog_cdc.schema.filter import TableFilter
from binlog_cdc.schema.mysql_source import MySQLMetadataSource
from binlog_cdc.schema.registry import MetadataSource, SchemaRegistry
from binlog_cdc.schema.table import TableMeta
from binlog_cdc.snapshot.coordinator import DumperFactory, SnapshotCoordinator
from binlog_cdc.sources.binlog.decoder import BinlogDecoder
from binlog_cdc.sources.binlog.events import (
    DDLRecord,
    LogRecord,
    QueryRecord,
    RotateRecord,
    XidRecord,
)
from binlog_cdc.sources.binlog.transport import (
    MySQLReplicationTransport,
    ReplicationTransport,
)
from binlog_cdc.sources.connection import (
    PyMySQLConnection,
    SourceConnection,
    fetch_master_position,
)

logger = structlog.get_logger()

TransportFactory = Callable[[SourceConfig], ReplicationTransport]


def is_commit_point(record: LogRecord) -> bool:
    """True when the stream can be safely restarted right after *record*.

    A dump started inside a transaction would miss the TABLE_MAP events its
    remaining rows refer to, so only transaction boundaries qualify.
    """
    if isinstance(record, (XidRecord, DDLRecord, RotateRecord)):
        return True
    return isinstance(record, QueryRecord) and record.query.strip().upper() != "BEGIN"


class Engine:
    """Change-data-capture client for one MySQL source.

    Parameters
    ----------
    config:
        Engine configuration.
    handler:
        Any object implementing some of the EventHandler capabilities.
    connection, transport_factory, metadata_source, dumper_factory:
        Collaborators; default to the PyMySQL / mysqldump implementations.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        handler: Any | None = None,
        connection: SourceConnection | None = None,
        transport_factory: TransportFactory | None = None,
        metadata_source: MetadataSource | None = None,
        dumper_factory: DumperFactory | None = None,
    ) -> None:
        self._config = config
        self._connection = connection or PyMySQLConnection(config.source)
        self._registry = SchemaRegistry(
            metadata_source or MySQLMetadataSource(self._connection),
            TableFilter(config.include_table_regex, config.exclude_table_regex),
        )
        self._dispatcher = EventDispatcher(
            self._registry,
            handler,
            discard_no_meta_row_events=config.discard_no_meta_row_events,
        )
        self._transport_factory = transport_factory or MySQLReplicationTransport
        self._dumper_factory = dumper_factory
        self._liveness = LivenessMonitor(
            config.heartbeat_period_seconds, config.read_timeout_seconds
        )
        self._state = StateMachine()
        self._tracker = PositionTracker()
        self._latch = SnapshotLatch()
        self._closed = asyncio.Event()
        self._closing = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task[Any] | None = None
        self._transport: ReplicationTransport | None = None
        self._health_server: Any = None

    # -- properties --------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def state(self) -> EngineState:
        return self._state.state

    @property
    def position(self) -> BinlogPosition | None:
        """Position after the last handled transaction (None before the snapshot).

        This is the committed position: it only moves at transaction
        boundaries, so it is always a safe place to resume from.
        """
        return self._tracker.current

    @property
    def gtid_set(self) -> GtidSet:
        return self._tracker.gtid_set

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def handler(self) -> Any:
        return self._dispatcher.handler

    @property
    def snapshot_done(self) -> bool:
        return self._latch.done and self._latch.error is None

    @property
    def last_activity(self) -> float:
        return self._liveness.last_activity

    @property
    def closed(self) -> bool:
        return self._closing

    def set_handler(self, handler: Any | None) -> None:
        """Replace the active handler; takes effect from the next record."""
        self._dispatcher.set_handler(handler)

    # -- run loop ----------------------------------------------------------

    async def run(self, start: BinlogPosition | None = None) -> None:
        """Snapshot (unless *start* is given) and stream until close or failure.

        Returns normally after ``close()``.  A StreamTimeoutError leaves the
        engine in STREAMING, so calling ``run()`` again resumes from
        ``position``; every other error moves it to FAILED.
        """
        if self._closing or self._state.terminal:
            raise EngineClosedError(f"engine is {self._state.state}")
        if self._worker is not None:
            raise RuntimeError("engine is already running")
        self._loop = asyncio.get_running_loop()
        self._worker = asyncio.current_task()

        try:
            await self._start_health_server()
            position = await self._resume_position(start)
            await self._stream(position)
        except asyncio.CancelledError:
            if not self._closing:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            logger.info("engine.closed", position=str(self.position))
        except StreamTimeoutError as exc:
            try:
                await self._dispatcher.notify("on_heartbeat_timeout", exc)
            except HandlerError as handler_exc:
                exc.add_note(f"on_heartbeat_timeout also failed: {handler_exc}")
            raise
        except Exception as exc:
            if self._closing:
                logger.info("engine.closed_with_error", error=str(exc))
                return
            if self._state.can_transition(EngineState.FAILED):
                self._state.transition(EngineState.FAILED)
            self._latch.fail(exc)
            logger.error("engine.failed", error=str(exc), position=str(self.position))
            try:
                await self._dispatcher.notify("on_stream_error", exc)
            except HandlerError as handler_exc:
                exc.add_note(f"on_stream_error also failed: {handler_exc}")
            raise
        finally:
            self._worker = None
            await self._teardown()

    async def _resume_position(self, start: BinlogPosition | None) -> BinlogPosition:
        if self._state.state == EngineState.STREAMING:
            current = self._tracker.current
            if start is not None and current is not None and start < current:
                msg = f"cannot rewind a streaming engine from {current} to {start}"
                raise ValueError(msg)
            resume = start or current
            if resume is None:
                raise EngineClosedError("no position to resume streaming from")
            return resume

        if start is not None:
            self._tracker.update(start)
            self._state.transition(EngineState.SNAPSHOT_DONE)
            self._latch.set()
            return start

        self._state.transition(EngineState.SNAPSHOT_RUNNING)
        logger.info("engine.snapshot_started")
        coordinator = SnapshotCoordinator(
            self._config,
            self._registry,
            self._connection,
            self._dispatcher.dispatch_row_event,
            self._dumper_factory,
        )
        position = await coordinator.run()
        self._tracker.update(position, coordinator.gtid_set)
        self._state.transition(EngineState.SNAPSHOT_DONE)
        self._latch.set()
        logger.info("engine.snapshot_done", position=str(position))
        return position

    def _checksum_override(self, transport: ReplicationTransport) -> bool | None:
        mode = self._config.binlog_checksum
        if mode == ChecksumMode.CRC32:
            return True
        if mode == ChecksumMode.NONE:
            return False
        return transport.checksum_enabled

    async def _stream(self, position: BinlogPosition) -> None:
        self._state.transition(EngineState.STREAMING)
        transport = self._transport_factory(self._config.source)
        self._transport = transport
        self._liveness.prepare(transport)
        await transport.connect(position)
        decoder = BinlogDecoder(
            position,
            checksum=self._checksum_override(transport),
            gtid_set=self._tracker.gtid_set,
        )
        self._liveness.start(transport)
        logger.info("engine.streaming", position=str(position))

        while True:
            try:
                packet = await self._liveness.read(transport)
            except EOFError as exc:
                raise SourceError(f"replication stream ended: {exc}") from exc
            record, reached = decoder.decode_event(packet)
            await self._dispatcher.dispatch(record, reached, decoder.gtid_set)
            if is_commit_point(record):
                self._tracker.update(reached, decoder.gtid_set)

    async def _teardown(self) -> None:
        await self._liveness.stop()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if self._closing or self._state.terminal:
            if self._state.can_transition(EngineState.CLOSED):
                self._state.transition(EngineState.CLOSED)
            await self._stop_health_server()
            await self._connection.close()

    # -- close ---------------------------------------------------------------

    def close(self) -> None:
        """Stop the engine.  Idempotent and safe to call from any thread."""
        if self._closing:
            return
        self._closing = True
        loop = self._loop
        if loop is None or loop.is_closed():
            self._close_now()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._close_now()
        else:
            loop.call_soon_threadsafe(self._close_now)

    def _close_now(self) -> None:
        logger.info("engine.closing", state=self._state.state.value)
        self._closed.set()
        if not self._latch.done:
            self._latch.fail(EngineClosedError("engine closed before the snapshot completed"))
        if self._worker is not None:
            self._worker.cancel()
        elif self._state.can_transition(EngineState.CLOSED):
            self._state.transition(EngineState.CLOSED)

    # -- synchronization -----------------------------------------------------

    async def wait_snapshot_done(self) -> None:
        """Resolve once the snapshot has completed (immediately if it has)."""
        await self._latch.wait()

    async def catch_position(
        self,
        target: BinlogPosition | None = None,
        timeout: float = 10.0,
    ) -> BinlogPosition:
        """Wait until the committed position reaches *target* (default: source head)."""
        if target is None:
            target = await fetch_master_position(self._connection)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = self._config.sync_poll_interval_seconds
        while not self._tracker.reached(target):
            if self._closed.is_set():
                raise EngineClosedError("engine closed while waiting for a position")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SyncTimeoutError(target, self._tracker.current, timeout)
            with suppress(TimeoutError):
                await asyncio.wait_for(self._closed.wait(), min(interval, remaining))
        current = self._tracker.current
        assert current is not None
        return current

    # -- pass-through --------------------------------------------------------

    async def get_table(self, schema: str, table: str) -> TableMeta:
        """Table metadata; raises ExcludedTableError / TableNotFoundError."""
        return await self._registry.get_table(schema, table)

    async def execute(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        """Run a statement on the source connection."""
        return await self._connection.query(sql, args or None)

    async def health(self) -> dict[str, Any]:
        from binlog_cdc.observability.health import engine_health

        return engine_health(self)

    async def _start_health_server(self) -> None:
        if not self._config.health_enabled or self._health_server is not None:
            return
        from binlog_cdc.observability.http_health import HealthServer

        self._health_server = HealthServer(self._config.health_port, self.health)
        await self._health_server.start()

    async def _stop_health_server(self) -> None:
        server, self._health_server = self._health_server, None
        if server is not None:
            await server.stop()
