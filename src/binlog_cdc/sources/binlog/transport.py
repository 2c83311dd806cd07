"""Replication transport: the connection that streams binlog events.

``MySQLReplicationTransport`` registers with the source as a replica and
issues COM_BINLOG_DUMP over a PyMySQL connection.  Every packet the server
sends afterwards is one binlog event prefixed with an OK byte.
"""

from __future__ import annotations

import asyncio
import socket
import struct
from typing import Any, Protocol, runtime_checkable

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from binlog_cdc.config.models import Flavor, SourceConfig
from binlog_cdc.errors import SourceError
from binlog_cdc.position import BinlogPosition

logger = structlog.get_logger()

COM_BINLOG_DUMP = 0x12
COM_REGISTER_SLAVE = 0x15

_MAX_REPORT_STRING = 255


@runtime_checkable
class ReplicationTransport(Protocol):
    """Source of raw binlog events."""

    @property
    def supports_heartbeat(self) -> bool:
        """True if the server can be asked to emit heartbeat events."""
        ...

    @property
    def checksum_enabled(self) -> bool:
        """True if events on this connection carry a CRC32 trailer."""
        ...

    def configure_heartbeat(self, period: float) -> None:
        """Request server heartbeats every *period* seconds (before connect)."""
        ...

    async def connect(self, start: BinlogPosition) -> None:
        ...

    async def read_packet(self) -> bytes:
        """Return one complete event; raise EOFError when the stream ends."""
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...


def _length_prefixed(value: str) -> bytes:
    raw = value.encode()[:_MAX_REPORT_STRING]
    return struct.pack("<B", len(raw)) + raw


class MySQLReplicationTransport:
    """Binlog dump connection over PyMySQL."""

    def __init__(self, config: SourceConfig) -> None:
        self._config = config
        self._conn: Any = None
        self._heartbeat_period = 0.0
        self._checksum = False

    @property
    def supports_heartbeat(self) -> bool:
        return True

    @property
    def checksum_enabled(self) -> bool:
        return self._checksum

    def configure_heartbeat(self, period: float) -> None:
        self._heartbeat_period = period

    def _open(self) -> Any:
        import pymysql

        cfg = self._config
        retrying = retry(
            retry=retry_if_exception_type(pymysql.err.OperationalError),
            stop=stop_after_attempt(cfg.retry.max_attempts),
            wait=wait_exponential(
                multiplier=cfg.retry.multiplier,
                min=cfg.retry.initial_wait_seconds,
                max=cfg.retry.max_wait_seconds,
            ),
            reraise=True,
        )
        return retrying(pymysql.connect)(
            host=cfg.host,
            port=cfg.port,
            user=cfg.username,
            password=cfg.password.get_secret_value(),
            charset=cfg.charset,
            connect_timeout=cfg.connect_timeout_seconds,
            autocommit=True,
        )

    def _prepare_session(self, conn: Any) -> None:
        with conn.cursor() as cursor:
            cursor.execute("SHOW GLOBAL VARIABLES LIKE 'BINLOG_CHECKSUM'")
            row = cursor.fetchone()
            self._checksum = bool(row) and str(row[1]).upper() not in ("", "NONE")
            if self._checksum:
                cursor.execute("SET @master_binlog_checksum = @@global.binlog_checksum")
            if self._heartbeat_period > 0:
                # The server expects nanoseconds.
                cursor.execute(
                    "SET @master_heartbeat_period = %s",
                    (int(self._heartbeat_period * 1_000_000_000),),
                )
            if self._config.flavor == Flavor.MARIADB:
                cursor.execute("SET @mariadb_slave_capability = 4")

    def _register_replica(self, conn: Any) -> None:
        cfg = self._config
        payload = (
            struct.pack("<BI", COM_REGISTER_SLAVE, cfg.server_id)
            + _length_prefixed(socket.gethostname())
            + _length_prefixed(cfg.username)
            + _length_prefixed(cfg.password.get_secret_value())
            + struct.pack("<HII", cfg.port, 0, 0)
        )
        conn._write_bytes(struct.pack("<I", len(payload)) + payload)
        conn._next_seq_id = 1
        conn._read_packet()

    def _start_dump(self, conn: Any, start: BinlogPosition) -> None:
        name = start.name.encode()
        payload = (
            struct.pack("<BIHI", COM_BINLOG_DUMP, start.pos, 0, self._config.server_id)
            + name
        )
        conn._write_bytes(struct.pack("<I", len(payload)) + payload)
        conn._next_seq_id = 1

    def _connect_sync(self, start: BinlogPosition) -> None:
        import pymysql

        conn = self._open()
        try:
            self._prepare_session(conn)
            self._register_replica(conn)
            self._start_dump(conn, start)
        except pymysql.MySQLError as exc:
            conn.close()
            code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
            raise SourceError(f"binlog dump failed: {exc}", code=code) from exc
        self._conn = conn

    async def connect(self, start: BinlogPosition) -> None:
        await asyncio.to_thread(self._connect_sync, start)
        logger.info(
            "transport.dump_started",
            address=self._config.address,
            position=str(start),
            server_id=self._config.server_id,
            checksum=self._checksum,
        )

    def _read_sync(self) -> bytes:
        import pymysql

        conn = self._conn
        if conn is None:
            raise EOFError("replication connection is closed")
        try:
            packet = conn._read_packet()
        except pymysql.MySQLError as exc:
            code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
            raise SourceError(f"binlog stream failed: {exc}", code=code) from exc
        if packet.is_eof_packet():
            raise EOFError("source closed the binlog stream")
        data = packet.get_all_data()
        # Strip the OK marker.
        return data[1:]

    async def read_packet(self) -> bytes:
        return await asyncio.to_thread(self._read_sync)

    async def ping(self) -> None:
        # Server heartbeats keep a dump connection alive; COM_PING is not
        # allowed once COM_BINLOG_DUMP has been issued.
        return None

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            # Force-close so a reader blocked in another thread wakes up.
            conn._force_close()
            logger.info("transport.closed", address=self._config.address)
