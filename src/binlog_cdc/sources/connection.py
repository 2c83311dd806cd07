"""Query connection to the MySQL source.

The engine only needs a handful of queries (table metadata, head position,
ad-hoc statements), so the protocol is deliberately narrow.  The PyMySQL
implementation runs blocking calls in a worker thread.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from binlog_cdc.config.models import SourceConfig
from binlog_cdc.errors import SourceError
from binlog_cdc.position import BinlogPosition

logger = structlog.get_logger()

# MySQL 8.4 removed SHOW MASTER STATUS in favour of SHOW BINARY LOG STATUS.
_ER_PARSE_ERROR = 1064


@runtime_checkable
class SourceConnection(Protocol):
    async def query(
        self, sql: str, args: Sequence[Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run *sql* and return rows as dicts (empty for statements)."""
        ...

    async def close(self) -> None:
        ...


class PyMySQLConnection:
    """SourceConnection over a single PyMySQL connection."""

    def __init__(self, config: SourceConfig) -> None:
        self._config = config
        self._conn: Any = None
        self._lock = threading.Lock()

    def _connect(self) -> Any:
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
        conn = retrying(pymysql.connect)(
            host=cfg.host,
            port=cfg.port,
            user=cfg.username,
            password=cfg.password.get_secret_value(),
            charset=cfg.charset,
            autocommit=True,
            connect_timeout=cfg.connect_timeout_seconds,
            cursorclass=pymysql.cursors.DictCursor,
        )
        logger.info("source.connected", address=cfg.address)
        return conn

    def _query_sync(self, sql: str, args: Sequence[Any] | None) -> list[dict[str, Any]]:
        import pymysql

        with self._lock:
            try:
                if self._conn is None:
                    self._conn = self._connect()
                else:
                    self._conn.ping(reconnect=True)
                with self._conn.cursor() as cursor:
                    cursor.execute(sql, tuple(args) if args else None)
                    return list(cursor.fetchall() or [])
            except pymysql.MySQLError as exc:
                code = exc.args[0] if exc.args and isinstance(exc.args[0], int) else None
                message = exc.args[1] if len(exc.args) > 1 else str(exc)
                raise SourceError(str(message), code=code) from exc

    async def query(
        self, sql: str, args: Sequence[Any] | None = None
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, sql, args)

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                conn.close()

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)


async def fetch_master_status(connection: SourceConnection) -> dict[str, Any]:
    try:
        rows = await connection.query("SHOW MASTER STATUS")
    except SourceError as exc:
        if exc.code != _ER_PARSE_ERROR:
            raise
        rows = await connection.query("SHOW BINARY LOG STATUS")
    if not rows:
        msg = "binary logging is not enabled on the source (empty master status)"
        raise SourceError(msg)
    return rows[0]


async def fetch_master_position(connection: SourceConnection) -> BinlogPosition:
    """The source's current head position."""
    status = await fetch_master_status(connection)
    return BinlogPosition(str(status["File"]), int(status["Position"]))

