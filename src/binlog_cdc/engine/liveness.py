"""Heartbeats and read-timeout detection for the replication stream."""

from __future__ import annotations

import asyncio
import time
from contextlib import suppress

import structlog

from binlog_cdc.errors import StreamTimeoutError
from binlog_cdc.sources.binlog.transport import ReplicationTransport

logger = structlog.get_logger()


class LivenessMonitor:
    """Keeps an idle stream distinguishable from a dead one.

    With ``heartbeat_period`` > 0 the server is asked to send heartbeat events
    (or, for transports that cannot, the monitor pings on its own whenever the
    stream has been idle that long).  With ``read_timeout`` > 0 a read that
    receives nothing for that long raises StreamTimeoutError.  Zero disables
    either mechanism.
    """

    def __init__(self, heartbeat_period: float = 0.0, read_timeout: float = 0.0) -> None:
        if heartbeat_period > 0 and read_timeout > 0 and read_timeout <= heartbeat_period:
            msg = (
                f"read timeout ({read_timeout:g}s) must exceed the heartbeat "
                f"period ({heartbeat_period:g}s)"
            )
            raise ValueError(msg)
        self._heartbeat_period = heartbeat_period
        self._read_timeout = read_timeout
        self._last_activity = time.monotonic()
        self._ping_task: asyncio.Task[None] | None = None
        self._ping_error: BaseException | None = None
        self.pings_sent = 0

    @property
    def heartbeat_period(self) -> float:
        return self._heartbeat_period

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    @property
    def last_activity(self) -> float:
        """``time.monotonic()`` of the last received packet."""
        return self._last_activity

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self._last_activity

    def prepare(self, transport: ReplicationTransport) -> None:
        """Request server heartbeats; must run before the transport connects."""
        if self._heartbeat_period > 0 and transport.supports_heartbeat:
            transport.configure_heartbeat(self._heartbeat_period)

    def start(self, transport: ReplicationTransport) -> None:
        """Start client-side pings for transports without server heartbeats."""
        self._last_activity = time.monotonic()
        self._ping_error = None
        if self._heartbeat_period > 0 and not transport.supports_heartbeat:
            self._ping_task = asyncio.create_task(self._ping_loop(transport))

    async def _ping_loop(self, transport: ReplicationTransport) -> None:
        period = self._heartbeat_period
        while True:
            await asyncio.sleep(max(period - self.idle_seconds, 0.0))
            if self.idle_seconds < period:
                continue
            try:
                await transport.ping()
            except Exception as exc:
                logger.warning("liveness.ping_failed", error=str(exc))
                self._ping_error = exc
                return
            self.pings_sent += 1
            self._last_activity = time.monotonic()

    async def read(self, transport: ReplicationTransport) -> bytes:
        """Read one packet, enforcing the read timeout."""
        if self._ping_error is not None:
            error, self._ping_error = self._ping_error, None
            raise error
        if self._read_timeout > 0:
            try:
                packet = await asyncio.wait_for(transport.read_packet(), self._read_timeout)
            except TimeoutError:
                logger.warning("liveness.read_timeout", timeout=self._read_timeout)
                raise StreamTimeoutError(self._read_timeout) from None
        else:
            packet = await transport.read_packet()
        self._last_activity = time.monotonic()
        return packet

    async def stop(self) -> None:
        task, self._ping_task = self._ping_task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
