"""Event handler protocol.

Applications implement any subset of the capabilities below; missing ones
fall back to the no-op defaults of NoopHandler.
"""

from __future__ import annotations

import inspect
from typing import Any, Protocol, runtime_checkable

from binlog_cdc.engine.events import DDLEvent, GtidEvent, RotateEvent, RowEvent, XidEvent
from binlog_cdc.errors import StreamTimeoutError

CAPABILITIES = (
    "on_row",
    "on_ddl",
    "on_rotate",
    "on_xid",
    "on_gtid",
    "on_heartbeat_timeout",
    "on_stream_error",
)


@runtime_checkable
class EventHandler(Protocol):
    """Protocol for consumers of replication events."""

    async def on_row(self, event: RowEvent) -> None:
        """A snapshot or streamed row change."""
        ...

    async def on_ddl(self, event: DDLEvent) -> None:
        """A schema change; table metadata is already invalidated."""
        ...

    async def on_rotate(self, event: RotateEvent) -> None:
        ...

    async def on_xid(self, event: XidEvent) -> None:
        """Transaction commit boundary."""
        ...

    async def on_gtid(self, event: GtidEvent) -> None:
        ...

    async def on_heartbeat_timeout(self, error: StreamTimeoutError) -> None:
        ...

    async def on_stream_error(self, error: BaseException) -> None:
        ...


class NoopHandler:
    """Handler that ignores everything."""

    async def on_row(self, event: RowEvent) -> None:
        return None

    async def on_ddl(self, event: DDLEvent) -> None:
        return None

    async def on_rotate(self, event: RotateEvent) -> None:
        return None

    async def on_xid(self, event: XidEvent) -> None:
        return None

    async def on_gtid(self, event: GtidEvent) -> None:
        return None

    async def on_heartbeat_timeout(self, error: StreamTimeoutError) -> None:
        return None

    async def on_stream_error(self, error: BaseException) -> None:
        return None

    def __repr__(self) -> str:
        return "NoopHandler()"


class HandlerAdapter:
    """Wraps an arbitrary object so every capability is callable and awaitable.

    Methods the wrapped object lacks resolve to NoopHandler's; plain
    (non-async) methods are supported and their result is awaited only if it
    is awaitable.
    """

    def __init__(self, handler: Any | None = None) -> None:
        self.handler = handler if handler is not None else NoopHandler()
        self._fallback = NoopHandler()

    async def call(self, capability: str, argument: Any) -> None:
        if capability not in CAPABILITIES:
            msg = f"unknown handler capability {capability!r}"
            raise ValueError(msg)
        method = getattr(self.handler, capability, None)
        if method is None:
            method = getattr(self._fallback, capability)
        result = method(argument)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"HandlerAdapter({self.handler!r})"
