"""Engine lifecycle states."""

from __future__ import annotations

from enum import StrEnum

import structlog

logger = structlog.get_logger()


class EngineState(StrEnum):
    CREATED = "created"
    SNAPSHOT_RUNNING = "snapshot_running"
    SNAPSHOT_DONE = "snapshot_done"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: dict[EngineState, frozenset[EngineState]] = {
    # CREATED -> SNAPSHOT_DONE when streaming starts from an explicit position.
    EngineState.CREATED: frozenset(
        {
            EngineState.SNAPSHOT_RUNNING,
            EngineState.SNAPSHOT_DONE,
            EngineState.CLOSED,
            EngineState.FAILED,
        }
    ),
    EngineState.SNAPSHOT_RUNNING: frozenset(
        {EngineState.SNAPSHOT_DONE, EngineState.CLOSED, EngineState.FAILED}
    ),
    EngineState.SNAPSHOT_DONE: frozenset(
        {EngineState.STREAMING, EngineState.CLOSED, EngineState.FAILED}
    ),
    # STREAMING re-enters itself when the stream reconnects.
    EngineState.STREAMING: frozenset(
        {EngineState.STREAMING, EngineState.CLOSED, EngineState.FAILED}
    ),
    EngineState.CLOSED: frozenset(),
    EngineState.FAILED: frozenset(),
}

ACTIVE_STATES = frozenset(
    {EngineState.SNAPSHOT_RUNNING, EngineState.SNAPSHOT_DONE, EngineState.STREAMING}
)


class StateMachine:
    def __init__(self) -> None:
        self._state = EngineState.CREATED

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self._state]

    def can_transition(self, target: EngineState) -> bool:
        return target in _TRANSITIONS[self._state]

    def transition(self, target: EngineState) -> None:
        if not self.can_transition(target):
            msg = f"invalid engine state transition {self._state} -> {target}"
            raise ValueError(msg)
        if target != self._state:
            logger.info("engine.state_changed", previous=self._state.value, state=target.value)
        self._state = target
