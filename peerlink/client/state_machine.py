"""Connection state machine observed by presentation code."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from peerlink.core.exceptions import IllegalTransitionError
from peerlink.models import ConnectionState

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, ConnectionState], None]

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.CREATING, ConnectionState.CONNECTING}),
    ConnectionState.CREATING: frozenset({ConnectionState.WAITING}),
    ConnectionState.WAITING: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED}),
    ConnectionState.CONNECTED: frozenset(),
}


class ConnectionStateMachine:
    """Five-state lifecycle; every state may fall back to ``idle``.

    There is no way back from ``connected`` except ``idle``: a broken link is
    re-negotiated from scratch.
    """

    def __init__(self) -> None:
        self._state = ConnectionState.IDLE
        self._listeners: list[StateListener] = []
        self._waiters: list[tuple[ConnectionState, asyncio.Future]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_in(self, *states: ConnectionState) -> bool:
        return self._state in states

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def can_transition(self, target: ConnectionState) -> bool:
        if target is ConnectionState.IDLE:
            return True
        return target in _TRANSITIONS[self._state]

    def transition(self, target: ConnectionState) -> None:
        if not self.can_transition(target):
            raise IllegalTransitionError(self._state.value, target.value)
        previous = self._state
        if previous is target:
            return
        self._state = target
        logger.info("Connection state %s -> %s", previous.value, target.value)
        for listener in list(self._listeners):
            try:
                listener(previous, target)
            except Exception:  # noqa: BLE001
                logger.exception("State listener failed")
        for expected, waiter in list(self._waiters):
            if expected is target and not waiter.done():
                waiter.set_result(None)

    def reset(self) -> None:
        self.transition(ConnectionState.IDLE)

    async def wait_for(self, target: ConnectionState, timeout: float | None = None) -> None:
        """Block until the machine enters ``target`` (returns at once if already there)."""
        if self._state is target:
            return
        entry = (target, asyncio.get_running_loop().create_future())
        self._waiters.append(entry)
        try:
            await asyncio.wait_for(entry[1], timeout)
        finally:
            self._waiters.remove(entry)
