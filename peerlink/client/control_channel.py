"""In-band control protocol carried over the peer link's data channel."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from pydantic import TypeAdapter, ValidationError

from peerlink.core.config import DATA_CHANNEL_OPEN_DELAY, MEDIA_STATE_SEND_DELAY
from peerlink.core.tasks import monitor_task
from peerlink.models import CallEndedMessage, ControlMessage, MediaState, MediaStateMessage

logger = logging.getLogger(__name__)

_control_message = TypeAdapter(ControlMessage)


def encode_control_message(message: MediaStateMessage | CallEndedMessage) -> str:
    return message.model_dump_json()


def decode_control_message(payload: Any) -> MediaStateMessage | CallEndedMessage | None:
    """Parse a received payload; malformed payloads yield ``None``."""
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(payload, str):
        return None
    try:
        return _control_message.validate_python(json.loads(payload))
    except (ValueError, ValidationError):
        return None


class ControlChannel:
    """Media-state sync and call termination over one data channel.

    A media-state change made while the channel is not open is kept as a
    single pending value (later changes replace it) and flushed once, shortly
    after the channel opens.
    """

    def __init__(
        self,
        *,
        on_media_state: Callable[[MediaState], None],
        on_call_ended: Callable[[], Awaitable[None]],
        open_delay: float = DATA_CHANNEL_OPEN_DELAY,
        debounce: float = MEDIA_STATE_SEND_DELAY,
    ) -> None:
        self._on_media_state = on_media_state
        self._on_call_ended = on_call_ended
        self._open_delay = open_delay
        self._debounce = debounce
        self._channel: Any | None = None
        self._pending: MediaState | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        return self._channel is not None and self._channel.readyState == "open"

    @property
    def pending(self) -> MediaState | None:
        return self._pending

    def attach(self, channel: Any) -> None:
        """Adopt a channel we created or one announced by the remote side."""
        self._channel = channel
        channel.on("open", self._handle_open)
        channel.on("message", self._handle_message)
        channel.on("close", lambda: logger.info("Control channel closed"))
        if channel.readyState == "open":
            # channels announced by the remote side may already be open
            self._handle_open()

    def _spawn(self, coro: Awaitable[None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        monitor_task(task, name=name, logger=logger)

    def _handle_open(self) -> None:
        logger.info("Control channel open")
        self._spawn(self._flush_after_delay(), "control-open-flush")

    async def _flush_after_delay(self) -> None:
        await asyncio.sleep(self._open_delay)
        if self._pending is None or not self.is_open:
            return
        pending, self._pending = self._pending, None
        if not self._send(MediaStateMessage.from_state(pending)):
            self._pending = pending

    def _handle_message(self, payload: Any) -> None:
        message = decode_control_message(payload)
        if message is None:
            logger.warning("Dropping malformed control message")
            return
        if isinstance(message, MediaStateMessage):
            self._on_media_state(message.to_state())
        else:
            logger.info("Peer ended the call")
            self._spawn(self._on_call_ended(), "control-call-ended")

    def publish_media_state(self, state: MediaState) -> None:
        """Send ``state`` after the debounce delay, or hold it until open."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self._debounce, self._send_or_hold, state)

    def _send_or_hold(self, state: MediaState) -> None:
        self._debounce_handle = None
        if self.is_open and self._send(MediaStateMessage.from_state(state)):
            self._pending = None
        else:
            self._pending = state

    def _send(self, message: MediaStateMessage | CallEndedMessage) -> bool:
        try:
            self._channel.send(encode_control_message(message))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Control message %s not sent: %s", message.type, exc)
            return False
        return True

    def send_call_ended(self) -> None:
        """Best effort; the sender tears down regardless."""
        if self.is_open:
            self._send(CallEndedMessage())

    def close(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()
        self._pending = None
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()
