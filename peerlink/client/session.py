"""Call session: offer/answer negotiation, answer polling and teardown."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Protocol

from pydantic import ValidationError

from peerlink.client.control_channel import ControlChannel
from peerlink.client.media import LocalMedia, MediaSource, acquire_local_media
from peerlink.client.peer import PeerCallbacks, PeerFactory, PeerLink
from peerlink.client.relay_client import RelayClient
from peerlink.client.session_ids import SessionIdMemory, build_share_link, resolve_session_id
from peerlink.client.state_machine import ConnectionStateMachine
from peerlink.core.config import CallTimings
from peerlink.core.exceptions import (
    AppError,
    IllegalTransitionError,
    InvalidRequestError,
    LinkFailureError,
    NegotiationTimeoutError,
    NotFoundError,
)
from peerlink.core.request_context import call_context
from peerlink.core.tasks import cancel_task, monitor_task
from peerlink.models import (
    Candidate,
    ConnectionState,
    MediaState,
    Role,
    normalize_session_id,
)

logger = logging.getLogger(__name__)


class VideoSurface(Protocol):
    """Where a presentation layer renders a track."""

    def attach(self, track: Any) -> None: ...

    def detach(self) -> None: ...


class SessionObserver:
    """Hooks for presentation code; override what you need."""

    def on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    def on_warning(self, message: str) -> None:
        pass

    def on_remote_media_state(self, state: MediaState) -> None:
        pass


class _Superseded(Exception):
    """The attempt was torn down while it was suspended."""


class CallSession:
    """One local participant of a two-party call.

    Owns the peer link, local media, control channel and answer-poll task; no
    other component touches them. Every exit path goes through
    :meth:`_teardown`, which bumps a generation counter so results of awaits
    that were in flight when the call ended are discarded on arrival.
    """

    def __init__(
        self,
        relay: RelayClient,
        media_source: MediaSource,
        peer_factory: PeerFactory,
        *,
        timings: CallTimings | None = None,
        app_url: str = "",
        id_memory: SessionIdMemory | None = None,
        observer: SessionObserver | None = None,
        local_surface: VideoSurface | None = None,
        remote_surface: VideoSurface | None = None,
    ) -> None:
        self._relay = relay
        self._media_source = media_source
        self._peer_factory = peer_factory
        self._timings = timings or CallTimings()
        self._app_url = app_url
        self._id_memory = id_memory
        self._observer = observer or SessionObserver()
        self._local_surface = local_surface
        self._remote_surface = remote_surface

        self.machine = ConnectionStateMachine()
        self.machine.subscribe(self._observer.on_state_change)
        self.session_id = ""
        self.role: Role | None = None
        self.share_link = ""
        self.error = ""
        self.local_media_state = MediaState()
        self.remote_media_state = MediaState()

        self._peer: PeerLink | None = None
        self._local_media: LocalMedia | None = None
        self._remote_tracks: list[Any] = []
        self._candidates: list[Candidate] = []
        self._poll_task: asyncio.Task | None = None
        self._generation = 0
        self._attempt_in_progress = False
        self._control = ControlChannel(
            on_media_state=self._handle_remote_media_state,
            on_call_ended=self._handle_call_ended,
            open_delay=self._timings.channel_open_delay,
            debounce=self._timings.media_state_debounce,
        )

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def local_candidates(self) -> list[Candidate]:
        return list(self._candidates)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def wait_for_state(self, state: ConnectionState, timeout: float | None = None) -> None:
        await self.machine.wait_for(state, timeout)

    async def __aenter__(self) -> "CallSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if not self.machine.is_in(ConnectionState.IDLE):
            await self.end_call()

    # -- entry points -----------------------------------------------------

    async def start_call(self, requested_id: str | None = None) -> None:
        """Create a session (or join it when an offer already exists).

        Returns once the offer is published and polling has started; the
        answer arrives in the background.
        """
        self._begin_attempt(ConnectionState.CREATING)
        try:
            session_id = resolve_session_id(requested_id, self._id_memory)
            self.session_id = session_id
            with call_context(session_id):
                try:
                    existing = await self._relay.offer_exists(session_id)
                except AppError as exc:
                    self.error = exc.detail
                    self._observer.on_error(exc.detail)
                    raise
                if existing:
                    logger.info("Session %s already has an offer; joining it", session_id)
                    await self._run_attempt(self._join, session_id, "Error joining call")
                    return
                await self._run_attempt(self._create, session_id, "Error creating call")
        finally:
            self._attempt_in_progress = False

    async def join_call(self, session_id: str) -> None:
        target = normalize_session_id(session_id)
        if not target:
            self.error = "Room ID not specified"
            raise InvalidRequestError(self.error)
        self._begin_attempt(ConnectionState.CONNECTING)
        try:
            self.session_id = target
            with call_context(target):
                await self._run_attempt(self._join, target, "Error joining call")
        finally:
            self._attempt_in_progress = False

    async def end_call(self) -> None:
        """Notify the peer, drop an unanswered session from the relay, tear down."""
        self._control.send_call_ended()
        # in-flight relay and peer results are stale from here on
        self._generation += 1
        if self.session_id and self.machine.is_in(ConnectionState.CREATING, ConnectionState.WAITING):
            try:
                await self._relay.delete_session(self.session_id)
            except AppError as exc:
                logger.warning("Could not delete session %s: %s", self.session_id, exc.detail)
        await self._teardown()
        self.machine.reset()
        self._clear_call_identity()

    def toggle_mute(self) -> bool | None:
        """Flip the local audio gate; returns the new muted flag or None without audio."""
        track = self._local_media.audio if self._local_media else None
        if track is None:
            return None
        track.enabled = not track.enabled
        self.local_media_state = self.local_media_state.model_copy(
            update={"audio_muted": not track.enabled}
        )
        self._control.publish_media_state(self.local_media_state)
        return self.local_media_state.audio_muted

    def toggle_video(self) -> bool | None:
        """Flip the local video gate; returns the new video-off flag or None without video."""
        track = self._local_media.video if self._local_media else None
        if track is None:
            return None
        track.enabled = not track.enabled
        self.local_media_state = self.local_media_state.model_copy(
            update={"video_off": not track.enabled}
        )
        self._control.publish_media_state(self.local_media_state)
        return self.local_media_state.video_off

    # -- negotiation ------------------------------------------------------

    def _begin_attempt(self, target: ConnectionState) -> None:
        if self._attempt_in_progress or not self.machine.is_in(ConnectionState.IDLE):
            raise IllegalTransitionError(self.machine.state.value, target.value)
        self._attempt_in_progress = True
        self.error = ""
        self.local_media_state = MediaState()
        self.remote_media_state = MediaState()

    async def _run_attempt(
        self,
        step: Callable[[str, int], Any],
        session_id: str,
        fallback_message: str,
    ) -> None:
        generation = self._generation
        try:
            await step(session_id, generation)
        except _Superseded:
            logger.info("Call attempt for %s was cancelled", session_id)
        except AppError as exc:
            if generation != self._generation:
                logger.info("Ignoring failure of cancelled attempt for %s: %s", session_id, exc.detail)
                return
            await self._fail(exc.detail)
            raise
        except Exception:
            if generation != self._generation:
                logger.info("Ignoring failure of cancelled attempt for %s", session_id, exc_info=True)
                return
            logger.exception("%s for %s", fallback_message, session_id)
            await self._fail(fallback_message)
            raise

    def _check_current(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    async def _create(self, session_id: str, generation: int) -> None:
        self.role = Role.INITIATOR
        self.machine.transition(ConnectionState.CREATING)
        await self._prepare_peer(generation, initiator=True)

        offer = await self._peer.create_offer()
        # fixed gathering window instead of waiting for "gathering complete"
        await asyncio.sleep(self._timings.gathering_window)
        self._check_current(generation)

        await self._relay.publish_offer(session_id, offer, list(self._candidates))
        if generation != self._generation:
            # the call ended while the offer was in flight
            await self._retract_offer(session_id)
            raise _Superseded()

        self.share_link = build_share_link(self._app_url, session_id) if self._app_url else ""
        self.machine.transition(ConnectionState.WAITING)
        task = asyncio.create_task(
            self._poll_for_answer(session_id, generation),
            name=f"answer-poll:{session_id}",
        )
        self._poll_task = monitor_task(task, name=f"answer-poll:{session_id}", logger=logger)

    async def _retract_offer(self, session_id: str) -> None:
        try:
            await self._relay.delete_session(session_id)
        except AppError as exc:
            logger.warning("Could not retract offer for %s: %s", session_id, exc.detail)

    async def _join(self, session_id: str, generation: int) -> None:
        self.role = Role.JOINER
        self.machine.transition(ConnectionState.CONNECTING)
        await self._prepare_peer(generation, initiator=False)

        try:
            bundle = await self._relay.fetch_offer(session_id)
        except NotFoundError as exc:
            raise NotFoundError("Room not found") from exc
        self._check_current(generation)

        await self._peer.apply_remote(bundle.offer, bundle.candidates)
        answer = await self._peer.create_answer()
        await asyncio.sleep(self._timings.gathering_window)
        self._check_current(generation)

        await self._relay.publish_answer(session_id, answer, list(self._candidates))
        self._check_current(generation)
        logger.info("Answer published for %s; waiting for the link", session_id)

    async def _prepare_peer(self, generation: int, *, initiator: bool) -> None:
        media, warning = await acquire_local_media(self._media_source)
        if generation != self._generation:
            media.stop()
            raise _Superseded()
        self._local_media = media
        if warning:
            self.error = warning
            self._observer.on_warning(warning)
        if self._local_surface is not None and media.video is not None:
            self._local_surface.attach(media.video)

        self._candidates = []
        self._peer = self._peer_factory(
            PeerCallbacks(
                on_candidate=lambda candidate: self._buffer_candidate(candidate, generation),
                on_track=lambda track: self._handle_remote_track(track, generation),
                on_state_change=lambda state: self._handle_connection_state(state, generation),
                on_data_channel=lambda channel: self._handle_data_channel(channel, generation),
            )
        )
        self._peer.add_tracks(media.tracks)
        if initiator:
            self._control.attach(self._peer.create_control_channel())

    async def _poll_for_answer(self, session_id: str, generation: int) -> None:
        with call_context(session_id):
            attempts = self._timings.max_poll_attempts
            for attempt in range(1, attempts + 1):
                await asyncio.sleep(self._timings.poll_interval)
                if generation != self._generation or not self.machine.is_in(ConnectionState.WAITING):
                    return
                try:
                    record = await self._relay.fetch_answer(session_id)
                except NotFoundError:
                    logger.debug("No answer yet for %s (%d/%d)", session_id, attempt, attempts)
                    continue
                except (AppError, ValidationError) as exc:
                    logger.warning("Answer poll %d/%d failed: %s", attempt, attempts, exc)
                    continue
                if generation != self._generation or not self.machine.is_in(ConnectionState.WAITING):
                    logger.info("Discarding answer for %s that arrived after cancellation", session_id)
                    return
                self._poll_task = None
                self.machine.transition(ConnectionState.CONNECTING)
                try:
                    await self._peer.apply_remote(record.answer, record.candidates)
                except Exception:  # noqa: BLE001
                    if generation == self._generation:
                        logger.exception("Could not apply answer for %s", session_id)
                        await self._fail("Error applying answer")
                return

            if generation == self._generation:
                self._poll_task = None
                await self._fail(NegotiationTimeoutError().detail)

    # -- peer callbacks ---------------------------------------------------

    def _buffer_candidate(self, candidate: Candidate, generation: int) -> None:
        if generation == self._generation:
            self._candidates.append(candidate)

    def _handle_remote_track(self, track: Any, generation: int) -> None:
        if generation != self._generation:
            return
        self._remote_tracks.append(track)
        if self._remote_surface is not None:
            self._remote_surface.attach(track)

    def _handle_data_channel(self, channel: Any, generation: int) -> None:
        if generation == self._generation:
            self._control.attach(channel)

    async def _handle_connection_state(self, state: str, generation: int) -> None:
        if generation != self._generation:
            return
        if state == "connected":
            if self.machine.is_in(ConnectionState.CONNECTING):
                self.machine.transition(ConnectionState.CONNECTED)
        elif state in ("failed", "disconnected"):
            if not self.machine.is_in(ConnectionState.IDLE):
                await self._fail(LinkFailureError().detail)

    def _handle_remote_media_state(self, state: MediaState) -> None:
        self.remote_media_state = state
        self._observer.on_remote_media_state(state)

    async def _handle_call_ended(self) -> None:
        await self._teardown()
        self.machine.reset()
        self._clear_call_identity()

    # -- failure and teardown ---------------------------------------------

    async def _fail(self, message: str) -> None:
        logger.error("Call %s failed: %s", self.session_id or "-", message)
        self.error = message
        self._observer.on_error(message)
        await self._teardown()
        self.machine.reset()

    def _clear_call_identity(self) -> None:
        self.session_id = ""
        self.share_link = ""
        self.error = ""
        self.role = None

    async def _teardown(self) -> None:
        """Release every live resource; safe to call repeatedly."""
        self._generation += 1
        steps = (
            ("poll timer", self._stop_polling),
            ("control channel", self._control.close),
            ("local media", self._stop_local_media),
            ("remote media", self._remote_tracks.clear),
            ("peer connection", self._close_peer),
            ("video surfaces", self._detach_surfaces),
            ("candidate buffer", self._candidates.clear),
            ("remote media state", self._reset_remote_media_state),
        )
        for name, step in steps:
            try:
                result = step()
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.warning("Teardown step '%s' failed", name, exc_info=True)

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        await cancel_task(task)

    def _stop_local_media(self) -> None:
        media, self._local_media = self._local_media, None
        if media is not None:
            media.stop()

    async def _close_peer(self) -> None:
        peer, self._peer = self._peer, None
        if peer is not None:
            await peer.close()

    def _detach_surfaces(self) -> None:
        for surface in (self._local_surface, self._remote_surface):
            if surface is not None:
                surface.detach()

    def _reset_remote_media_state(self) -> None:
        if self.remote_media_state != MediaState():
            self.remote_media_state = MediaState()
            self._observer.on_remote_media_state(self.remote_media_state)
