"""Shared fixtures and in-process fakes for relay and call-session tests."""
from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Any, Callable, Sequence

import httpx
import pytest
import pytest_asyncio

from peerlink.client.peer import PeerCallbacks
from peerlink.client.relay_client import RelayClient
from peerlink.client.session import SessionObserver
from peerlink.core.config import CallTimings, RelayConfig, Settings
from peerlink.core.exceptions import MediaAcquisitionError
from peerlink.main import create_app
from peerlink.models import Candidate, ConnectionState, Description, MediaState
from peerlink.services.registry import ServiceRegistry
from peerlink.services.store import MemoryBackend


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """Data channel double; ``remote`` receives whatever is sent."""

    def __init__(self, label: str = "mediaState", ready_state: str = "connecting") -> None:
        self.label = label
        self.readyState = ready_state
        self.sent: list[str] = []
        self.remote: FakeChannel | None = None
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        self._handlers[event].append(handler)
        return handler

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise RuntimeError("channel is not open")
        self.sent.append(data)
        if self.remote is not None and self.remote.readyState == "open":
            self.remote.emit("message", data)

    def close(self) -> None:
        if self.readyState == "closed":
            return
        self.readyState = "closed"
        self.emit("close")


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.stopped = False

    async def recv(self) -> Any:
        raise NotImplementedError

    def stop(self) -> None:
        self.stopped = True


class FakeMediaSource:
    def __init__(self, *, fail_video: bool = False, fail_audio: bool = False) -> None:
        self.fail_video = fail_video
        self.fail_audio = fail_audio
        self.requests: list[tuple[bool, bool]] = []
        self.opened: list[FakeTrack] = []

    async def open(self, *, audio: bool, video: bool) -> list[FakeTrack]:
        self.requests.append((audio, video))
        if (video and self.fail_video) or (audio and self.fail_audio):
            raise MediaAcquisitionError("device busy")
        tracks = []
        if audio:
            tracks.append(FakeTrack("audio"))
        if video:
            tracks.append(FakeTrack("video"))
        self.opened.extend(tracks)
        return tracks


class FakePeerLink:
    """Peer link double; the network connects two of them once an answer lands."""

    _ids = itertools.count(1)

    def __init__(self, callbacks: PeerCallbacks, network: "FakeNetwork") -> None:
        self.callbacks = callbacks
        self.network = network
        self.name = f"peer{next(self._ids)}"
        self.state = "new"
        self.tracks: list[Any] = []
        self.channel: FakeChannel | None = None
        self.remote: Description | None = None
        self.remote_candidates: list[Candidate] = []
        self.closed = False

    def add_tracks(self, tracks: Sequence[Any]) -> None:
        self.tracks.extend(tracks)

    def create_control_channel(self) -> FakeChannel:
        self.channel = FakeChannel()
        return self.channel

    async def _local(self, kind: str) -> Description:
        self.callbacks.on_candidate(
            {"candidate": f"candidate:1 1 udp 1 10.0.0.1 {kind} typ host", "sdpMid": "0", "sdpMLineIndex": 0}
        )
        return {"type": kind, "sdp": f"v=0 {self.name}-{kind}"}

    async def create_offer(self) -> Description:
        return await self._local("offer")

    async def create_answer(self) -> Description:
        return await self._local("answer")

    async def apply_remote(self, description: Description, candidates: Sequence[Candidate]) -> None:
        self.remote = description
        self.remote_candidates = list(candidates)
        if description.get("type") == "answer" and self.network.auto_connect:
            await self.network.connect(self)

    async def set_state(self, state: str) -> None:
        self.state = state
        await self.callbacks.on_state_change(state)

    async def close(self) -> None:
        self.closed = True
        self.state = "closed"
        if self.channel is not None:
            self.channel.close()


class FakeNetwork:
    def __init__(self, *, auto_connect: bool = True) -> None:
        self.auto_connect = auto_connect
        self.peers: list[FakePeerLink] = []

    def factory(self, callbacks: PeerCallbacks) -> FakePeerLink:
        peer = FakePeerLink(callbacks, self)
        self.peers.append(peer)
        return peer

    async def connect(self, initiator: FakePeerLink) -> None:
        joiner = next(
            peer for peer in reversed(self.peers)
            if peer is not initiator and not peer.closed
        )
        announced = FakeChannel(ready_state="open")
        announced.remote = initiator.channel
        initiator.channel.remote = announced
        joiner.channel = announced
        joiner.callbacks.on_data_channel(announced)
        initiator.channel.open()
        for peer, other in ((initiator, joiner), (joiner, initiator)):
            for track in other.tracks:
                peer.callbacks.on_track(track)
        await joiner.set_state("connected")
        await initiator.set_state("connected")


class RecordingObserver(SessionObserver):
    def __init__(self) -> None:
        self.states: list[ConnectionState] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.remote_states: list[MediaState] = []

    def on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        self.states.append(current)

    def on_error(self, message: str) -> None:
        self.errors.append(message)

    def on_warning(self, message: str) -> None:
        self.warnings.append(message)

    def on_remote_media_state(self, state: MediaState) -> None:
        self.remote_states.append(state)


@pytest.fixture
def fast_timings() -> CallTimings:
    return CallTimings(
        gathering_window=0,
        poll_interval=0.01,
        max_poll_attempts=3,
        channel_open_delay=0.01,
        media_state_debounce=0.01,
    )


@pytest.fixture
def registry() -> ServiceRegistry:
    return ServiceRegistry(Settings(), RelayConfig(), backend=MemoryBackend())


@pytest.fixture
def relay_app(registry: ServiceRegistry):
    return create_app(registry)


@pytest_asyncio.fixture
async def relay(relay_app):
    # ASGITransport skips lifespan; create_app already put the registry on app.state
    transport = httpx.ASGITransport(app=relay_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://relay") as http:
        yield RelayClient(client=http)
