"""aiortc peer connection adapter used by the call session."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from peerlink.core.config import IceServerConfig
from peerlink.core.exceptions import InvalidRequestError
from peerlink.models import Candidate, Description

logger = logging.getLogger(__name__)

CONTROL_CHANNEL_LABEL = "mediaState"


@dataclass
class PeerCallbacks:
    """Events a peer link reports back to its owning session."""

    on_candidate: Callable[[Candidate], None]
    on_track: Callable[[Any], None]
    on_state_change: Callable[[str], Awaitable[None]]
    on_data_channel: Callable[[Any], None]


class PeerLink(Protocol):
    """Operations the negotiator needs from a native peer connection."""

    def add_tracks(self, tracks: Iterable[MediaStreamTrack]) -> None: ...

    def create_control_channel(self) -> Any: ...

    async def create_offer(self) -> Description: ...

    async def create_answer(self) -> Description: ...

    async def apply_remote(self, description: Description, candidates: Sequence[Candidate]) -> None: ...

    async def close(self) -> None: ...


PeerFactory = Callable[[PeerCallbacks], PeerLink]


def extract_candidates(sdp: str) -> list[Candidate]:
    """Pull ``a=candidate`` lines out of an SDP, tagged with their m-line."""
    candidates: list[Candidate] = []
    mline_index = -1
    mid: str | None = None
    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif line.startswith("a=candidate:") and mline_index >= 0:
            candidates.append(
                {"candidate": line[2:], "sdpMid": mid, "sdpMLineIndex": mline_index}
            )
    return candidates


def _to_description(description: Description) -> RTCSessionDescription:
    try:
        return RTCSessionDescription(sdp=description["sdp"], type=description["type"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidRequestError("Malformed session description") from exc


class AiortcPeerLink:
    """Wrap ``RTCPeerConnection``.

    aiortc finishes ICE gathering inside ``setLocalDescription`` and embeds the
    candidates in the SDP; they are replayed through ``on_candidate`` so the
    bulk exchange carries them alongside the description.
    """

    def __init__(self, callbacks: PeerCallbacks, ice_servers: Sequence[IceServerConfig]) -> None:
        self._callbacks = callbacks
        configuration = RTCConfiguration(
            iceServers=[
                RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
                for server in ice_servers
            ]
        )
        self._pc = RTCPeerConnection(configuration=configuration)
        self._pc.on("track", self._handle_track)
        self._pc.on("datachannel", self._handle_data_channel)
        self._pc.on("connectionstatechange", self._handle_state_change)

    @classmethod
    def factory(cls, ice_servers: Sequence[IceServerConfig]) -> PeerFactory:
        return lambda callbacks: cls(callbacks, ice_servers)

    def _handle_track(self, track: MediaStreamTrack) -> None:
        logger.info("Remote %s track received", track.kind)
        self._callbacks.on_track(track)

    def _handle_data_channel(self, channel: RTCDataChannel) -> None:
        logger.debug("Remote data channel %s announced", channel.label)
        self._callbacks.on_data_channel(channel)

    async def _handle_state_change(self) -> None:
        state = self._pc.connectionState
        logger.info("Peer connection state: %s", state)
        await self._callbacks.on_state_change(state)

    def add_tracks(self, tracks: Iterable[MediaStreamTrack]) -> None:
        for track in tracks:
            self._pc.addTrack(track)

    def create_control_channel(self) -> RTCDataChannel:
        return self._pc.createDataChannel(CONTROL_CHANNEL_LABEL)

    async def _publish_local(self, description: RTCSessionDescription) -> Description:
        await self._pc.setLocalDescription(description)
        local = self._pc.localDescription
        for candidate in extract_candidates(local.sdp):
            self._callbacks.on_candidate(candidate)
        return {"type": local.type, "sdp": local.sdp}

    async def create_offer(self) -> Description:
        return await self._publish_local(await self._pc.createOffer())

    async def create_answer(self) -> Description:
        return await self._publish_local(await self._pc.createAnswer())

    async def apply_remote(self, description: Description, candidates: Sequence[Candidate]) -> None:
        await self._pc.setRemoteDescription(_to_description(description))
        for entry in candidates:
            line = str(entry.get("candidate") or "").strip()
            if not line:
                continue
            if line.startswith("candidate:"):
                line = line[len("candidate:"):]
            try:
                candidate = candidate_from_sdp(line)
            except (AssertionError, IndexError, ValueError):
                logger.warning("Skipping malformed remote candidate: %s", line)
                continue
            candidate.sdpMid = entry.get("sdpMid")
            candidate.sdpMLineIndex = entry.get("sdpMLineIndex")
            await self._pc.addIceCandidate(candidate)

    async def close(self) -> None:
        await self._pc.close()
