"""Local media capture and mute/camera gating for outgoing tracks."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame, VideoFrame

from peerlink.core.config import ClientConfig
from peerlink.core.exceptions import MediaAcquisitionError

logger = logging.getLogger(__name__)


def _copy_timing(source, target):
    target.pts = source.pts
    # frames built in memory carry no time base, and av rejects None here
    if source.time_base is not None:
        target.time_base = source.time_base
    return target


def _silence_like(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    return _copy_timing(frame, silent)


def _black_like(frame: VideoFrame) -> VideoFrame:
    black = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8),
        format="rgb24",
    )
    return _copy_timing(frame, black)


class GatedTrack(MediaStreamTrack):
    """Relay frames from ``source``; emit silence or black frames while disabled."""

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        frame = await self._source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return _silence_like(frame)
        return _black_like(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


@dataclass
class LocalMedia:
    """Outgoing tracks owned by one call session."""

    tracks: list[MediaStreamTrack] = field(default_factory=list)

    def _first(self, kind: str) -> MediaStreamTrack | None:
        return next((track for track in self.tracks if track.kind == kind), None)

    @property
    def audio(self) -> MediaStreamTrack | None:
        return self._first("audio")

    @property
    def video(self) -> MediaStreamTrack | None:
        return self._first("video")

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()
        self.tracks.clear()


class MediaSource(Protocol):
    """Capture capability; device selection lives behind this seam."""

    async def open(self, *, audio: bool, video: bool) -> list[MediaStreamTrack]:
        """Return raw tracks or raise MediaAcquisitionError."""


class PlayerMediaSource:
    """Capture through aiortc ``MediaPlayer`` (files or FFmpeg devices)."""

    def __init__(self, config: ClientConfig) -> None:
        self._config = config

    def _open_player(self, source: str, fmt: str | None) -> MediaPlayer:
        try:
            return MediaPlayer(source, format=fmt)
        except Exception as exc:  # noqa: BLE001
            raise MediaAcquisitionError(f"Cannot open media source {source}: {exc}") from exc

    async def open(self, *, audio: bool, video: bool) -> list[MediaStreamTrack]:
        tracks: list[MediaStreamTrack] = []
        try:
            self._open_kinds(tracks, audio=audio, video=video)
        except MediaAcquisitionError:
            for track in tracks:
                track.stop()
            raise
        return tracks

    def _open_kinds(self, tracks: list[MediaStreamTrack], *, audio: bool, video: bool) -> None:
        if video:
            if not self._config.video_source:
                raise MediaAcquisitionError("No video source configured")
            player = self._open_player(self._config.video_source, self._config.video_format)
            if player.video is None:
                raise MediaAcquisitionError(f"{self._config.video_source} has no video stream")
            tracks.append(player.video)
        if audio:
            if not self._config.audio_source:
                raise MediaAcquisitionError("No audio source configured")
            player = self._open_player(self._config.audio_source, self._config.audio_format)
            if player.audio is None:
                raise MediaAcquisitionError(f"{self._config.audio_source} has no audio stream")
            tracks.append(player.audio)


async def acquire_local_media(source: MediaSource) -> tuple[LocalMedia, str | None]:
    """Open audio+video, falling back to audio only.

    Returns the gated tracks and a degraded-mode warning (``None`` when both
    kinds were acquired). Raises MediaAcquisitionError when audio fails too.
    """
    try:
        raw = await source.open(audio=True, video=True)
        warning = None
    except MediaAcquisitionError as exc:
        logger.warning("Audio+video capture failed (%s); retrying audio only", exc.detail)
        try:
            raw = await source.open(audio=True, video=False)
        except MediaAcquisitionError as audio_exc:
            raise MediaAcquisitionError("Could not access microphone") from audio_exc
        warning = "Camera unavailable. Audio only."
    return LocalMedia(tracks=[GatedTrack(track) for track in raw]), warning
