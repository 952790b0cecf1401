from fractions import Fraction

import numpy as np
import pytest
from av import AudioFrame, VideoFrame

from peerlink.client.media import GatedTrack, acquire_local_media
from peerlink.core.exceptions import MediaAcquisitionError

from conftest import FakeMediaSource


class FrameTrack:
    def __init__(self, kind, frame):
        self.kind = kind
        self.frame = frame
        self.stopped = False

    async def recv(self):
        return self.frame

    def stop(self):
        self.stopped = True


@pytest.mark.asyncio
async def test_audio_and_video_acquired():
    source = FakeMediaSource()
    media, warning = await acquire_local_media(source)

    assert warning is None
    assert media.audio is not None and media.video is not None
    assert source.requests == [(True, True)]


@pytest.mark.asyncio
async def test_falls_back_to_audio_only():
    source = FakeMediaSource(fail_video=True)
    media, warning = await acquire_local_media(source)

    assert warning == "Camera unavailable. Audio only."
    assert media.video is None
    assert media.audio.kind == "audio"
    assert source.requests == [(True, True), (True, False)]


@pytest.mark.asyncio
async def test_no_microphone_is_fatal():
    with pytest.raises(MediaAcquisitionError, match="Could not access microphone"):
        await acquire_local_media(FakeMediaSource(fail_audio=True))


@pytest.mark.asyncio
async def test_stop_releases_source_tracks():
    source = FakeMediaSource()
    media, _ = await acquire_local_media(source)
    media.stop()

    assert all(track.stopped for track in source.opened)
    assert media.tracks == []


@pytest.mark.asyncio
async def test_disabled_video_track_sends_black_frames():
    frame = VideoFrame.from_ndarray(np.full((4, 4, 3), 200, dtype=np.uint8), format="rgb24")
    track = GatedTrack(FrameTrack("video", frame))

    assert await track.recv() is frame
    track.enabled = False
    black = await track.recv()
    assert (black.width, black.height) == (4, 4)
    assert not black.to_ndarray().any()


@pytest.mark.asyncio
async def test_disabled_audio_track_sends_silence():
    frame = AudioFrame.from_ndarray(np.full((1, 160), 1000, dtype=np.int16), format="s16", layout="mono")
    frame.sample_rate = 8000
    track = GatedTrack(FrameTrack("audio", frame))

    track.enabled = False
    silent = await track.recv()
    assert silent.samples == 160
    assert silent.sample_rate == 8000
    assert not silent.to_ndarray().any()


@pytest.mark.asyncio
async def test_replacement_frames_keep_capture_timing():
    frame = VideoFrame.from_ndarray(np.full((4, 4, 3), 200, dtype=np.uint8), format="rgb24")
    frame.pts = 3000
    frame.time_base = Fraction(1, 90000)
    track = GatedTrack(FrameTrack("video", frame))

    track.enabled = False
    black = await track.recv()
    assert black.pts == 3000
    assert black.time_base == Fraction(1, 90000)
