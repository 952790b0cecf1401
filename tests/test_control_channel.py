import asyncio
import json

import pytest

from peerlink.client.control_channel import ControlChannel, decode_control_message
from peerlink.models import CallEndedMessage, MediaState, MediaStateMessage

from conftest import FakeChannel

DELAY = 0.01


def _control(received=None, ended=None):
    async def on_call_ended():
        if ended is not None:
            ended.append(True)

    return ControlChannel(
        on_media_state=(received.append if received is not None else lambda state: None),
        on_call_ended=on_call_ended,
        open_delay=DELAY,
        debounce=DELAY,
    )


def test_decode_control_messages():
    assert decode_control_message('{"type":"mediaState","audioMuted":true,"videoOff":false}') == MediaStateMessage(
        audioMuted=True, videoOff=False
    )
    assert decode_control_message(b'{"type":"callEnded"}') == CallEndedMessage()
    assert decode_control_message("not json") is None
    assert decode_control_message('{"type":"dance"}') is None
    assert decode_control_message('{"type":"mediaState","audioMuted":"loud"}') is None
    assert decode_control_message(42) is None


@pytest.mark.asyncio
async def test_changes_before_open_are_flushed_once_with_latest_value():
    control = _control()
    channel = FakeChannel()
    control.attach(channel)

    control.publish_media_state(MediaState(audio_muted=True))
    await asyncio.sleep(DELAY * 3)
    control.publish_media_state(MediaState(audio_muted=True, video_off=True))
    await asyncio.sleep(DELAY * 3)
    assert channel.sent == []
    assert control.pending == MediaState(audio_muted=True, video_off=True)

    channel.open()
    await asyncio.sleep(DELAY * 5)

    assert [json.loads(message) for message in channel.sent] == [
        {"type": "mediaState", "audioMuted": True, "videoOff": True}
    ]
    assert control.pending is None


@pytest.mark.asyncio
async def test_rapid_toggles_on_open_channel_are_debounced():
    control = _control()
    channel = FakeChannel(ready_state="open")
    control.attach(channel)
    await asyncio.sleep(DELAY * 3)

    control.publish_media_state(MediaState(audio_muted=True))
    control.publish_media_state(MediaState())
    control.publish_media_state(MediaState(video_off=True))
    await asyncio.sleep(DELAY * 3)

    assert [json.loads(message) for message in channel.sent] == [
        {"type": "mediaState", "audioMuted": False, "videoOff": True}
    ]


@pytest.mark.asyncio
async def test_already_open_channel_flushes_pending():
    control = _control()
    control.publish_media_state(MediaState(audio_muted=True))
    await asyncio.sleep(DELAY * 3)

    channel = FakeChannel(ready_state="open")
    control.attach(channel)
    await asyncio.sleep(DELAY * 3)

    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_incoming_messages_dispatch_and_malformed_are_dropped():
    received, ended = [], []
    control = _control(received, ended)
    channel = FakeChannel(ready_state="open")
    control.attach(channel)

    channel.emit("message", "garbage")
    channel.emit("message", '{"type":"mediaState","audioMuted":false,"videoOff":true}')
    channel.emit("message", '{"type":"callEnded"}')
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert received == [MediaState(video_off=True)]
    assert ended == [True]


@pytest.mark.asyncio
async def test_call_ended_is_best_effort():
    control = _control()
    control.send_call_ended()

    channel = FakeChannel(ready_state="open")
    control.attach(channel)
    control.send_call_ended()
    assert json.loads(channel.sent[-1]) == {"type": "callEnded"}


@pytest.mark.asyncio
async def test_close_drops_pending_state_and_closes_channel():
    control = _control()
    channel = FakeChannel()
    control.attach(channel)
    control.publish_media_state(MediaState(audio_muted=True))

    control.close()
    await asyncio.sleep(DELAY * 3)

    assert control.pending is None
    assert channel.readyState == "closed"
    assert not control.is_open
