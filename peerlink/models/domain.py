"""Domain models shared by the relay and the call client."""
import re
import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from peerlink.core.config import SESSION_ID_MAX_LENGTH

_INVALID_SESSION_CHARS = re.compile(r"[^a-z0-9_\-]")

# Opaque connection-description blob, e.g. {"type": "offer", "sdp": "..."}
Description = Dict[str, Any]
# Browser RTCIceCandidateInit shape: {"candidate", "sdpMid", "sdpMLineIndex"}
Candidate = Dict[str, Any]


def normalize_session_id(raw: str | None) -> str:
    """Lowercase ``raw`` and strip everything outside ``[a-z0-9_-]``, capped at 50 chars."""
    if not raw:
        return ""
    cleaned = _INVALID_SESSION_CHARS.sub("", raw.strip().lower())
    return cleaned[:SESSION_ID_MAX_LENGTH]


def session_key(session_id: str) -> str:
    return f"room:{session_id}"


def answer_key(session_id: str) -> str:
    return f"room:{session_id}:answer"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionRecord(BaseModel):
    """Offer bundle published by the initiating peer."""

    offer: Description
    candidates: List[Candidate] = Field(default_factory=list)
    createdAt: int = Field(default_factory=_now_ms)


class AnswerRecord(BaseModel):
    """Answer bundle published by the joining peer."""

    answer: Description
    candidates: List[Candidate] = Field(default_factory=list)


class ConnectionState(str, Enum):
    """Lifecycle of one local call session."""

    IDLE = "idle"
    CREATING = "creating"
    WAITING = "waiting"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Role(str, Enum):
    INITIATOR = "initiator"
    JOINER = "joiner"


class MediaState(BaseModel):
    """Mute / camera flags exchanged over the control channel."""
    model_config = ConfigDict(frozen=True)

    audio_muted: bool = False
    video_off: bool = False


class MediaStateMessage(BaseModel):
    type: Literal["mediaState"] = "mediaState"
    audioMuted: bool = False
    videoOff: bool = False

    @classmethod
    def from_state(cls, state: MediaState) -> "MediaStateMessage":
        return cls(audioMuted=state.audio_muted, videoOff=state.video_off)

    def to_state(self) -> MediaState:
        return MediaState(audio_muted=self.audioMuted, video_off=self.videoOff)


class CallEndedMessage(BaseModel):
    type: Literal["callEnded"] = "callEnded"


ControlMessage = Annotated[
    Union[MediaStateMessage, CallEndedMessage],
    Field(discriminator="type"),
]
