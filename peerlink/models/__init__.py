"""Domain models exposed to services, routes and the call client."""
from .domain import (
    AnswerRecord,
    CallEndedMessage,
    Candidate,
    ConnectionState,
    ControlMessage,
    Description,
    MediaState,
    MediaStateMessage,
    Role,
    SessionRecord,
    answer_key,
    normalize_session_id,
    session_key,
)

__all__ = [
    "AnswerRecord",
    "CallEndedMessage",
    "Candidate",
    "ConnectionState",
    "ControlMessage",
    "Description",
    "MediaState",
    "MediaStateMessage",
    "Role",
    "SessionRecord",
    "answer_key",
    "normalize_session_id",
    "session_key",
]
