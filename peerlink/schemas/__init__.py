"""Pydantic schemas exposed by the relay API."""
from peerlink.models import AnswerRecord, SessionRecord

from .signaling import (
    AnswerRequest,
    CreateSessionResponse,
    ErrorResponse,
    OfferRequest,
    SuccessResponse,
)

__all__ = [
    "AnswerRecord",
    "AnswerRequest",
    "CreateSessionResponse",
    "ErrorResponse",
    "OfferRequest",
    "SessionRecord",
    "SuccessResponse",
]
