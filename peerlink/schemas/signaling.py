"""Schemas for the signaling relay endpoints."""
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field

from peerlink.models import Candidate, Description


class OfferRequest(BaseModel):
    """Offer bundle published by the initiating peer."""

    session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sessionId", "roomId"),
    )
    offer: Optional[Description] = None
    candidates: Optional[list[Candidate]] = Field(
        default=None,
        validation_alias=AliasChoices("candidates", "iceCandidates"),
    )


class AnswerRequest(BaseModel):
    """Answer bundle published by the joining peer."""

    session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sessionId", "roomId"),
    )
    answer: Optional[Description] = None
    candidates: Optional[list[Candidate]] = Field(
        default=None,
        validation_alias=AliasChoices("candidates", "iceCandidates"),
    )


class SuccessResponse(BaseModel):
    success: bool = True


class CreateSessionResponse(SuccessResponse):
    usingMemoryStore: bool = False


class ErrorResponse(BaseModel):
    error: str
    code: str
    meta: Optional[dict[str, Any]] = None
