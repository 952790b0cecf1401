"""Signaling relay endpoints: offer/answer exchange keyed by session id."""
from fastapi import APIRouter, Depends, Query

from peerlink.api.dependencies import get_signaling_service
from peerlink.schemas import (
    AnswerRecord,
    AnswerRequest,
    CreateSessionResponse,
    OfferRequest,
    SessionRecord,
    SuccessResponse,
)
from peerlink.services.signaling_service import SignalingService

router = APIRouter()


def session_id_param(
    session_id: str | None = Query(default=None, alias="sessionId"),
    room_id: str | None = Query(default=None, alias="roomId"),
) -> str | None:
    return session_id or room_id


@router.post("/create", response_model=CreateSessionResponse, summary="Publish an offer bundle")
async def create_session(
    payload: OfferRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> CreateSessionResponse:
    await service.publish_offer(payload.session_id, payload.offer, payload.candidates)
    return CreateSessionResponse(success=True, usingMemoryStore=service.using_memory_store)


@router.get("/get", response_model=SessionRecord, summary="Fetch an offer bundle")
async def get_session(
    session_id: str | None = Depends(session_id_param),
    service: SignalingService = Depends(get_signaling_service),
) -> SessionRecord:
    return await service.fetch_offer(session_id)


@router.post("/answer", response_model=SuccessResponse, summary="Publish an answer bundle")
async def post_answer(
    payload: AnswerRequest,
    service: SignalingService = Depends(get_signaling_service),
) -> SuccessResponse:
    await service.publish_answer(payload.session_id, payload.answer, payload.candidates)
    return SuccessResponse()


@router.get(
    "/get-answer",
    response_model=AnswerRecord,
    summary="Fetch the answer once and retire the session",
)
async def get_answer(
    session_id: str | None = Depends(session_id_param),
    service: SignalingService = Depends(get_signaling_service),
) -> AnswerRecord:
    return await service.fetch_answer_and_retire(session_id)


@router.delete("/delete", response_model=SuccessResponse, summary="Delete a session")
async def delete_session(
    session_id: str | None = Depends(session_id_param),
    service: SignalingService = Depends(get_signaling_service),
) -> SuccessResponse:
    await service.delete_session(session_id)
    return SuccessResponse()
