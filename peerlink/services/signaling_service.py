"""Offer/answer relay operations layered on the ephemeral store."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from pydantic import ValidationError

from peerlink.core.config import ANSWER_TTL_SECONDS, OFFER_TTL_SECONDS
from peerlink.core.exceptions import BackingStoreError, InvalidRequestError, NotFoundError
from peerlink.models import (
    AnswerRecord,
    Candidate,
    Description,
    SessionRecord,
    answer_key,
    normalize_session_id,
    session_key,
)
from peerlink.services.store import EphemeralStore

logger = logging.getLogger(__name__)


class SignalingService:
    """Publish/fetch offers and answers keyed by a caller-chosen session id.

    Creation is last-writer-wins: publishing an offer for an id that already
    exists deletes the old offer and its answer before storing the new one.
    """

    def __init__(
        self,
        store: EphemeralStore,
        *,
        offer_ttl: int = OFFER_TTL_SECONDS,
        answer_ttl: int = ANSWER_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._offer_ttl = offer_ttl
        self._answer_ttl = answer_ttl

    @property
    def using_memory_store(self) -> bool:
        return self._store.is_memory

    @staticmethod
    def _require_session_id(session_id: str | None) -> str:
        normalized = normalize_session_id(session_id)
        if not normalized:
            raise InvalidRequestError("Room ID is required")
        return normalized

    async def publish_offer(
        self,
        session_id: str | None,
        offer: Description | None,
        candidates: Sequence[Candidate] | None = None,
    ) -> SessionRecord:
        sid = self._require_session_id(session_id)
        if not offer:
            raise InvalidRequestError("Room ID and offer are required")

        record = SessionRecord(offer=offer, candidates=list(candidates or []))
        existing = await self._store.get(session_key(sid))
        if existing is not None:
            logger.info("Superseding existing session %s", sid)
            await self._store.delete(session_key(sid), answer_key(sid))
        await self._store.set(session_key(sid), record.model_dump(), self._offer_ttl)
        logger.info("Published offer for %s (%d candidates)", sid, len(record.candidates))
        return record

    async def fetch_offer(self, session_id: str | None) -> SessionRecord:
        sid = self._require_session_id(session_id)
        data = await self._store.get(session_key(sid))
        if data is None:
            raise NotFoundError("Room not found")
        return self._parse(SessionRecord, data, sid)

    async def publish_answer(
        self,
        session_id: str | None,
        answer: Description | None,
        candidates: Sequence[Candidate] | None = None,
    ) -> AnswerRecord:
        sid = self._require_session_id(session_id)
        if not answer:
            raise InvalidRequestError("Room ID and answer are required")

        if await self._store.get(session_key(sid)) is None:
            raise NotFoundError("Room not found")
        record = AnswerRecord(answer=answer, candidates=list(candidates or []))
        await self._store.set(answer_key(sid), record.model_dump(), self._answer_ttl)
        logger.info("Published answer for %s (%d candidates)", sid, len(record.candidates))
        return record

    async def fetch_answer_and_retire(self, session_id: str | None) -> AnswerRecord:
        """Return the answer once; both records are deleted on success."""
        sid = self._require_session_id(session_id)
        data = await self._store.get(answer_key(sid))
        if data is None:
            raise NotFoundError("Answer not found")
        await self._store.delete(session_key(sid), answer_key(sid))
        logger.info("Answer for %s retrieved, session retired", sid)
        return self._parse(AnswerRecord, data, sid)

    async def delete_session(self, session_id: str | None) -> None:
        sid = self._require_session_id(session_id)
        await self._store.delete(session_key(sid), answer_key(sid))
        logger.info("Deleted session %s", sid)

    @staticmethod
    def _parse(model: Any, data: Any, sid: str) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise BackingStoreError(f"Stored record for {sid} is corrupt") from exc
