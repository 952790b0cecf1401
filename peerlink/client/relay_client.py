"""Async HTTP client for the signaling relay."""
from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from peerlink.core.exceptions import (
    BackingStoreError,
    DomainError,
    InvalidRequestError,
    NotFoundError,
)
from peerlink.models import AnswerRecord, Candidate, Description, SessionRecord

logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, type[DomainError]] = {
    400: InvalidRequestError,
    404: NotFoundError,
}


class RelayClient:
    """Publish and fetch offer/answer bundles on the relay.

    Relay statuses come back as the same exceptions the relay raised:
    400 -> InvalidRequestError, 404 -> NotFoundError, anything else (and
    transport failures) -> BackingStoreError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is None and base_url is None:
            raise ValueError("RelayClient needs a base_url or an httpx.AsyncClient")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BackingStoreError(f"Relay unreachable: {exc}") from exc
        if response.is_success:
            return response.json()
        detail = self._error_detail(response)
        error_cls = _STATUS_ERRORS.get(response.status_code, BackingStoreError)
        raise error_cls(detail, extra={"status": response.status_code})

    @staticmethod
    def _error_detail(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            return payload.get("error")
        return None

    async def publish_offer(
        self,
        session_id: str,
        offer: Description,
        candidates: Sequence[Candidate],
    ) -> dict:
        return await self._request(
            "POST",
            "/signaling/create",
            json={"sessionId": session_id, "offer": offer, "candidates": list(candidates)},
        )

    async def fetch_offer(self, session_id: str) -> SessionRecord:
        data = await self._request("GET", "/signaling/get", params={"sessionId": session_id})
        return SessionRecord.model_validate(data)

    async def offer_exists(self, session_id: str) -> bool:
        try:
            await self.fetch_offer(session_id)
        except NotFoundError:
            return False
        return True

    async def publish_answer(
        self,
        session_id: str,
        answer: Description,
        candidates: Sequence[Candidate],
    ) -> dict:
        return await self._request(
            "POST",
            "/signaling/answer",
            json={"sessionId": session_id, "answer": answer, "candidates": list(candidates)},
        )

    async def fetch_answer(self, session_id: str) -> AnswerRecord:
        """Fetch and retire the answer; a second call raises NotFoundError."""
        data = await self._request("GET", "/signaling/get-answer", params={"sessionId": session_id})
        return AnswerRecord.model_validate(data)

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", "/signaling/delete", params={"sessionId": session_id})
