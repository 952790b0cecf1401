"""Common exception helpers for the relay and the peer client."""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base exception for application specific errors."""

    status_code = 500
    error_code = "app_error"
    default_detail = "An unexpected error occurred."

    def __init__(self, detail: str | None = None, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail
        self.extra = extra or {}


class DomainError(AppError):
    """Normalized domain error surfaced to API handlers."""


class InvalidRequestError(DomainError):
    status_code = 400
    error_code = "invalid_request"
    default_detail = "Invalid request."


class NotFoundError(DomainError):
    status_code = 404
    error_code = "not_found"
    default_detail = "Resource not found."


class BackingStoreError(DomainError):
    """Relay store unavailable or misconfigured."""

    status_code = 500
    error_code = "backing_store_error"
    default_detail = "Signaling store unavailable."


class CallError(AppError):
    """Base class for failures raised by a local call session."""

    error_code = "call_error"
    default_detail = "Call failed."


class MediaAcquisitionError(CallError):
    error_code = "media_unavailable"
    default_detail = "Could not access microphone"


class NegotiationTimeoutError(CallError):
    error_code = "negotiation_timeout"
    default_detail = "Timeout. Second user did not connect."


class LinkFailureError(CallError):
    error_code = "link_failure"
    default_detail = "Connection lost"


class IllegalTransitionError(CallError):
    error_code = "illegal_transition"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move from {current} to {target}",
            extra={"current": current, "target": target},
        )
