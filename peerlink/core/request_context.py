"""Correlation ids stamped on log records (HTTP request, relay task or call)."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str | None:
    return _request_id.get()


def clear_request_id() -> None:
    _request_id.set(None)


@contextmanager
def request_context(request_id: str) -> Iterator[None]:
    token = _request_id.set(request_id)
    try:
        yield
    finally:
        _request_id.reset(token)


def background_context(name: str):
    """Scope for relay background work, logged as ``bg:<name>``."""
    return request_context(f"bg:{name}")


def call_context(session_id: str):
    """Scope for one call session, logged as ``call:<session id>``."""
    return request_context(f"call:{session_id}")
