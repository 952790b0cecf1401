"""Session identifier resolution, persistence and share links."""
from __future__ import annotations

import json
import logging
import secrets
import string
from pathlib import Path
from urllib.parse import parse_qs, urlencode, urlsplit

from peerlink.core.config import persist_json
from peerlink.models import normalize_session_id

logger = logging.getLogger(__name__)

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits
_RANDOM_LENGTH = 13
SHARE_LINK_PARAM = "room"


def generate_session_id() -> str:
    return "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(_RANDOM_LENGTH))


class SessionIdMemory:
    """Remember the last used session id across runs in a small JSON file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable session state %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            return None
        return normalize_session_id(data.get("sessionId")) or None

    def save(self, session_id: str) -> None:
        persist_json({"sessionId": session_id}, self._path)


def resolve_session_id(requested: str | None, memory: SessionIdMemory | None = None) -> str:
    """Pick the explicit id, else the remembered one, else a fresh random token.

    The chosen id is persisted for reuse when ``memory`` is given.
    """
    session_id = normalize_session_id(requested)
    if session_id:
        if memory is not None:
            memory.save(session_id)
        return session_id

    if memory is not None:
        remembered = memory.load()
        if remembered:
            return remembered

    session_id = generate_session_id()
    if memory is not None:
        memory.save(session_id)
    return session_id


def build_share_link(app_url: str, session_id: str) -> str:
    return f"{app_url.rstrip('/')}?{urlencode({SHARE_LINK_PARAM: session_id})}"


def session_id_from_link(link: str) -> str | None:
    values = parse_qs(urlsplit(link).query).get(SHARE_LINK_PARAM)
    if not values:
        return None
    return normalize_session_id(values[0]) or None
