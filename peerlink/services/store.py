"""Ephemeral keyed store with pluggable backends (in-process map or Redis REST)."""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import httpx

from peerlink.core.config import DEFAULT_TTL_SECONDS, SWEEP_INTERVAL_SECONDS
from peerlink.core.exceptions import BackingStoreError
from peerlink.core.request_context import background_context
from peerlink.core.tasks import LifecycleManager

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class KeyValueBackend(Protocol):
    """Minimal get / set-with-expiry / delete contract."""

    name: str

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def purge_expired(self) -> int: ...

    async def close(self) -> None: ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class MemoryBackend:
    """Process-lifetime map; expired entries are purged lazily and by the sweep."""

    name = "memory"

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            self._entries.pop(key, None)
            return None
        return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = _Entry(
            value=copy.deepcopy(value),
            expires_at=self._clock() + ttl_seconds,
        )

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()


class UpstashRestBackend:
    """Redis REST backend (the protocol Vercel KV / Upstash expose).

    Every command is a JSON array POSTed to the base URL; values are stored as
    JSON strings so records read back as plain dicts.
    """

    name = "kv"

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def _command(self, *args: Any) -> Any:
        try:
            response = await self._client.post("/", json=[str(arg) for arg in args])
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise BackingStoreError(f"KV request failed: {exc}") from exc
        if isinstance(payload, dict) and payload.get("error"):
            raise BackingStoreError(f"KV command {args[0]} failed: {payload['error']}")
        return payload.get("result") if isinstance(payload, dict) else None

    async def get(self, key: str) -> Any | None:
        raw = await self._command("GET", key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise BackingStoreError(f"Corrupt KV value under {key}") from exc

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._command("SET", key, json.dumps(value), "EX", int(ttl_seconds))

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._command("DEL", *keys)

    async def purge_expired(self) -> int:
        # Redis expires keys on its own
        return 0

    async def close(self) -> None:
        await self._client.aclose()


class MisconfiguredBackend:
    """Stand-in used when only half of the KV credentials are present."""

    name = "misconfigured"

    def __init__(self, reason: str) -> None:
        self._reason = reason

    async def get(self, key: str) -> Any | None:
        raise BackingStoreError(self._reason)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        raise BackingStoreError(self._reason)

    async def delete(self, *keys: str) -> None:
        raise BackingStoreError(self._reason)

    async def purge_expired(self) -> int:
        return 0

    async def close(self) -> None:
        return None


class EphemeralStore:
    """Keyed store service constructed once per process and handed to the gateway."""

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        default_ttl: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._sweep_interval = sweep_interval
        self._default_ttl = default_ttl
        self._lifecycle = LifecycleManager(name="ephemeral-store", logger=logger)

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def is_memory(self) -> bool:
        return isinstance(self._backend, MemoryBackend)

    async def get(self, key: str) -> Any | None:
        return await self._backend.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._backend.set(key, value, ttl_seconds or self._default_ttl)

    async def delete(self, *keys: str) -> None:
        await self._backend.delete(*keys)

    async def sweep(self) -> int:
        removed = await self._backend.purge_expired()
        if removed:
            logger.debug("Purged %d expired signaling records", removed)
        return removed

    async def start(self) -> None:
        if not await self._lifecycle.start():
            return
        if self.is_memory and self._sweep_interval > 0:
            self._lifecycle.spawn(self._sweep_loop(), name="sweep")

    async def stop(self) -> None:
        await self._lifecycle.stop([self._backend.close])

    async def _sweep_loop(self) -> None:
        with background_context("store-sweep"):
            while True:
                await asyncio.sleep(self._sweep_interval)
                await self.sweep()
