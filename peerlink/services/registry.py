"""Service registry that wires the relay services together."""
import asyncio
import logging

from peerlink.core.config import RelayConfig, Settings
from peerlink.core.request_context import background_context
from peerlink.core.tasks import LifecycleManager
from peerlink.services.signaling_service import SignalingService
from peerlink.services.store import (
    EphemeralStore,
    KeyValueBackend,
    MemoryBackend,
    MisconfiguredBackend,
    UpstashRestBackend,
)

logger = logging.getLogger(__name__)


def build_backend(settings: Settings) -> KeyValueBackend:
    """Pick the durable KV backend when credentials exist, else the in-process map."""

    if settings.kv_configured:
        logger.info("Using KV REST backend at %s", settings.kv_rest_api_url)
        return UpstashRestBackend(settings.kv_rest_api_url, settings.kv_rest_api_token)
    if settings.kv_partially_configured:
        logger.error("KV_REST_API_URL and KV_REST_API_TOKEN must be set together")
        return MisconfiguredBackend(
            "Database not configured: KV_REST_API_URL and KV_REST_API_TOKEN must both be set"
        )
    logger.warning("Using in-memory signaling store (development mode); set KV credentials for production")
    return MemoryBackend()


class ServiceRegistry:
    """Container object for dependency injection."""

    def __init__(
        self,
        settings: Settings,
        config: RelayConfig,
        *,
        backend: KeyValueBackend | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.store = EphemeralStore(
            backend or build_backend(settings),
            sweep_interval=config.sweep_interval,
        )
        self.signaling_service = SignalingService(
            self.store,
            offer_ttl=config.offer_ttl,
            answer_ttl=config.answer_ttl,
        )
        self._startup_lock = asyncio.Lock()
        self._shutdown_lock = asyncio.Lock()
        self._lifecycle = LifecycleManager(name="service-registry", logger=logger)

    async def startup(self) -> None:
        async with self._startup_lock:
            with background_context("registry"):
                logger.info("Starting relay services (store backend: %s)", self.store.backend_name)
                await self._lifecycle.start([self.store.start])
                logger.info("Relay services started")

    async def shutdown(self) -> None:
        async with self._shutdown_lock:
            with background_context("registry"):
                logger.info("Stopping relay services")
                await self._lifecycle.stop([self.store.stop])
                logger.info("Relay services stopped")
