"""FastAPI application entrypoint for the signaling relay."""
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import MutableHeaders
from starlette.requests import Request

from peerlink.api.error_handlers import register_exception_handlers
from peerlink.api.router import api_router
from peerlink.core.config import get_relay_config, get_settings
from peerlink.core.logging import configure_logging
from peerlink.core.request_context import clear_request_id, set_request_id
from peerlink.services import ServiceRegistry

logger = logging.getLogger("peerlink")


class RequestIdMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        set_request_id(request_id)
        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.debug(
                "%s %s -> %s (%d ms)",
                scope.get("method"),
                scope.get("path"),
                status_code,
                duration_ms,
            )
            clear_request_id()


def create_app(registry: ServiceRegistry | None = None) -> FastAPI:
    """Build the relay application; ``registry`` overrides the env/config wiring."""

    relay_config = get_relay_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown of background services."""

        services = registry or ServiceRegistry(get_settings(), relay_config)
        app.state.services = services

        await services.startup()
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title="Peerlink Signaling Relay",
        description="Short-lived offer/answer relay for direct peer-to-peer calls",
        version="1.0.0",
        lifespan=lifespan,
    )
    if registry is not None:
        app.state.services = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=relay_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)
    register_exception_handlers(app)
    return app


configure_logging(get_relay_config().log_level)
app = create_app()
