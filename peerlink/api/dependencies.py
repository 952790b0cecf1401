"""FastAPI dependency providers."""
from fastapi import Depends, Request

from peerlink.services.registry import ServiceRegistry
from peerlink.services.signaling_service import SignalingService


def get_service_registry(request: Request) -> ServiceRegistry:
    """Return the service registry stored on the FastAPI application state."""

    registry = getattr(request.app.state, "services", None)
    if not isinstance(registry, ServiceRegistry):
        raise RuntimeError("Service registry not initialised")
    return registry


def get_signaling_service(
    registry: ServiceRegistry = Depends(get_service_registry),
) -> SignalingService:
    return registry.signaling_service
