"""Health check endpoint."""
from fastapi import APIRouter, Depends

from peerlink.api.dependencies import get_service_registry
from peerlink.services.registry import ServiceRegistry

router = APIRouter()


@router.get("/health", summary="Health probe")
async def health_check(
    registry: ServiceRegistry = Depends(get_service_registry),
) -> dict:
    return {"status": "ok", "backend": registry.store.backend_name}
