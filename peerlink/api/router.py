"""Root API router that aggregates all endpoint modules."""
from fastapi import APIRouter

from peerlink.api.routes import health, signaling
from peerlink.schemas import ErrorResponse

api_router = APIRouter()
api_router.include_router(
    signaling.router,
    prefix="/signaling",
    tags=["signaling"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
api_router.include_router(health.router, tags=["health"])
