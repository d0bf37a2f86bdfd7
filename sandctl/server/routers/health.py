"""
Health check endpoint.

Provides basic health status for load balancers and monitoring.
"""
from fastapi import APIRouter

from sandctl import __version__
from sandctl.providers.registry import list_providers
from sandctl.server.schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Does not require authentication.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        providers=list_providers(),
    )
