"""Health check endpoint with token store connectivity check.

Health endpoints are unauthenticated so load balancers can poll them.
"""

import logging

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from authcore.core.config import Settings, get_settings
from authcore.core.errors import StoreError
from authcore.services.store import TokenStore

from .deps import get_token_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response,
    store: TokenStore = Depends(get_token_store),
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the token store is unreachable, since no token can be
    validated without it.
    """
    try:
        store_healthy = await store.ping()
    except StoreError as e:
        logger.warning(f"Health check: token store unreachable: {e.message}")
        store_healthy = False

    if not store_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if store_healthy else "unhealthy",
        version=settings.app_version,
        store="connected" if store_healthy else "disconnected",
    )
