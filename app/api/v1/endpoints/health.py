"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.config import settings
from app.dependencies import QueueServiceDep, SyncLoopDep

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response model."""

    status: str
    version: str
    environment: str
    store: str
    sync_loop: str
    last_synced_at: datetime | None = None
    last_sync_error: str | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        Basic health status
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check(
    service: QueueServiceDep,
    sync_loop: SyncLoopDep,
) -> DetailedHealthResponse:
    """
    Detailed health check with store reachability and sync loop state.

    Returns:
        Detailed health status including dependencies
    """
    store_healthy = await service.store.persistence.check_connection()
    sync_running = sync_loop is not None and sync_loop.running
    sync_failing = sync_loop is not None and sync_loop.consecutive_failures > 0

    return DetailedHealthResponse(
        status="healthy" if store_healthy and sync_running and not sync_failing else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        store="healthy" if store_healthy else "unhealthy",
        sync_loop="running" if sync_running else "stopped",
        last_synced_at=service.last_synced_at,
        last_sync_error=sync_loop.last_error if sync_loop else None,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """
    Simple ping endpoint.

    Returns:
        Pong response
    """
    return {"message": "pong"}
