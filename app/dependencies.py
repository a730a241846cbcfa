"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.services.queue_service import QueueService
from app.services.sync_loop import SyncLoop


def get_queue_service(request: Request) -> QueueService:
    """
    Get the workstation's queue service.

    Args:
        request: Request object

    Returns:
        Queue service created at startup

    Raises:
        HTTPException: If the queue view is not running
    """
    service: QueueService | None = getattr(request.app.state, "queue_service", None)
    if service is None or service.closed:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue view is not active",
        )
    return service


def get_sync_loop(request: Request) -> SyncLoop | None:
    """Get the background sync loop, if one was started."""
    return getattr(request.app.state, "sync_loop", None)


# Type aliases for dependency injection
QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
SyncLoopDep = Annotated[SyncLoop | None, Depends(get_sync_loop)]
