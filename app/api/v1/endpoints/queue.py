"""Queue endpoints."""

from fastapi import APIRouter, Query, status

from app.dependencies import QueueServiceDep
from app.schemas.queue import (
    QueueEntryCreate,
    QueueEntryResponse,
    QueueNotesUpdate,
    QueueReorderRequest,
    QueueSnapshot,
    QueueStats,
    QueueStatusUpdate,
)

router = APIRouter()


@router.get(
    "/",
    response_model=QueueSnapshot,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get today's queue",
)
async def get_queue(service: QueueServiceDep) -> QueueSnapshot:
    """
    Get today's queue in display order with stats and warnings.

    Args:
        service: Queue service

    Returns:
        Queue snapshot
    """
    return service.snapshot()


@router.get(
    "/stats",
    response_model=QueueStats,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Get today's queue counts",
)
async def get_queue_stats(service: QueueServiceDep) -> QueueStats:
    """Get counts per status and the next ticket number."""
    return service.stats()


@router.post(
    "/",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Queue"],
    summary="Add patient to queue",
)
async def add_to_queue(data: QueueEntryCreate, service: QueueServiceDep) -> QueueEntryResponse:
    """
    Register a walk-in, or check in an appointment when one is given.

    Args:
        data: Entry draft
        service: Queue service

    Returns:
        Created queue entry with its ticket number
    """
    return await service.add_to_queue(data)


@router.post(
    "/next",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Call next patient",
)
async def call_next_patient(service: QueueServiceDep) -> QueueEntryResponse:
    """
    Move the first waiting patient to in progress.

    Raises:
        HTTPException: If nobody is waiting
    """
    return await service.call_next_patient()


@router.put(
    "/reorder",
    response_model=QueueSnapshot,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Reorder waiting patients",
)
async def reorder_queue(data: QueueReorderRequest, service: QueueServiceDep) -> QueueSnapshot:
    """
    Set the order of waiting patients.

    Args:
        data: Entry ids in their new order; waiting entries not listed
            follow them in their current order
        service: Queue service

    Returns:
        Queue snapshot; entries that could not be saved are flagged provisional
    """
    return await service.reorder(data.entry_ids)


@router.post(
    "/refresh",
    response_model=QueueSnapshot,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Refresh queue now",
)
async def refresh_queue(service: QueueServiceDep) -> QueueSnapshot:
    """Re-fetch the queue from the store without waiting for the next tick."""
    return await service.refresh()


@router.patch(
    "/{entry_id}/status",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Update queue entry status",
)
async def update_queue_status(
    entry_id: str,
    data: QueueStatusUpdate,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """
    Change a queue entry's status (start, complete, no-show, cancel).

    Args:
        entry_id: Queue entry ID
        data: Target status
        service: Queue service

    Returns:
        Updated queue entry

    Raises:
        HTTPException: If the entry is unknown or the change is illegal
    """
    return await service.change_status(entry_id, data.status)


@router.put(
    "/{entry_id}",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Update queue entry notes",
)
async def update_queue_notes(
    entry_id: str,
    data: QueueNotesUpdate,
    service: QueueServiceDep,
) -> QueueEntryResponse:
    """Replace a queue entry's notes."""
    return await service.update_notes(entry_id, data.notes)


@router.post(
    "/{entry_id}/move-up",
    response_model=QueueSnapshot,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Move waiting patient up",
)
async def move_up(entry_id: str, service: QueueServiceDep) -> QueueSnapshot:
    """Swap a waiting patient with the one ahead."""
    return await service.move_up(entry_id)


@router.post(
    "/{entry_id}/move-down",
    response_model=QueueSnapshot,
    status_code=status.HTTP_200_OK,
    tags=["Queue"],
    summary="Move waiting patient down",
)
async def move_down(entry_id: str, service: QueueServiceDep) -> QueueSnapshot:
    """Swap a waiting patient with the one behind."""
    return await service.move_down(entry_id)


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Queue"],
    summary="Remove patient from queue",
)
async def remove_from_queue(
    entry_id: str,
    service: QueueServiceDep,
    hard_delete: bool = Query(False),
) -> None:
    """
    Remove a patient from the queue (cancel by default).

    Args:
        entry_id: Queue entry ID
        service: Queue service
        hard_delete: If true, permanently delete the record
    """
    await service.remove_entry(entry_id, hard_delete)
