"""Appointment check-in endpoints."""

from fastapi import APIRouter, status

from app.dependencies import QueueServiceDep
from app.schemas.appointments import (
    BulkCheckInRequest,
    BulkCheckInResult,
    ReconciliationResponse,
)
from app.schemas.queue import QueueEntryResponse, QueueNotesUpdate

router = APIRouter()


@router.get(
    "/today",
    response_model=ReconciliationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Today's appointments by check-in state",
)
async def list_todays_appointments(service: QueueServiceDep) -> ReconciliationResponse:
    """
    List today's open appointments, split into queued and not yet checked in.

    Args:
        service: Queue service

    Returns:
        Reconciled appointments
    """
    return service.reconciliation()


@router.post(
    "/check-in",
    response_model=BulkCheckInResult,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check in several appointments",
)
async def bulk_check_in(data: BulkCheckInRequest, service: QueueServiceDep) -> BulkCheckInResult:
    """
    Check in several appointments independently.

    Args:
        data: Appointment ids
        service: Queue service

    Returns:
        Created entries and per-appointment failures
    """
    return await service.bulk_check_in(data.appointment_ids)


@router.post(
    "/{appointment_id}/check-in",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Check in appointment",
)
async def check_in_appointment(
    appointment_id: str,
    service: QueueServiceDep,
    data: QueueNotesUpdate | None = None,
) -> QueueEntryResponse:
    """
    Put a scheduled patient into today's queue.

    Args:
        appointment_id: Appointment ID
        service: Queue service
        data: Optional note for the queue entry

    Returns:
        Created queue entry

    Raises:
        HTTPException: If the appointment is unknown, closed, or already queued
    """
    return await service.check_in(appointment_id, notes=data.notes if data else None)
