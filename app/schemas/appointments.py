"""Appointment schemas as seen from the queue."""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.queue import QueueEntryResponse


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Appointments in these states are never offered for check-in.
CLOSED_APPOINTMENT_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}
)


class AppointmentResponse(BaseModel):
    """Appointment owned by the scheduling subsystem (read-only here)."""

    id: str
    patient_id: str
    patient_name: str | None = None
    appointment_date: date
    appointment_time: str | None = None
    type: str | None = None
    reason: str | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    model_config = {"from_attributes": True}


class QueueState(str, Enum):
    """Check-in state of one of today's appointments."""

    ALREADY_QUEUED = "already_queued"
    CHECK_IN_ELIGIBLE = "check_in_eligible"


class ReconciledAppointment(BaseModel):
    """Today's appointment tagged with its queue state."""

    appointment: AppointmentResponse
    queue_state: QueueState
    queue_entry_id: str | None = None


class ReconciliationResponse(BaseModel):
    """Partition of today's open appointments."""

    day: date
    already_queued: list[ReconciledAppointment]
    check_in_eligible: list[ReconciledAppointment]


class BulkCheckInRequest(BaseModel):
    """Schema for checking in several appointments at once."""

    appointment_ids: list[str] = Field(..., min_length=1)


class CheckInFailure(BaseModel):
    """One appointment that could not be checked in."""

    appointment_id: str
    error: str
    message: str


class BulkCheckInResult(BaseModel):
    """Best-effort bulk check-in outcome."""

    checked_in: list[QueueEntryResponse]
    failed: list[CheckInFailure]
