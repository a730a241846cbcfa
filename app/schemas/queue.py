"""Queue entry schemas for request/response validation."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class QueueStatus(str, Enum):
    """Queue entry status enumeration."""

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {QueueStatus.COMPLETED, QueueStatus.NO_SHOW, QueueStatus.CANCELLED}
)


class QueueEntryCreate(BaseModel):
    """Draft for a new queue entry.

    ``patient_id`` is checked by the store rather than here so that a missing
    patient reference surfaces as a ``ValidationException`` before any call
    to the persistence collaborator.
    """

    patient_id: str | None = Field(None, max_length=100)
    patient_name: str | None = Field(None, max_length=200)
    appointment_id: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=1000)


class QueueEntryInsert(BaseModel):
    """Complete record sent to the persistence collaborator on creation."""

    ticket_number: int = Field(..., ge=1)
    patient_id: str
    patient_name: str | None = None
    appointment_id: str | None = None
    is_walk_in: bool
    status: QueueStatus = QueueStatus.WAITING
    check_in_time: datetime
    notes: str | None = None
    position: int | None = None


class QueueEntryUpdate(BaseModel):
    """Partial update; only explicitly set fields are sent."""

    status: QueueStatus | None = None
    notes: str | None = Field(None, max_length=1000)
    position: int | None = Field(None, ge=1)


class QueueStatusUpdate(BaseModel):
    """Schema for changing a queue entry's status."""

    status: QueueStatus


class QueueNotesUpdate(BaseModel):
    """Schema for editing a queue entry's notes."""

    notes: str | None = Field(None, max_length=1000)


class QueueReorderRequest(BaseModel):
    """Waiting entry ids in their new order."""

    entry_ids: list[str]


class QueueEntryResponse(BaseModel):
    """Schema for queue entry response."""

    id: str
    ticket_number: int
    patient_id: str
    patient_name: str | None = None
    appointment_id: str | None = None
    is_walk_in: bool
    status: QueueStatus
    check_in_time: datetime
    notes: str | None = None
    position: int | None = None

    model_config = {"from_attributes": True}


class QueueEntryView(QueueEntryResponse):
    """Queue entry as displayed, with its provisional flag."""

    provisional: bool = False


class QueueStats(BaseModel):
    """Counts for today's queue."""

    total: int = 0
    waiting: int = 0
    in_progress: int = 0
    completed: int = 0
    no_show: int = 0
    cancelled: int = 0
    next_ticket_number: int = 1


class QueueWarning(BaseModel):
    """Non-fatal condition shown alongside the queue."""

    code: str
    message: str
    entry_ids: list[str] = Field(default_factory=list)
    raised_at: datetime


class QueueSnapshot(BaseModel):
    """Everything the front desk needs to render the queue."""

    entries: list[QueueEntryView]
    stats: QueueStats
    warnings: list[QueueWarning]
    last_synced_at: datetime | None = None
