"""Day-scoped queue entry store over the persistence collaborator."""

from collections.abc import Callable
from datetime import date, datetime

import structlog

from app.core.clock import clinic_now
from app.core.exceptions import ValidationException
from app.schemas.appointments import AppointmentResponse
from app.schemas.queue import (
    QueueEntryCreate,
    QueueEntryInsert,
    QueueEntryResponse,
    QueueEntryUpdate,
    QueueStatus,
)
from app.services.persistence import QueuePersistence

logger = structlog.get_logger(__name__)


def require_patient(draft: QueueEntryCreate) -> str:
    """Return the draft's patient reference, stripped.

    Raises:
        ValidationException: If the draft has no patient reference
    """
    patient_id = (draft.patient_id or "").strip()
    if not patient_id:
        raise ValidationException("A patient reference is required to queue a patient")
    return patient_id


class QueueEntryStore:
    """Thin adapter exposing create/update/remove/list for today's queue."""

    def __init__(
        self,
        persistence: QueuePersistence,
        clock: Callable[[], datetime] = clinic_now,
    ):
        """Initialize store with its collaborator and clinic clock."""
        self.persistence = persistence
        self.clock = clock

    def today(self) -> date:
        """Current clinic day."""
        return self.clock().date()

    async def create(self, draft: QueueEntryCreate, ticket_number: int) -> QueueEntryResponse:
        """
        Create a queue entry from a draft.

        Args:
            draft: Entry draft
            ticket_number: Ticket issued by the allocator

        Returns:
            Created entry

        Raises:
            ValidationException: If the draft has no patient reference
        """
        payload = QueueEntryInsert(
            ticket_number=ticket_number,
            patient_id=require_patient(draft),
            patient_name=draft.patient_name,
            appointment_id=draft.appointment_id,
            is_walk_in=draft.appointment_id is None,
            status=QueueStatus.WAITING,
            check_in_time=self.clock(),
            notes=draft.notes,
            position=ticket_number,
        )
        entry = await self.persistence.create_queue_entry(payload)

        logger.info(
            "queue_entry_created",
            entry_id=entry.id,
            ticket_number=entry.ticket_number,
            is_walk_in=entry.is_walk_in,
        )
        return entry

    async def update(
        self,
        entry_id: str,
        patch: QueueEntryUpdate,
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        """
        Partially update a queue entry.

        Fields not set on ``patch`` are left untouched.

        Args:
            entry_id: Queue entry ID
            patch: Fields to change
            expected_status: Status the caller saw; the store rejects the
                patch if the entry has moved on since

        Raises:
            InvalidTransitionException: If the stored status no longer matches
        """
        return await self.persistence.update_queue_entry(
            entry_id,
            patch.model_dump(exclude_unset=True),
            expected_status=expected_status,
        )

    async def remove(self, entry_id: str) -> None:
        """Physically delete a queue entry."""
        await self.persistence.remove_queue_entry(entry_id)
        logger.info("queue_entry_removed", entry_id=entry_id)

    async def list_today(self) -> list[QueueEntryResponse]:
        """Snapshot of today's queue entries."""
        return await self.persistence.list_queue_entries_today(self.today())

    async def list_appointments_today(self) -> list[AppointmentResponse]:
        """Today's appointments from the scheduling side."""
        return await self.persistence.list_appointments_today(self.today())
