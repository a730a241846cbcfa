"""Cross-reference today's appointments with the queue."""

from collections.abc import Iterable, Sequence
from datetime import date

import structlog

from app.core.exceptions import AppException, DuplicateCheckInException, ValidationException
from app.schemas.appointments import (
    CLOSED_APPOINTMENT_STATUSES,
    AppointmentResponse,
    BulkCheckInResult,
    CheckInFailure,
    QueueState,
    ReconciledAppointment,
    ReconciliationResponse,
)
from app.schemas.queue import QueueEntryCreate, QueueEntryResponse, QueueStatus
from app.services.queue_store import QueueEntryStore
from app.services.ticket_allocator import TicketAllocator, retry_on_collision

logger = structlog.get_logger(__name__)


def reconcile(
    entries: Iterable[QueueEntryResponse],
    appointments: Iterable[AppointmentResponse],
    day: date,
) -> ReconciliationResponse:
    """
    Partition the day's open appointments by whether they are queued.

    Args:
        entries: Queue entries of the day
        appointments: Candidate appointments (any date)
        day: Clinic day

    Returns:
        Appointments split into already queued and check-in eligible
    """
    queued = {
        entry.appointment_id: entry.id
        for entry in entries
        if entry.appointment_id and entry.status != QueueStatus.CANCELLED
    }

    already_queued: list[ReconciledAppointment] = []
    eligible: list[ReconciledAppointment] = []
    for appointment in appointments:
        if appointment.appointment_date != day or appointment.status in CLOSED_APPOINTMENT_STATUSES:
            continue
        if appointment.id in queued:
            already_queued.append(
                ReconciledAppointment(
                    appointment=appointment,
                    queue_state=QueueState.ALREADY_QUEUED,
                    queue_entry_id=queued[appointment.id],
                )
            )
        else:
            eligible.append(
                ReconciledAppointment(
                    appointment=appointment,
                    queue_state=QueueState.CHECK_IN_ELIGIBLE,
                )
            )

    return ReconciliationResponse(
        day=day,
        already_queued=already_queued,
        check_in_eligible=eligible,
    )


def check_in_note(appointment: AppointmentResponse) -> str:
    """Default queue note for a checked-in appointment."""
    return f"Checked in for {appointment.type or 'appointment'}"


class AppointmentReconciler:
    """Turns scheduled appointments into queue entries without duplicates."""

    def __init__(
        self,
        store: QueueEntryStore,
        allocator: TicketAllocator,
        ticket_allocation_retries: int = 3,
    ):
        """Initialize reconciler with the queue store and ticket allocator."""
        self.store = store
        self.allocator = allocator
        self.ticket_allocation_retries = ticket_allocation_retries

    async def check_in(
        self,
        appointment: AppointmentResponse,
        notes: str | None = None,
    ) -> QueueEntryResponse:
        """
        Create the queue entry for an appointment.

        Today's entries are re-read first; the store's own uniqueness
        constraint remains the final word under concurrent check-ins.

        Args:
            appointment: Appointment to check in
            notes: Optional note, defaults to the appointment type

        Returns:
            Created queue entry

        Raises:
            ValidationException: If the appointment is not open for today
            DuplicateCheckInException: If it already has a queue entry
            StoreUnavailableException: If the store cannot be reached
        """
        today = self.store.today()
        if appointment.appointment_date != today:
            raise ValidationException("Only today's appointments can be checked in")
        if appointment.status in CLOSED_APPOINTMENT_STATUSES:
            raise ValidationException(f"Appointment is {appointment.status.value}")

        return await retry_on_collision(
            lambda: self._check_in_once(appointment, notes),
            self.ticket_allocation_retries,
        )

    async def _check_in_once(
        self,
        appointment: AppointmentResponse,
        notes: str | None,
    ) -> QueueEntryResponse:
        entries = await self.store.list_today()
        if any(
            entry.appointment_id == appointment.id and entry.status != QueueStatus.CANCELLED
            for entry in entries
        ):
            logger.info("duplicate_check_in_rejected", appointment_id=appointment.id)
            raise DuplicateCheckInException(f"Appointment {appointment.id} is already in the queue")

        draft = QueueEntryCreate(
            patient_id=appointment.patient_id,
            patient_name=appointment.patient_name,
            appointment_id=appointment.id,
            notes=notes or check_in_note(appointment),
        )
        entry = await self.store.create(draft, self.allocator.next_from(entries))
        logger.info("appointment_checked_in", appointment_id=appointment.id, entry_id=entry.id)
        return entry

    async def bulk_check_in(self, appointments: Sequence[AppointmentResponse]) -> BulkCheckInResult:
        """
        Check in several appointments independently.

        A failure on one appointment is recorded and the rest proceed.
        """
        checked_in: list[QueueEntryResponse] = []
        failed: list[CheckInFailure] = []
        for appointment in appointments:
            try:
                checked_in.append(await self.check_in(appointment))
            except AppException as e:
                failed.append(
                    CheckInFailure(
                        appointment_id=appointment.id,
                        error=e.__class__.__name__,
                        message=e.message,
                    )
                )

        logger.info("bulk_check_in_finished", checked_in=len(checked_in), failed=len(failed))
        return BulkCheckInResult(checked_in=checked_in, failed=failed)
