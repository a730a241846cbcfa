"""Queue service: the front desk's optimistic view of today's queue."""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import date, datetime

import structlog

from app.core.clock import clinic_now
from app.core.exceptions import AppException, InvalidTransitionException, NotFoundException
from app.schemas.appointments import (
    AppointmentResponse,
    BulkCheckInResult,
    CheckInFailure,
    ReconciliationResponse,
)
from app.schemas.queue import (
    QueueEntryCreate,
    QueueEntryResponse,
    QueueEntryUpdate,
    QueueEntryView,
    QueueSnapshot,
    QueueStats,
    QueueStatus,
    QueueWarning,
)
from app.services.mutations import MutationTracker
from app.services.ordering import OrderingEngine, display_order, waiting_order
from app.services.persistence import QueuePersistence
from app.services.queue_store import QueueEntryStore, require_patient
from app.services.reconciler import AppointmentReconciler, reconcile
from app.services.stats import compute_stats
from app.services.status_machine import is_terminal, validate_transition
from app.services.ticket_allocator import TicketAllocator, retry_on_collision

logger = structlog.get_logger(__name__)


class QueueService:
    """Service for managing today's queue from one workstation.

    Status and note changes are shown immediately and confirmed by the
    store afterwards; waiting-order changes go through the ordering engine
    and may stay provisional. Each refresh merges the store's snapshot
    without undoing writes that landed after the fetch began.
    """

    def __init__(
        self,
        persistence: QueuePersistence,
        clock: Callable[[], datetime] = clinic_now,
        ticket_allocation_retries: int = 3,
        reorder_failure_warning_threshold: int = 3,
    ):
        """
        Initialize the service.

        Args:
            persistence: Persistence/API collaborator
            clock: Clinic clock
            ticket_allocation_retries: Retries after a ticket collision on create
            reorder_failure_warning_threshold: Failed reorder attempts before warning
        """
        self.store = QueueEntryStore(persistence, clock)
        self.allocator = TicketAllocator(self.store)
        self.reconciler = AppointmentReconciler(
            self.store, self.allocator, ticket_allocation_retries
        )
        self.ordering = OrderingEngine(self._write, reorder_failure_warning_threshold)
        self.tracker = MutationTracker()
        self.ticket_allocation_retries = ticket_allocation_retries

        self._day: date | None = None
        self._entries: dict[str, QueueEntryResponse] = {}
        self._appointments: list[AppointmentResponse] = []
        self._warnings: dict[str, QueueWarning] = {}
        self._closed = False
        self.last_synced_at: datetime | None = None

    @property
    def closed(self) -> bool:
        """Whether the view has been torn down."""
        return self._closed

    def close(self) -> None:
        """Tear down the view; late store results are discarded from now on."""
        self._closed = True
        logger.info("queue_view_closed")

    # ------------------------------------------------------------------
    # Local view
    # ------------------------------------------------------------------

    def _current(self) -> list[QueueEntryView]:
        """Known entries with in-flight patches applied."""
        views = []
        for entry_id, entry in self._entries.items():
            patch = self.tracker.pending_patch(entry_id)
            views.append(
                QueueEntryView(
                    **{**entry.model_dump(), **patch},
                    provisional=bool(patch),
                )
            )
        return views

    def _get(self, entry_id: str) -> QueueEntryView:
        for view in self._current():
            if view.id == entry_id:
                return view
        raise NotFoundException("Queue entry not found")

    def entries(self) -> list[QueueEntryView]:
        """Entries in display order, provisional values included."""
        return display_order(self.ordering.apply_overlay(self._current()))

    def stats(self) -> QueueStats:
        """Counts derived from the current view."""
        stats = compute_stats(self._current())
        stats.next_ticket_number = max(stats.next_ticket_number, self.allocator.peek())
        return stats

    def reconciliation(self) -> ReconciliationResponse:
        """Today's open appointments split by queue state."""
        return reconcile(self._current(), self._appointments, self.store.today())

    def snapshot(self) -> QueueSnapshot:
        """Everything needed to render the queue."""
        return QueueSnapshot(
            entries=self.entries(),
            stats=self.stats(),
            warnings=list(self._warnings.values()),
            last_synced_at=self.last_synced_at,
        )

    def _accept_created(self, entry: QueueEntryResponse) -> None:
        if self._closed:
            return
        self._entries[entry.id] = entry
        self.tracker.touch(entry.id)
        self.allocator.observe([entry])

    async def _write(
        self,
        entry_id: str,
        patch: QueueEntryUpdate,
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        """
        Send a patch, showing it locally until the store answers.

        A failed write drops the local patch. A response older than one
        already applied for the same entry is ignored.
        """
        seq = self.tracker.begin(entry_id, patch.model_dump(exclude_unset=True))
        try:
            entry = await self.store.update(entry_id, patch, expected_status=expected_status)
        except NotFoundException:
            if not self._closed:
                self._entries.pop(entry_id, None)
            raise
        finally:
            self.tracker.finish(entry_id, seq)

        if not self._closed and self.tracker.accept(entry_id, seq):
            self._entries[entry_id] = entry
        return entry

    # ------------------------------------------------------------------
    # Entry creation
    # ------------------------------------------------------------------

    async def add_to_queue(self, draft: QueueEntryCreate) -> QueueEntryResponse:
        """
        Queue a patient.

        A draft that names an appointment is handled as a check-in.

        Args:
            draft: Entry draft

        Returns:
            Created entry

        Raises:
            ValidationException: If the draft has no patient reference
            DuplicateCheckInException: If the appointment is already queued
            StoreUnavailableException: If the store cannot be reached
        """
        if draft.appointment_id:
            return await self.check_in(draft.appointment_id, notes=draft.notes)
        require_patient(draft)

        async def attempt() -> QueueEntryResponse:
            ticket_number = await self.allocator.next_ticket_number()
            return await self.store.create(draft, ticket_number)

        entry = await retry_on_collision(attempt, self.ticket_allocation_retries)
        self._accept_created(entry)
        return entry

    async def _appointment(self, appointment_id: str) -> AppointmentResponse:
        for appointment in self._appointments:
            if appointment.id == appointment_id:
                return appointment

        appointments = await self.store.list_appointments_today()
        if not self._closed:
            self._appointments = appointments
        for appointment in appointments:
            if appointment.id == appointment_id:
                return appointment
        raise NotFoundException("Appointment not found for today")

    async def check_in(self, appointment_id: str, notes: str | None = None) -> QueueEntryResponse:
        """Check in one of today's appointments."""
        appointment = await self._appointment(appointment_id)
        entry = await self.reconciler.check_in(appointment, notes=notes)
        self._accept_created(entry)
        return entry

    async def bulk_check_in(self, appointment_ids: Sequence[str]) -> BulkCheckInResult:
        """Check in several appointments; failures do not stop the rest."""
        found: list[AppointmentResponse] = []
        missing: list[CheckInFailure] = []
        for appointment_id in appointment_ids:
            try:
                found.append(await self._appointment(appointment_id))
            except AppException as e:
                missing.append(
                    CheckInFailure(
                        appointment_id=appointment_id,
                        error=e.__class__.__name__,
                        message=e.message,
                    )
                )

        result = await self.reconciler.bulk_check_in(found)
        for entry in result.checked_in:
            self._accept_created(entry)
        result.failed = missing + result.failed
        return result

    # ------------------------------------------------------------------
    # Status and notes
    # ------------------------------------------------------------------

    async def change_status(self, entry_id: str, status: QueueStatus) -> QueueEntryResponse:
        """
        Move an entry through the status machine.

        Raises:
            NotFoundException: If the entry is unknown
            InvalidTransitionException: If the change is illegal
        """
        current = self._get(entry_id)
        validate_transition(current.status, status)

        try:
            entry = await self._write(
                entry_id,
                QueueEntryUpdate(status=status),
                expected_status=current.status,
            )
        except InvalidTransitionException as e:
            logger.info(
                "stale_status_change_rejected",
                entry_id=entry_id,
                seen_status=current.status.value,
                stored_status=e.current,
            )
            raise
        if is_terminal(status):
            self.ordering.discard(entry_id)

        logger.info(
            "queue_status_changed",
            entry_id=entry_id,
            ticket_number=entry.ticket_number,
            old_status=current.status.value,
            new_status=status.value,
        )
        return entry

    async def call_next_patient(self) -> QueueEntryResponse:
        """Start the first waiting patient."""
        waiting = waiting_order(self.ordering.apply_overlay(self._current()))
        if not waiting:
            raise NotFoundException("No patients waiting in queue")
        return await self.change_status(waiting[0].id, QueueStatus.IN_PROGRESS)

    async def update_notes(self, entry_id: str, notes: str | None) -> QueueEntryResponse:
        """Replace an entry's notes."""
        self._get(entry_id)
        return await self._write(entry_id, QueueEntryUpdate(notes=notes))

    async def remove_entry(self, entry_id: str, hard_delete: bool = False) -> None:
        """
        Take an entry out of the queue.

        Args:
            entry_id: Queue entry ID
            hard_delete: If True, delete the record instead of cancelling it

        Raises:
            NotFoundException: If the entry is unknown
            InvalidTransitionException: If a soft removal hits a terminal entry
        """
        if not hard_delete:
            await self.change_status(entry_id, QueueStatus.CANCELLED)
            return

        self._get(entry_id)
        await self.store.remove(entry_id)
        if not self._closed:
            self._entries.pop(entry_id, None)
            self.tracker.forget(entry_id)
            self.ordering.discard(entry_id)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    async def move_up(self, entry_id: str) -> QueueSnapshot:
        """Move a waiting entry one place earlier."""
        await self.ordering.move_up(self._current(), entry_id)
        self._refresh_warnings()
        return self.snapshot()

    async def move_down(self, entry_id: str) -> QueueSnapshot:
        """Move a waiting entry one place later."""
        await self.ordering.move_down(self._current(), entry_id)
        self._refresh_warnings()
        return self.snapshot()

    async def reorder(self, entry_ids: Sequence[str]) -> QueueSnapshot:
        """Set the waiting order; non-waiting ids are ignored."""
        provisional = await self.ordering.reorder(self._current(), entry_ids)
        self._refresh_warnings()
        logger.info("queue_reordered", entry_count=len(entry_ids), provisional=len(provisional))
        return self.snapshot()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def refresh(self) -> QueueSnapshot:
        """
        Re-fetch today's entries and appointments and merge them.

        Entries confirmed after the fetch began keep their local copy, and
        in-flight patches stay applied on top.

        Raises:
            StoreUnavailableException: If the store cannot be reached; the
                current view is left as it was
        """
        mark = self.tracker.mark()
        fetched, appointments = await asyncio.gather(
            self.store.list_today(),
            self.store.list_appointments_today(),
        )
        if self._closed:
            return self.snapshot()

        today = self.store.today()
        if self._day is not None and self._day != today:
            logger.info("queue_day_rolled_over", previous=str(self._day), current=str(today))
            self._entries = {}
            self._warnings = {}
        self._day = today

        merged: dict[str, QueueEntryResponse] = {}
        for entry in fetched:
            local = self._entries.get(entry.id)
            if local is not None and self.tracker.written_since(entry.id, mark):
                merged[entry.id] = local
            else:
                merged[entry.id] = entry
        for entry_id, local in self._entries.items():
            if entry_id not in merged and self.tracker.written_since(entry_id, mark):
                merged[entry_id] = local

        self._entries = merged
        self._appointments = appointments
        self.allocator.observe(fetched)

        await self.ordering.revalidate(list(merged.values()))

        self._warnings.pop("sync_failed", None)
        self._refresh_warnings()
        self.last_synced_at = self.store.clock()

        logger.debug(
            "queue_synced",
            entries=len(merged),
            appointments=len(appointments),
            provisional=len(self.ordering.provisional_ids),
        )
        return self.snapshot()

    def report_sync_failure(self, error: Exception) -> None:
        """Show a background sync failure without touching the view."""
        message = error.message if isinstance(error, AppException) else str(error)
        existing = self._warnings.get("sync_failed")
        self._warnings["sync_failed"] = QueueWarning(
            code="sync_failed",
            message=f"Queue could not be refreshed: {message}",
            raised_at=existing.raised_at if existing else self.store.clock(),
        )

    def _refresh_warnings(self) -> None:
        now = self.store.clock()
        kept = {
            key: warning
            for key, warning in self._warnings.items()
            if not key.startswith("ticket_collision:") and key != "reorder_not_persisted"
        }

        by_ticket: dict[int, list[str]] = defaultdict(list)
        for entry in self._entries.values():
            by_ticket[entry.ticket_number].append(entry.id)
        for ticket_number, entry_ids in sorted(by_ticket.items()):
            if len(entry_ids) < 2:
                continue
            key = f"ticket_collision:{ticket_number}"
            previous = self._warnings.get(key)
            if previous is None:
                logger.warning(
                    "ticket_collision_detected",
                    ticket_number=ticket_number,
                    entry_ids=entry_ids,
                )
            kept[key] = QueueWarning(
                code="ticket_collision",
                message=f"Ticket {ticket_number} was issued to more than one patient",
                entry_ids=sorted(entry_ids),
                raised_at=previous.raised_at if previous else now,
            )

        if self.ordering.has_persistent_failure:
            previous = self._warnings.get("reorder_not_persisted")
            kept["reorder_not_persisted"] = QueueWarning(
                code="reorder_not_persisted",
                message="The new waiting order could not be saved and is only shown on this desk",
                entry_ids=self.ordering.provisional_ids,
                raised_at=previous.raised_at if previous else now,
            )

        self._warnings = kept
