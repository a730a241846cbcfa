"""Tests for appointment reconciliation and check-in."""

from datetime import timedelta

import pytest

from app.core.exceptions import DuplicateCheckInException, ValidationException
from app.schemas.appointments import AppointmentStatus, QueueState
from app.schemas.queue import QueueEntryCreate, QueueEntryUpdate, QueueStatus
from app.services.queue_store import QueueEntryStore
from app.services.reconciler import AppointmentReconciler, check_in_note, reconcile
from app.services.ticket_allocator import TicketAllocator


@pytest.fixture
def store(persistence, clock) -> QueueEntryStore:
    """Queue store over the in-memory persistence."""
    return QueueEntryStore(persistence, clock)


@pytest.fixture
def reconciler(store: QueueEntryStore) -> AppointmentReconciler:
    """Reconciler with its own allocator."""
    return AppointmentReconciler(store, TicketAllocator(store))


def test_reconcile_partitions_open_appointments(make_entry, make_appointment, clock) -> None:
    """Test queued and eligible appointments are told apart."""
    queued = make_appointment(id="a-queued")
    eligible = make_appointment(id="a-open", status=AppointmentStatus.CONFIRMED)
    done = make_appointment(id="a-done", status=AppointmentStatus.COMPLETED)
    cancelled = make_appointment(id="a-cancelled", status=AppointmentStatus.CANCELLED)
    tomorrow = make_appointment(id="a-tomorrow", appointment_date=clock().date() + timedelta(days=1))
    entries = [make_entry(1, appointment_id="a-queued", is_walk_in=False), make_entry(2)]

    result = reconcile(entries, [queued, eligible, done, cancelled, tomorrow], clock().date())

    assert [item.appointment.id for item in result.already_queued] == ["a-queued"]
    assert result.already_queued[0].queue_entry_id == "e1"
    assert result.already_queued[0].queue_state == QueueState.ALREADY_QUEUED
    assert [item.appointment.id for item in result.check_in_eligible] == ["a-open"]


def test_reconcile_is_idempotent(make_entry, make_appointment, clock) -> None:
    """Test the same input gives the same partition."""
    appointments = [make_appointment(id="a1"), make_appointment(id="a2")]
    entries = [make_entry(1, appointment_id="a2", is_walk_in=False)]

    first = reconcile(entries, appointments, clock().date())
    second = reconcile(entries, appointments, clock().date())

    assert first == second


def test_terminal_queue_entry_still_counts_as_queued(make_entry, make_appointment, clock) -> None:
    """Test a completed entry still blocks a second check-in."""
    appointment = make_appointment(id="a1")
    entries = [make_entry(1, appointment_id="a1", is_walk_in=False, status=QueueStatus.COMPLETED)]

    result = reconcile(entries, [appointment], clock().date())

    assert result.check_in_eligible == []
    assert len(result.already_queued) == 1


def test_cancelled_queue_entry_makes_appointment_eligible(make_entry, make_appointment, clock) -> None:
    """Test an appointment whose entry was cancelled can be checked in again."""
    appointment = make_appointment(id="a1")
    entries = [make_entry(1, appointment_id="a1", is_walk_in=False, status=QueueStatus.CANCELLED)]

    result = reconcile(entries, [appointment], clock().date())

    assert result.already_queued == []
    assert [item.appointment.id for item in result.check_in_eligible] == ["a1"]


@pytest.mark.asyncio
async def test_check_in_after_cancel_creates_new_entry(reconciler, store, make_appointment) -> None:
    """Test re-checking in a cancelled appointment issues a fresh ticket."""
    appointment = make_appointment(id="a1")
    first = await reconciler.check_in(appointment)
    await store.update(first.id, QueueEntryUpdate(status=QueueStatus.CANCELLED))

    second = await reconciler.check_in(appointment)

    assert second.id != first.id
    assert second.ticket_number == 2
    assert {e.status for e in await store.list_today()} == {QueueStatus.CANCELLED, QueueStatus.WAITING}


@pytest.mark.asyncio
async def test_check_in_creates_linked_entry(reconciler, make_appointment) -> None:
    """Test a checked-in appointment becomes a waiting, non-walk-in entry."""
    appointment = make_appointment(id="a1", type="vaccination")

    entry = await reconciler.check_in(appointment)

    assert entry.appointment_id == "a1"
    assert entry.patient_id == appointment.patient_id
    assert entry.is_walk_in is False
    assert entry.status == QueueStatus.WAITING
    assert entry.ticket_number == 1
    assert entry.notes == "Checked in for vaccination"


@pytest.mark.asyncio
async def test_check_in_twice_yields_one_entry(reconciler, store, make_appointment) -> None:
    """Test the second check-in of the same appointment fails."""
    appointment = make_appointment(id="a1")

    await reconciler.check_in(appointment)
    with pytest.raises(DuplicateCheckInException):
        await reconciler.check_in(appointment)

    assert len(await store.list_today()) == 1


@pytest.mark.asyncio
async def test_check_in_continues_ticket_sequence(reconciler, store, make_appointment) -> None:
    """Test check-ins share the ticket sequence with walk-ins."""
    await store.create(QueueEntryCreate(patient_id="walk-in"), 1)

    entry = await reconciler.check_in(make_appointment())

    assert entry.ticket_number == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"status": AppointmentStatus.CANCELLED},
        {"status": AppointmentStatus.COMPLETED},
    ],
)
async def test_check_in_rejects_closed_appointments(reconciler, make_appointment, overrides) -> None:
    """Test closed appointments are not checked in."""
    with pytest.raises(ValidationException):
        await reconciler.check_in(make_appointment(**overrides))


@pytest.mark.asyncio
async def test_check_in_rejects_other_days(reconciler, make_appointment, clock) -> None:
    """Test only today's appointments are checked in."""
    appointment = make_appointment(appointment_date=clock().date() - timedelta(days=1))

    with pytest.raises(ValidationException):
        await reconciler.check_in(appointment)


@pytest.mark.asyncio
async def test_bulk_check_in_is_best_effort(reconciler, store, make_appointment) -> None:
    """Test one failure does not stop the others."""
    first = make_appointment(id="a1")
    duplicate = make_appointment(id="a2")
    last = make_appointment(id="a3")
    await reconciler.check_in(duplicate)

    result = await reconciler.bulk_check_in([first, duplicate, last])

    assert [entry.appointment_id for entry in result.checked_in] == ["a1", "a3"]
    assert len(result.failed) == 1
    assert result.failed[0].appointment_id == "a2"
    assert result.failed[0].error == "DuplicateCheckInException"
    assert [entry.ticket_number for entry in result.checked_in] == [2, 3]
    assert len(await store.list_today()) == 3


def test_check_in_note_defaults(make_appointment) -> None:
    """Test the note falls back to a generic label."""
    assert check_in_note(make_appointment(type=None)) == "Checked in for appointment"
