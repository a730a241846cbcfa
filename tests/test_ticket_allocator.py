"""Tests for ticket allocation."""

import pytest

from app.core.exceptions import StoreUnavailableException, TicketCollisionException
from app.schemas.queue import QueueEntryCreate, QueueStatus
from app.services.queue_store import QueueEntryStore
from app.services.ticket_allocator import TicketAllocator, next_ticket_from, retry_on_collision


@pytest.fixture
def store(persistence, clock) -> QueueEntryStore:
    """Queue store over the in-memory persistence."""
    return QueueEntryStore(persistence, clock)


def test_next_ticket_from_empty_day_is_one() -> None:
    """Test the first ticket of a day is 1."""
    assert next_ticket_from([]) == 1


def test_next_ticket_ignores_status_and_order(make_entry) -> None:
    """Test cancelled entries still count and input order is irrelevant."""
    entries = [
        make_entry(3, status=QueueStatus.CANCELLED),
        make_entry(1),
        make_entry(2, status=QueueStatus.COMPLETED),
    ]
    assert next_ticket_from(entries) == 4


@pytest.mark.asyncio
async def test_tickets_strictly_increase(store: QueueEntryStore) -> None:
    """Test consecutive creations get unique increasing tickets."""
    allocator = TicketAllocator(store)
    issued = []
    for index in range(5):
        ticket = await allocator.next_ticket_number()
        entry = await store.create(QueueEntryCreate(patient_id=f"p{index}"), ticket)
        issued.append(entry.ticket_number)

    assert issued == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_two_allocators_converge(store: QueueEntryStore) -> None:
    """Test a second workstation sees the same next number."""
    first = TicketAllocator(store)
    second = TicketAllocator(store)

    await store.create(QueueEntryCreate(patient_id="p1"), await first.next_ticket_number())

    assert await second.next_ticket_number() == 2
    assert await first.next_ticket_number() == 2


@pytest.mark.asyncio
async def test_allocation_fails_closed(store: QueueEntryStore, persistence) -> None:
    """Test no ticket is issued when the entry list cannot be fetched."""
    persistence.unavailable.add("list")
    allocator = TicketAllocator(store)

    with pytest.raises(StoreUnavailableException):
        await allocator.next_ticket_number()


@pytest.mark.asyncio
async def test_removed_top_ticket_not_reissued(store: QueueEntryStore) -> None:
    """Test a hard-deleted highest entry does not free its number."""
    allocator = TicketAllocator(store)
    await store.create(QueueEntryCreate(patient_id="p1"), await allocator.next_ticket_number())
    second = await store.create(QueueEntryCreate(patient_id="p2"), await allocator.next_ticket_number())
    assert await allocator.next_ticket_number() == 3

    await store.remove(second.id)

    assert await allocator.next_ticket_number() == 3


@pytest.mark.asyncio
async def test_new_day_starts_at_one(store: QueueEntryStore, clock) -> None:
    """Test numbering restarts on the next clinic day."""
    allocator = TicketAllocator(store)
    entry = await store.create(QueueEntryCreate(patient_id="p1"), await allocator.next_ticket_number())
    allocator.observe([entry])
    assert allocator.peek() == 2

    clock.advance(days=1)

    assert allocator.peek() == 1
    assert await allocator.next_ticket_number() == 1


@pytest.mark.asyncio
async def test_retry_on_collision_gives_up() -> None:
    """Test collisions are retried then surfaced."""
    attempts = 0

    async def always_collides() -> int:
        nonlocal attempts
        attempts += 1
        raise TicketCollisionException()

    with pytest.raises(TicketCollisionException):
        await retry_on_collision(always_collides, retries=2)

    assert attempts == 3


@pytest.mark.asyncio
async def test_retry_on_collision_recovers() -> None:
    """Test a later attempt's result is returned."""
    outcomes = [TicketCollisionException(), 7]

    async def attempt() -> int:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await retry_on_collision(attempt, retries=1) == 7
