"""Sequential ticket numbers for a clinic day."""

from collections.abc import Awaitable, Callable, Iterable
from datetime import date
from typing import TypeVar

import structlog

from app.core.exceptions import TicketCollisionException
from app.schemas.queue import QueueEntryResponse
from app.services.queue_store import QueueEntryStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def next_ticket_from(entries: Iterable[QueueEntryResponse]) -> int:
    """Return one more than the highest ticket in ``entries`` (1 when empty)."""
    return max((entry.ticket_number for entry in entries), default=0) + 1


async def retry_on_collision(attempt: Callable[[], Awaitable[T]], retries: int) -> T:
    """
    Run an allocate-and-create attempt, retrying when the store reports
    that the ticket was taken in the meantime.

    Args:
        attempt: Coroutine factory that fetches, allocates and creates
        retries: Extra attempts after the first collision

    Raises:
        TicketCollisionException: If every attempt collides
    """
    attempts = 0
    while True:
        try:
            return await attempt()
        except TicketCollisionException:
            attempts += 1
            if attempts > retries:
                raise
            logger.warning("ticket_collision_retry", attempt=attempts, retries=retries)


class TicketAllocator:
    """Derives the next ticket number from the authoritative entry list.

    The allocator also remembers the highest ticket it has seen for the
    current day, so an entry that was physically removed never gets its
    number handed out again by this client.
    """

    def __init__(self, store: QueueEntryStore):
        """Initialize allocator with the queue store."""
        self.store = store
        self._day: date | None = None
        self._high_water = 0

    def observe(self, entries: Iterable[QueueEntryResponse]) -> None:
        """Fold a fetched entry list into the day's high-water mark."""
        today = self.store.today()
        if self._day != today:
            self._day = today
            self._high_water = 0
        self._high_water = max(self._high_water, next_ticket_from(entries) - 1)

    def peek(self) -> int:
        """Next ticket as far as this allocator has observed, without fetching."""
        if self._day != self.store.today():
            return 1
        return self._high_water + 1

    def next_from(self, entries: Iterable[QueueEntryResponse]) -> int:
        """Next ticket given an already fetched entry list."""
        self.observe(entries)
        return self._high_water + 1

    async def next_ticket_number(self) -> int:
        """
        Fetch today's entries and return the next ticket number.

        Raises:
            StoreUnavailableException: If the entry list cannot be fetched
        """
        entries = await self.store.list_today()
        return self.next_from(entries)
