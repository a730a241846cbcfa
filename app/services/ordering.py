"""Display ordering and manual reordering of waiting entries."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

import structlog

from app.core.exceptions import (
    AppException,
    NotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from app.schemas.queue import QueueEntryResponse, QueueEntryUpdate, QueueEntryView, QueueStatus

logger = structlog.get_logger(__name__)

EntryT = TypeVar("EntryT", bound=QueueEntryResponse)

PositionWriter = Callable[[str, QueueEntryUpdate], Awaitable[QueueEntryResponse]]


def _by_ticket(entry: QueueEntryResponse) -> int:
    return entry.ticket_number


def positions_consistent(waiting: Sequence[QueueEntryResponse]) -> bool:
    """Every waiting entry has a position and no two share one."""
    positions = [entry.position for entry in waiting]
    if any(position is None for position in positions):
        return False
    return len(set(positions)) == len(positions)


def waiting_order(entries: Iterable[EntryT]) -> list[EntryT]:
    """Waiting entries by position, or by ticket when positions are unusable."""
    waiting = [entry for entry in entries if entry.status == QueueStatus.WAITING]
    if positions_consistent(waiting):
        return sorted(waiting, key=lambda entry: (entry.position, entry.ticket_number))
    return sorted(waiting, key=_by_ticket)


def display_order(entries: Iterable[EntryT]) -> list[EntryT]:
    """
    Order entries for display.

    In-progress entries come first, then waiting entries, then everything
    terminal. Terminal entries always trail the active ones whatever their
    ``position`` says.
    """
    in_progress: list[EntryT] = []
    waiting: list[EntryT] = []
    other: list[EntryT] = []
    for entry in entries:
        if entry.status == QueueStatus.IN_PROGRESS:
            in_progress.append(entry)
        elif entry.status == QueueStatus.WAITING:
            waiting.append(entry)
        else:
            other.append(entry)

    return (
        sorted(in_progress, key=_by_ticket)
        + waiting_order(waiting)
        + sorted(other, key=_by_ticket)
    )


class OrderingEngine:
    """Mutates the relative order of waiting entries.

    Positions that could not be persisted are kept in an in-memory overlay
    keyed by entry id. The overlay is laid over every display and is
    re-validated against the store on each successful sync.
    """

    def __init__(self, writer: PositionWriter, failure_warning_threshold: int = 3):
        """
        Initialize the engine.

        Args:
            writer: Coroutine persisting a position patch for one entry
            failure_warning_threshold: Consecutive failed attempts before
                the provisional order is reported as a warning
        """
        self._write = writer
        self.failure_warning_threshold = failure_warning_threshold
        self._overlay: dict[str, int] = {}
        self.consecutive_failures = 0

    @property
    def provisional_ids(self) -> list[str]:
        """Entry ids whose position is not yet confirmed by the store."""
        return list(self._overlay)

    @property
    def has_persistent_failure(self) -> bool:
        """Whether the provisional order has failed to persist repeatedly."""
        return bool(self._overlay) and self.consecutive_failures >= self.failure_warning_threshold

    def apply_overlay(self, entries: Iterable[QueueEntryResponse]) -> list[QueueEntryView]:
        """Return views with provisional positions laid over waiting entries."""
        views = []
        for entry in entries:
            data = entry.model_dump()
            provisional = bool(data.pop("provisional", False))
            if entry.status == QueueStatus.WAITING and entry.id in self._overlay:
                data["position"] = self._overlay[entry.id]
                provisional = True
            views.append(QueueEntryView(**data, provisional=provisional))
        return views

    def plan_reorder(
        self,
        entries: Sequence[QueueEntryResponse],
        entry_ids: Sequence[str],
    ) -> dict[str, int]:
        """
        Positions for a requested order.

        Ids that are unknown, not waiting, or repeated are dropped; the rest
        get ``position = index + 1`` in the order given. Waiting entries the
        request leaves out follow them, keeping their current relative order,
        so positions stay unique.
        """
        current = [entry.id for entry in waiting_order(self.apply_overlay(entries))]
        ordered: list[str] = []
        for entry_id in entry_ids:
            if entry_id in current and entry_id not in ordered:
                ordered.append(entry_id)
        ordered.extend(entry_id for entry_id in current if entry_id not in ordered)
        return {entry_id: index + 1 for index, entry_id in enumerate(ordered)}

    def plan_move(
        self,
        entries: Sequence[QueueEntryResponse],
        entry_id: str,
        offset: int,
    ) -> dict[str, int]:
        """Positions after moving one waiting entry ``offset`` places."""
        views = self.apply_overlay(entries)
        target = next((view for view in views if view.id == entry_id), None)
        if target is None:
            raise NotFoundException("Queue entry not found")
        if target.status != QueueStatus.WAITING:
            raise ValidationException("Only waiting entries can be reordered")

        order = [view.id for view in waiting_order(views)]
        index = order.index(entry_id)
        new_index = index + offset
        if new_index < 0 or new_index >= len(order):
            return {}

        order[index], order[new_index] = order[new_index], order[index]
        return self.plan_reorder(views, order)

    async def reorder(
        self,
        entries: Sequence[QueueEntryResponse],
        entry_ids: Sequence[str],
    ) -> list[str]:
        """Apply a new waiting order; returns ids left provisional."""
        return await self._apply(entries, self.plan_reorder(entries, entry_ids))

    async def move_up(self, entries: Sequence[QueueEntryResponse], entry_id: str) -> list[str]:
        """Swap an entry with the waiting entry before it."""
        return await self._apply(entries, self.plan_move(entries, entry_id, -1))

    async def move_down(self, entries: Sequence[QueueEntryResponse], entry_id: str) -> list[str]:
        """Swap an entry with the waiting entry after it."""
        return await self._apply(entries, self.plan_move(entries, entry_id, 1))

    async def _apply(
        self,
        entries: Sequence[QueueEntryResponse],
        positions: dict[str, int],
    ) -> list[str]:
        confirmed = {entry.id: entry.position for entry in entries}
        changes = {
            entry_id: position
            for entry_id, position in positions.items()
            if confirmed.get(entry_id) != position or entry_id in self._overlay
        }
        if not changes:
            return []

        self._overlay.update(changes)
        return await self._persist(changes)

    async def _persist(self, changes: dict[str, int]) -> list[str]:
        ids = list(changes)
        results = await asyncio.gather(
            *(
                self._write(entry_id, QueueEntryUpdate(position=changes[entry_id]))
                for entry_id in ids
            ),
            return_exceptions=True,
        )

        failed: list[str] = []
        rejected: AppException | None = None
        for entry_id, result in zip(ids, results, strict=True):
            if isinstance(result, StoreUnavailableException):
                failed.append(entry_id)
                continue

            # The overlay may already hold a newer position for this entry.
            if self._overlay.get(entry_id) == changes[entry_id]:
                del self._overlay[entry_id]

            if isinstance(result, NotFoundException):
                logger.info("reorder_entry_gone", entry_id=entry_id)
            elif isinstance(result, AppException):
                logger.warning("reorder_entry_rejected", entry_id=entry_id, error=result.message)
                rejected = rejected or result
            elif isinstance(result, BaseException):
                raise result

        if failed:
            self.consecutive_failures += 1
            logger.warning(
                "reorder_kept_provisional",
                entry_ids=failed,
                consecutive_failures=self.consecutive_failures,
            )
        elif not self._overlay:
            self.consecutive_failures = 0

        if rejected is not None:
            raise rejected
        return failed

    async def revalidate(self, entries: Iterable[QueueEntryResponse]) -> list[str]:
        """
        Reconcile the overlay with a fresh store snapshot.

        Items the store already reflects, and items for entries that are
        gone or no longer waiting, are dropped. The rest are sent again.

        Returns:
            Ids still provisional afterwards
        """
        if not self._overlay:
            return []

        by_id = {entry.id: entry for entry in entries}
        retry: dict[str, int] = {}
        for entry_id, position in list(self._overlay.items()):
            entry = by_id.get(entry_id)
            if entry is None or entry.status != QueueStatus.WAITING or entry.position == position:
                del self._overlay[entry_id]
            else:
                retry[entry_id] = position

        if not retry:
            self.consecutive_failures = 0
            return []

        logger.info("reorder_retrying_provisional", entry_ids=list(retry))
        try:
            return await self._persist(retry)
        except AppException:
            # Rejections were logged and dropped from the overlay by _persist.
            return self.provisional_ids

    def discard(self, entry_id: str) -> None:
        """Forget any provisional position for an entry."""
        self._overlay.pop(entry_id, None)
