"""Queue statistics."""

from collections.abc import Iterable

from app.schemas.queue import QueueEntryResponse, QueueStats, QueueStatus

_COUNTERS = {
    QueueStatus.WAITING: "waiting",
    QueueStatus.IN_PROGRESS: "in_progress",
    QueueStatus.COMPLETED: "completed",
    QueueStatus.NO_SHOW: "no_show",
    QueueStatus.CANCELLED: "cancelled",
}


def compute_stats(entries: Iterable[QueueEntryResponse]) -> QueueStats:
    """Count entries per status in a single pass."""
    counts = dict.fromkeys(_COUNTERS.values(), 0)
    total = 0
    highest_ticket = 0
    for entry in entries:
        counts[_COUNTERS[entry.status]] += 1
        total += 1
        highest_ticket = max(highest_ticket, entry.ticket_number)

    return QueueStats(total=total, next_ticket_number=highest_ticket + 1, **counts)
