"""Legal status transitions for queue entries."""

from app.core.exceptions import InvalidTransitionException
from app.schemas.queue import TERMINAL_STATUSES, QueueStatus

ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.WAITING: frozenset(
        {QueueStatus.IN_PROGRESS, QueueStatus.NO_SHOW, QueueStatus.CANCELLED}
    ),
    QueueStatus.IN_PROGRESS: frozenset({QueueStatus.COMPLETED, QueueStatus.CANCELLED}),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.NO_SHOW: frozenset(),
    QueueStatus.CANCELLED: frozenset(),
}


def is_terminal(status: QueueStatus) -> bool:
    """Whether ``status`` allows no further transition."""
    return status in TERMINAL_STATUSES


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    """Whether ``current -> target`` is a legal transition."""
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current: QueueStatus, target: QueueStatus) -> QueueStatus:
    """
    Check a status change.

    Args:
        current: Status the entry has now
        target: Requested status

    Returns:
        The target status

    Raises:
        InvalidTransitionException: If the change is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionException(current.value, target.value)
    return target
