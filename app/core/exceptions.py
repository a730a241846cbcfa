"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class InvalidTransitionException(ConflictException):
    """Illegal queue status change."""

    def __init__(self, current: str, target: str):
        """Initialize with the rejected transition."""
        self.current = current
        self.target = target
        super().__init__(f"Cannot change status from '{current}' to '{target}'")


class DuplicateCheckInException(ConflictException):
    """Appointment already has a queue entry."""

    def __init__(self, message: str = "Appointment is already checked in"):
        """Initialize with 409 status code."""
        super().__init__(message)


class TicketCollisionException(ConflictException):
    """Two queue entries were given the same ticket number."""

    def __init__(self, message: str = "Ticket number already issued today"):
        """Initialize with 409 status code."""
        super().__init__(message)


class StoreUnavailableException(AppException):
    """Persistence collaborator could not be reached or failed."""

    def __init__(self, message: str = "Queue store unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
