"""Persistence collaborators for queue entries and appointments.

The queue core treats storage as an opaque CRUD collaborator. Two
implementations are provided:

- ``HttpQueuePersistence`` talks to the clinic's shared API.
- ``InMemoryQueuePersistence`` keeps everything in process and enforces the
  same uniqueness constraints the shared API is expected to enforce.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

import httpx
import structlog

from app.core.exceptions import (
    AppException,
    ConflictException,
    DuplicateCheckInException,
    InvalidTransitionException,
    NotFoundException,
    StoreUnavailableException,
    TicketCollisionException,
    ValidationException,
)
from app.schemas.appointments import AppointmentResponse
from app.schemas.queue import QueueEntryInsert, QueueEntryResponse, QueueEntryUpdate, QueueStatus
from app.services.status_machine import can_transition

logger = structlog.get_logger(__name__)

# Remote 409 bodies name the violated constraint in their ``error`` field.
_CONFLICTS: dict[str, type[ConflictException]] = {
    "DuplicateCheckInException": DuplicateCheckInException,
    "DuplicateCheckIn": DuplicateCheckInException,
    "TicketCollisionException": TicketCollisionException,
    "TicketCollision": TicketCollisionException,
}
_TRANSITION_ERRORS = frozenset({"InvalidTransitionException", "InvalidTransition"})


class QueuePersistence(ABC):
    """CRUD contract of the persistence/API collaborator."""

    @abstractmethod
    async def create_queue_entry(self, payload: QueueEntryInsert) -> QueueEntryResponse:
        """Persist a new entry and return it with its assigned id."""

    @abstractmethod
    async def update_queue_entry(
        self,
        entry_id: str,
        patch: dict[str, Any],
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        """Merge ``patch`` into an entry and return the stored result.

        When ``expected_status`` is given the store must reject the patch
        with ``InvalidTransitionException`` if the entry has since moved to
        another status.
        """

    @abstractmethod
    async def remove_queue_entry(self, entry_id: str) -> None:
        """Delete an entry."""

    @abstractmethod
    async def list_queue_entries_today(self, day: date) -> list[QueueEntryResponse]:
        """List every queue entry of ``day``."""

    @abstractmethod
    async def list_appointments_today(self, day: date) -> list[AppointmentResponse]:
        """List appointments scheduled for ``day``."""

    async def check_connection(self) -> bool:
        """Check if the collaborator is reachable."""
        return True

    async def close(self) -> None:
        """Release held resources."""


class HttpQueuePersistence(QueuePersistence):
    """Collaborator backed by the clinic REST API."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the HTTP collaborator.

        Args:
            base_url: Root URL of the clinic API
            token: Optional bearer token
            timeout: Request timeout in seconds
            transport: Optional transport override
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send a request and translate failures into application exceptions.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            **kwargs: Extra arguments for ``httpx.AsyncClient.request``

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            StoreUnavailableException: On transport errors and 5xx responses
            AppException: Mapped from 4xx responses
        """
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error("store_request_error", method=method, path=path, error=str(e))
            raise StoreUnavailableException(f"Queue store unreachable: {e}") from e

        if response.status_code >= 400:
            raise self._error_for(response)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_for(response: httpx.Response) -> AppException:
        """Map an error response onto the application exception hierarchy."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = str(body.get("message") or body.get("detail") or response.reason_phrase)
        code = response.status_code

        logger.warning(
            "store_request_rejected",
            status_code=code,
            path=response.request.url.path,
            error=body.get("error"),
        )

        if code >= 500:
            return StoreUnavailableException(message)
        if code == 404:
            return NotFoundException(message)
        if code in (400, 422):
            return ValidationException(message)
        if code == 409 and str(body.get("error")) in _TRANSITION_ERRORS:
            return InvalidTransitionException(
                str(body.get("current_status", "unknown")),
                str(body.get("requested_status", "unknown")),
            )
        if code == 409:
            return _CONFLICTS.get(str(body.get("error")), ConflictException)(message)
        return AppException(message, status_code=code)

    async def create_queue_entry(self, payload: QueueEntryInsert) -> QueueEntryResponse:
        """Create a queue entry through the API."""
        data = await self._request("POST", "/queue", json=payload.model_dump(mode="json"))
        return QueueEntryResponse.model_validate(data)

    async def update_queue_entry(
        self,
        entry_id: str,
        patch: dict[str, Any],
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        """Partially update a queue entry through the API."""
        body = QueueEntryUpdate.model_validate(patch).model_dump(mode="json", exclude_unset=True)
        if expected_status is not None:
            body["expected_status"] = expected_status.value
        data = await self._request("PATCH", f"/queue/{entry_id}", json=body)
        return QueueEntryResponse.model_validate(data)

    async def remove_queue_entry(self, entry_id: str) -> None:
        """Delete a queue entry through the API."""
        await self._request("DELETE", f"/queue/{entry_id}")

    async def list_queue_entries_today(self, day: date) -> list[QueueEntryResponse]:
        """List the day's queue entries through the API."""
        data = await self._request("GET", "/queue", params={"date": day.isoformat()})
        return [QueueEntryResponse.model_validate(item) for item in data or []]

    async def list_appointments_today(self, day: date) -> list[AppointmentResponse]:
        """List the day's appointments through the API."""
        data = await self._request("GET", "/appointments", params={"date": day.isoformat()})
        return [AppointmentResponse.model_validate(item) for item in data or []]

    async def check_connection(self) -> bool:
        """Check if the clinic API answers."""
        try:
            client = self._get_client()
            response = await client.get("/health")
            return response.status_code < 500
        except httpx.HTTPError:
            return False


class InMemoryQueuePersistence(QueuePersistence):
    """In-process collaborator for local runs and tests."""

    def __init__(self, appointments: list[AppointmentResponse] | None = None):
        """Initialize with optional seeded appointments."""
        self._entries: dict[str, tuple[date, QueueEntryResponse]] = {}
        self._appointments: dict[str, AppointmentResponse] = {}
        for appointment in appointments or []:
            self.add_appointment(appointment)

    def add_appointment(self, appointment: AppointmentResponse) -> None:
        """Seed or replace an appointment."""
        self._appointments[appointment.id] = appointment

    async def create_queue_entry(self, payload: QueueEntryInsert) -> QueueEntryResponse:
        """Store a new entry, enforcing uniqueness constraints.

        An appointment may back one live entry; a cancelled entry no longer
        counts, so the patient can be checked in again.
        """
        day = payload.check_in_time.date()

        for entry_day, existing in self._entries.values():
            if (
                payload.appointment_id
                and existing.appointment_id == payload.appointment_id
                and existing.status != QueueStatus.CANCELLED
            ):
                raise DuplicateCheckInException(
                    f"Appointment {payload.appointment_id} already has a queue entry"
                )
            if entry_day == day and existing.ticket_number == payload.ticket_number:
                raise TicketCollisionException(
                    f"Ticket {payload.ticket_number} already issued on {day.isoformat()}"
                )

        entry = QueueEntryResponse(id=uuid.uuid4().hex, **payload.model_dump())
        self._entries[entry.id] = (day, entry)
        return entry.model_copy()

    async def update_queue_entry(
        self,
        entry_id: str,
        patch: dict[str, Any],
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        """Merge a patch into a stored entry, guarding status changes."""
        if entry_id not in self._entries:
            raise NotFoundException("Queue entry not found")

        day, entry = self._entries[entry_id]
        changes = QueueEntryUpdate.model_validate(patch).model_dump(exclude_unset=True)
        target = changes.get("status")
        if target is not None and target != entry.status:
            if expected_status is not None and entry.status != expected_status:
                raise InvalidTransitionException(entry.status.value, target.value)
            if not can_transition(entry.status, target):
                raise InvalidTransitionException(entry.status.value, target.value)
        updated = entry.model_copy(update=changes)
        self._entries[entry_id] = (day, updated)
        return updated.model_copy()

    async def remove_queue_entry(self, entry_id: str) -> None:
        """Delete a stored entry."""
        if self._entries.pop(entry_id, None) is None:
            raise NotFoundException("Queue entry not found")

    async def list_queue_entries_today(self, day: date) -> list[QueueEntryResponse]:
        """List stored entries checked in on ``day``."""
        return [
            entry.model_copy() for entry_day, entry in self._entries.values() if entry_day == day
        ]

    async def list_appointments_today(self, day: date) -> list[AppointmentResponse]:
        """List seeded appointments for ``day``."""
        return [a.model_copy() for a in self._appointments.values() if a.appointment_date == day]


def create_persistence(
    backend: str,
    base_url: str,
    token: str | None = None,
    timeout: float = 10.0,
) -> QueuePersistence:
    """
    Build the configured collaborator.

    Args:
        backend: ``http`` or ``memory``
        base_url: Clinic API root (HTTP backend only)
        token: Optional bearer token (HTTP backend only)
        timeout: Request timeout in seconds (HTTP backend only)

    Returns:
        Persistence collaborator
    """
    if backend.lower() == "memory":
        return InMemoryQueuePersistence()
    if backend.lower() == "http":
        return HttpQueuePersistence(base_url, token=token, timeout=timeout)
    raise ValueError(f"Unknown store backend: {backend}")
