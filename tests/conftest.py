import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient

# Load environment variables from .env file
load_dotenv()

from app.core.exceptions import StoreUnavailableException
from app.dependencies import get_queue_service
from app.main import app
from app.schemas.appointments import AppointmentResponse, AppointmentStatus
from app.schemas.queue import QueueEntryInsert, QueueEntryResponse, QueueStatus
from app.services.persistence import InMemoryQueuePersistence
from app.services.queue_service import QueueService

CLINIC_OPENS = datetime(2026, 3, 2, 8, 30, tzinfo=UTC)


class FakeClock:
    """Settable clinic clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class ControlledPersistence(InMemoryQueuePersistence):
    """In-memory store whose calls can be made to fail or to answer late.

    ``unavailable`` names operations ("create", "update", "remove", "list",
    "appointments") that raise ``StoreUnavailableException``. A gate set on
    ``update_gate`` or ``list_gate`` delays the response of the next such
    call (the store itself is read or written immediately) until the event
    is set.
    """

    def __init__(self, appointments: list[AppointmentResponse] | None = None):
        super().__init__(appointments)
        self.unavailable: set[str] = set()
        self.update_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.calls: list[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.unavailable:
            raise StoreUnavailableException(f"{operation} failed")

    async def create_queue_entry(self, payload: QueueEntryInsert) -> QueueEntryResponse:
        self._check("create")
        return await super().create_queue_entry(payload)

    async def update_queue_entry(
        self,
        entry_id: str,
        patch: dict[str, Any],
        expected_status: QueueStatus | None = None,
    ) -> QueueEntryResponse:
        self._check("update")
        result = await super().update_queue_entry(entry_id, patch, expected_status)
        gate, self.update_gate = self.update_gate, None
        if gate is not None:
            await gate.wait()
        return result

    async def remove_queue_entry(self, entry_id: str) -> None:
        self._check("remove")
        await super().remove_queue_entry(entry_id)

    async def list_queue_entries_today(self, day: date) -> list[QueueEntryResponse]:
        self._check("list")
        result = await super().list_queue_entries_today(day)
        gate, self.list_gate = self.list_gate, None
        if gate is not None:
            await gate.wait()
        return result

    async def list_appointments_today(self, day: date) -> list[AppointmentResponse]:
        self._check("appointments")
        return await super().list_appointments_today(day)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def settle() -> Callable[[], Awaitable[None]]:
    """Let scheduled tasks run up to their next suspension point."""
    return _settle


@pytest.fixture
def clock() -> FakeClock:
    """Clinic clock frozen at opening time."""
    return FakeClock(CLINIC_OPENS)


@pytest.fixture
def persistence() -> ControlledPersistence:
    """Shared in-memory store."""
    return ControlledPersistence()


@pytest.fixture
def service(persistence: ControlledPersistence, clock: FakeClock) -> QueueService:
    """Queue service for one workstation."""
    return QueueService(persistence, clock=clock)


@pytest.fixture
def make_appointment(clock: FakeClock) -> Callable[..., AppointmentResponse]:
    """Factory for today's appointments."""

    def factory(**overrides: Any) -> AppointmentResponse:
        data: dict[str, Any] = {
            "id": f"appt-{uuid4().hex[:8]}",
            "patient_id": f"patient-{uuid4().hex[:8]}",
            "patient_name": "Jane Roe",
            "appointment_date": clock().date(),
            "appointment_time": "10:00",
            "type": "consultation",
            "reason": "Follow-up",
            "status": AppointmentStatus.SCHEDULED,
        }
        data.update(overrides)
        return AppointmentResponse(**data)

    return factory


@pytest.fixture
def make_entry(clock: FakeClock) -> Callable[..., QueueEntryResponse]:
    """Factory for queue entries; id defaults to ``e<ticket>``."""

    def factory(ticket_number: int, **overrides: Any) -> QueueEntryResponse:
        data: dict[str, Any] = {
            "id": f"e{ticket_number}",
            "ticket_number": ticket_number,
            "patient_id": f"patient-{ticket_number}",
            "is_walk_in": True,
            "status": QueueStatus.WAITING,
            "check_in_time": clock(),
            "position": ticket_number,
        }
        data.update(overrides)
        return QueueEntryResponse(**data)

    return factory


@pytest_asyncio.fixture
async def client(service: QueueService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_queue_service] = lambda: service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
