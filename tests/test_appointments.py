"""Tests for appointment check-in endpoints."""

import pytest
from httpx import AsyncClient

from app.schemas.appointments import AppointmentStatus


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_todays_appointments_after_refresh(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test today's appointments are split by check-in state."""
    persistence.add_appointment(make_appointment(id="appt-1"))
    persistence.add_appointment(make_appointment(id="appt-2"))
    persistence.add_appointment(make_appointment(id="appt-3", status=AppointmentStatus.CANCELLED))

    await client.post("/api/v1/queue/refresh")
    await client.post("/api/v1/appointments/appt-1/check-in")

    response = await client.get("/api/v1/appointments/today")
    assert response.status_code == 200
    data = response.json()
    assert [item["appointment"]["id"] for item in data["already_queued"]] == ["appt-1"]
    assert data["already_queued"][0]["queue_state"] == "already_queued"
    assert [item["appointment"]["id"] for item in data["check_in_eligible"]] == ["appt-2"]


@pytest.mark.asyncio
async def test_check_in_appointment(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test checking in an appointment creates a queue entry."""
    persistence.add_appointment(make_appointment(id="appt-1", type="consultation"))

    response = await client.post("/api/v1/appointments/appt-1/check-in")
    assert response.status_code == 201
    data = response.json()
    assert data["appointment_id"] == "appt-1"
    assert data["is_walk_in"] is False
    assert data["status"] == "waiting"
    assert data["ticket_number"] == 1
    assert data["notes"] == "Checked in for consultation"


@pytest.mark.asyncio
async def test_check_in_with_note(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test a front-desk note replaces the default one."""
    persistence.add_appointment(make_appointment(id="appt-1"))

    response = await client.post(
        "/api/v1/appointments/appt-1/check-in",
        json={"notes": "Arrived early"},
    )
    assert response.status_code == 201
    assert response.json()["notes"] == "Arrived early"


@pytest.mark.asyncio
async def test_check_in_twice(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test a second check-in of the same appointment is rejected."""
    persistence.add_appointment(make_appointment(id="appt-1"))
    await client.post("/api/v1/appointments/appt-1/check-in")

    response = await client.post("/api/v1/appointments/appt-1/check-in")
    assert response.status_code == 409
    assert response.json()["error"] == "DuplicateCheckInException"

    queue = await client.get("/api/v1/queue/")
    assert queue.json()["stats"]["total"] == 1


@pytest.mark.asyncio
async def test_check_in_unknown_appointment(client: AsyncClient) -> None:
    """Test checking in an appointment that is not scheduled today."""
    response = await client.post("/api/v1/appointments/nope/check-in")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_check_in_completed_appointment(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test a completed appointment cannot be checked in."""
    persistence.add_appointment(make_appointment(id="appt-1", status=AppointmentStatus.COMPLETED))

    response = await client.post("/api/v1/appointments/appt-1/check-in")
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationException"


@pytest.mark.asyncio
async def test_bulk_check_in(
    client: AsyncClient,
    persistence,
    make_appointment,
) -> None:
    """Test bulk check-in reports each failure separately."""
    persistence.add_appointment(make_appointment(id="appt-1"))
    persistence.add_appointment(make_appointment(id="appt-2"))
    await client.post("/api/v1/appointments/appt-2/check-in")

    response = await client.post(
        "/api/v1/appointments/check-in",
        json={"appointment_ids": ["appt-1", "appt-2", "appt-9"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert [entry["appointment_id"] for entry in data["checked_in"]] == ["appt-1"]
    assert sorted(failure["appointment_id"] for failure in data["failed"]) == ["appt-2", "appt-9"]


@pytest.mark.asyncio
async def test_bulk_check_in_requires_ids(client: AsyncClient) -> None:
    """Test an empty bulk request is rejected."""
    response = await client.post("/api/v1/appointments/check-in", json={"appointment_ids": []})
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"
