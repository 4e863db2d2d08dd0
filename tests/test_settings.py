"""
tests/test_settings.py
Booking gate, travel dates and the admin settings form.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from shared.models.models import AdminSettings, AdminUser
from tests.conftest import auth_headers, available_seats


@pytest.mark.asyncio
async def test_booking_status_closed_without_settings_row(client: AsyncClient):
    response = await client.get("/api/booking-status")
    assert response.status_code == 200
    assert response.json() == {"enabled": False}


@pytest.mark.asyncio
async def test_booking_status_open(client: AsyncClient, booking_open):
    response = await client.get("/api/booking-status")
    assert response.json() == {"enabled": True}


@pytest.mark.asyncio
async def test_travel_dates(client: AsyncClient, booking_open):
    response = await client.get("/api/travel-dates")
    assert response.json() == {"goDate": "2026-12-19", "returnDate": "2027-01-04"}


@pytest.mark.asyncio
async def test_admin_settings_requires_auth(client: AsyncClient):
    response = await client.get("/api/admin/settings")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_get_settings_creates_closed_row(
    client: AsyncClient, admin_user: AdminUser, bus
):
    response = await client.get("/api/admin/settings", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["bookingEnabled"] is False
    assert data["goDate"] is None
    assert data["busAvailability"] == {"bus-1": 10}


@pytest.mark.asyncio
async def test_admin_update_settings(
    client: AsyncClient, session_factory, admin_user: AdminUser, bus
):
    response = await client.patch(
        "/api/admin/settings",
        json={
            "bookingEnabled": True,
            "goDate": "2026-12-19",
            "returnDate": "",
            "busAvailability": {"BUS-1": 7},
        },
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["bookingEnabled"] is True
    assert data["goDate"] == "2026-12-19"
    assert data["returnDate"] is None
    assert data["busAvailability"] == {"bus-1": 7}

    status = await client.get("/api/booking-status")
    assert status.json() == {"enabled": True}


@pytest.mark.asyncio
async def test_admin_seat_override_clamped_to_capacity(
    client: AsyncClient, session_factory, admin_user: AdminUser, bus
):
    response = await client.patch(
        "/api/admin/settings",
        json={"bookingEnabled": True, "busAvailability": {"bus-1": 250}},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_admin_settings_unknown_route_rolls_back(
    client: AsyncClient, session_factory, admin_user: AdminUser, bus
):
    response = await client.patch(
        "/api/admin/settings",
        json={"bookingEnabled": True, "busAvailability": {"bus-1": 3, "bus-99": 4}},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 404
    assert await available_seats(session_factory, "bus-1") == 10

    async with session_factory() as session:
        row = await session.scalar(select(AdminSettings))
        assert row is None or row.booking_enabled is False


@pytest.mark.asyncio
async def test_admin_settings_rejects_dates_out_of_order(client: AsyncClient, admin_user: AdminUser):
    response = await client.patch(
        "/api/admin/settings",
        json={"bookingEnabled": True, "goDate": "2027-01-04", "returnDate": "2026-12-19"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_admin_settings_rejects_negative_seats(client: AsyncClient, admin_user: AdminUser, bus):
    response = await client.patch(
        "/api/admin/settings",
        json={"bookingEnabled": True, "busAvailability": {"bus-1": -1}},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 400
