"""
tests/test_rounds.py
End-of-round reset: archive, clear ledger, restore capacity, all or nothing.
"""

from datetime import date

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.rounds.lifecycle import ROUNDS_CACHE_KEY, RoundLifecycle
from services.seats.engine import SeatAccountingEngine
from shared.models.models import AdminUser, Booking, BookingRound, Bus
from tests.conftest import auth_headers, available_seats, paid_booking_payload


def _booking(route: str, fare: int, paid: bool, admission_number: str = "24CS094") -> Booking:
    return Booking(
        admission_number=admission_number,
        student_name="Anu Thomas",
        bus_route=route,
        destination="Kottayam",
        payment_status=paid,
        fare=fare,
        bus_name="Bus 1",
    )


@pytest_asyncio.fixture
async def round_data(db: AsyncSession, bus, second_bus, booking_open):
    """Three live bookings (two paid), counters drawn down to match."""
    db.add_all(
        [
            _booking("bus-1", 50, True, "24CS001"),
            _booking("bus-1", 60, True, "24CS002"),
            _booking("bus-2", 80, False, "24CS003"),
        ]
    )
    bus.available_seats = 8
    second_bus.available_seats = 4
    db.add_all([bus, second_bus])
    await db.commit()


@pytest.mark.asyncio
async def test_reset_archives_and_clears(
    client: AsyncClient, session_factory, admin_user: AdminUser, round_data
):
    response = await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["message"] == "Booking round reset successfully"
    assert data["round"]["totalBookings"] == 3
    assert data["round"]["totalRevenue"] == 110  # unpaid booking not counted
    assert data["round"]["goDate"] == "2026-12-19"
    assert data["round"]["returnDate"] == "2027-01-04"

    async with session_factory() as session:
        assert await session.scalar(select(func.count(Booking.id))) == 0
        assert await session.scalar(select(func.count(BookingRound.id))) == 1
    assert await available_seats(session_factory, "bus-1") == 10
    assert await available_seats(session_factory, "bus-2") == 5


@pytest.mark.asyncio
async def test_reset_with_empty_ledger(client: AsyncClient, admin_user: AdminUser, bus):
    response = await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))
    assert response.status_code == 200
    booking_round = response.json()["data"]["round"]
    assert booking_round["totalBookings"] == 0
    assert booking_round["totalRevenue"] == 0
    assert booking_round["goDate"] is None


@pytest.mark.asyncio
async def test_reset_leaves_inactive_buses_alone(
    client: AsyncClient, session_factory, db: AsyncSession, admin_user: AdminUser, bus
):
    bus.is_active = False
    bus.available_seats = 3
    db.add(bus)
    await db.commit()

    await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))
    assert await available_seats(session_factory, "bus-1") == 3


@pytest.mark.asyncio
async def test_reset_failure_rolls_back_everything(
    session_factory, round_data, monkeypatch
):
    async def broken_reset_all(self, session):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(SeatAccountingEngine, "reset_all", broken_reset_all)

    async with session_factory() as session:
        lifecycle = RoundLifecycle(session, SeatAccountingEngine(session_factory))
        with pytest.raises(RuntimeError):
            await lifecycle.reset_round()

    async with session_factory() as session:
        assert await session.scalar(select(func.count(Booking.id))) == 3
        assert await session.scalar(select(func.count(BookingRound.id))) == 0
    assert await available_seats(session_factory, "bus-1") == 8


@pytest.mark.asyncio
async def test_reset_requires_admin(client: AsyncClient, session_factory, round_data):
    response = await client.post("/api/admin/analytics/reset")
    assert response.status_code == 401

    async with session_factory() as session:
        assert await session.scalar(select(func.count(Booking.id))) == 3


@pytest.mark.asyncio
async def test_rounds_report_newest_first_and_cached(
    client: AsyncClient, db: AsyncSession, redis, admin_user: AdminUser, bus
):
    db.add(BookingRound(go_date=date(2026, 4, 1), return_date=date(2026, 4, 10),
                        total_bookings=12, total_revenue=600))
    await db.commit()

    await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))

    response = await client.get("/api/admin/reports/rounds", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "max-age=300"
    data = response.json()["data"]
    assert data["totalRounds"] == 2
    assert data["rounds"][1]["totalBookings"] == 12
    assert await redis.exists(ROUNDS_CACHE_KEY) == 1

    # Next reset invalidates the cached list
    await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))
    assert await redis.exists(ROUNDS_CACHE_KEY) == 0

    response = await client.get("/api/admin/reports/rounds", headers=auth_headers(admin_user))
    assert response.json()["data"]["totalRounds"] == 3


@pytest.mark.asyncio
async def test_round_archive_matches_ledger_seen_by_reset(
    client: AsyncClient,
    session_factory,
    admin_user: AdminUser,
    razorpay_orders: dict,
    bus,
    booking_open,
):
    """Paid bookings made through the API are archived and their seats restored."""
    for i in range(3):
        await client.post(
            "/api/bookings",
            json=paid_booking_payload(
                razorpay_orders,
                60,
                studentName="Student",
                admissionNumber=f"24CS10{i}",
                destination="Thiruvalla",
            ),
        )
    assert await available_seats(session_factory, "bus-1") == 7

    response = await client.post("/api/admin/analytics/reset", headers=auth_headers(admin_user))
    booking_round = response.json()["data"]["round"]
    assert booking_round["totalBookings"] == 3
    assert booking_round["totalRevenue"] == 180

    async with session_factory() as session:
        bus_row = await session.scalar(select(Bus).where(Bus.route_code == "bus-1"))
        assert bus_row.available_seats == bus_row.total_seats
