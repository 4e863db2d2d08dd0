"""
tests/test_bookings.py
Tests for the public booking flow and admin booking management:
settings gate → fare lookup → seat reserve → ledger insert, and delete → release.
"""

import asyncio

import pytest
from httpx import AsyncClient
from pybreaker import CircuitBreaker
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.ledger import BookingLedger
from shared.models.models import AdminSettings, AdminUser, Booking, Bus
from shared.utils.resilience import circuit_breaker_manager
from tests.conftest import (
    auth_headers,
    available_seats,
    booking_payload,
    paid_booking_payload,
    sign_payment,
)


async def _booking_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(Booking.id)))


# ── Creation ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(client: AsyncClient, session_factory, bus, booking_open):
    """One booking takes one seat and captures the fare, bus name and travel dates."""
    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True

    booking = body["booking"]
    assert booking["admission_number"] == "24CS094"
    assert booking["bus_route"] == "bus-1"
    assert booking["destination"] == "Kottayam"
    assert booking["fare"] == 50
    assert booking["bus_name"] == "Bus 1"
    assert booking["go_date"] == "2026-12-19"
    assert booking["return_date"] == "2027-01-04"

    assert await available_seats(session_factory, "bus-1") == 9
    assert await _booking_count(session_factory) == 1


@pytest.mark.asyncio
async def test_admission_number_is_upper_cased(client: AsyncClient, bus, booking_open):
    response = await client.post("/api/bookings", json=booking_payload(admissionNumber="24cs094"))
    assert response.status_code == 201
    assert response.json()["booking"]["admission_number"] == "24CS094"


@pytest.mark.asyncio
@pytest.mark.parametrize("admission_number", ["24C094", "2CS0941", "ABCS094", "24CS09A", ""])
async def test_malformed_admission_number_rejected(
    client: AsyncClient, session_factory, bus, booking_open, admission_number
):
    response = await client.post(
        "/api/bookings", json=booking_payload(admissionNumber=admission_number)
    )
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_missing_fields_rejected(client: AsyncClient, bus, booking_open):
    payload = booking_payload()
    del payload["studentName"]
    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"
    assert "details" in response.json()


@pytest.mark.asyncio
async def test_booking_disabled_is_forbidden(
    client: AsyncClient, session_factory, db: AsyncSession, bus
):
    """No seat is taken and no row is written while booking is closed."""
    db.add(AdminSettings(id=AdminSettings.SINGLETON_ID, booking_enabled=False))
    await db.commit()

    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 403
    assert await available_seats(session_factory, "bus-1") == 10
    assert await _booking_count(session_factory) == 0


@pytest.mark.asyncio
async def test_missing_settings_row_fails_closed(client: AsyncClient, session_factory, bus):
    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 403
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_unknown_destination_rejected(client: AsyncClient, session_factory, bus, booking_open):
    response = await client.post("/api/bookings", json=booking_payload(destination="Nowhere"))
    assert response.status_code == 400
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_sold_out_route_forbidden(
    client: AsyncClient, session_factory, db: AsyncSession, bus, booking_open
):
    bus.available_seats = 0
    db.add(bus)
    await db.commit()

    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 403
    assert response.json()["error"] == "This bus is fully booked"
    assert await available_seats(session_factory, "bus-1") == 0
    assert await _booking_count(session_factory) == 0


@pytest.mark.asyncio
async def test_last_seat_race_has_one_winner(
    client: AsyncClient, session_factory, db: AsyncSession, bus, booking_open
):
    """Two simultaneous bookings for the last seat: one 201, one 403, counter at 0."""
    bus.available_seats = 1
    db.add(bus)
    await db.commit()

    first, second = await asyncio.gather(
        client.post("/api/bookings", json=booking_payload(admissionNumber="24CS001")),
        client.post("/api/bookings", json=booking_payload(admissionNumber="24CS002")),
    )

    assert sorted([first.status_code, second.status_code]) == [201, 403]
    assert await available_seats(session_factory, "bus-1") == 0
    assert await _booking_count(session_factory) == 1


@pytest.mark.asyncio
async def test_failed_insert_returns_the_seat(
    client: AsyncClient, session_factory, bus, booking_open, monkeypatch
):
    async def broken_create(self, data, permit, config, quote, paid=False):
        raise OperationalError("INSERT INTO bookings", {}, Exception("disk full"))

    monkeypatch.setattr(BookingLedger, "create", broken_create)

    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 500
    assert response.json()["error"] == "Failed to create booking"
    assert await available_seats(session_factory, "bus-1") == 10
    assert await _booking_count(session_factory) == 0


# ── Payment ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unpaid_booking_is_stored_unpaid(client: AsyncClient, bus, booking_open):
    response = await client.post("/api/bookings", json=booking_payload())
    assert response.status_code == 201
    assert response.json()["booking"]["payment_status"] is False


@pytest.mark.asyncio
async def test_paid_flag_without_payment_details_rejected(
    client: AsyncClient, session_factory, bus, booking_open
):
    """A client cannot mark its own booking as paid."""
    response = await client.post("/api/bookings", json=booking_payload(paymentStatus=True))
    assert response.status_code == 400
    assert response.json()["error"] == "Payment details are required for a paid booking"
    assert await available_seats(session_factory, "bus-1") == 10
    assert await _booking_count(session_factory) == 0


@pytest.mark.asyncio
async def test_booking_with_verified_payment_is_paid(
    client: AsyncClient, session_factory, razorpay_orders: dict, bus, booking_open
):
    payload = paid_booking_payload(razorpay_orders, 50)
    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 201
    booking = response.json()["booking"]
    assert booking["payment_status"] is True
    assert booking["razorpay_order_id"] == payload["razorpay_order_id"]
    assert booking["razorpay_payment_id"] == payload["razorpay_payment_id"]
    assert await available_seats(session_factory, "bus-1") == 9


@pytest.mark.asyncio
async def test_gateway_data_without_paid_flag_is_still_verified(
    client: AsyncClient, razorpay_orders: dict, bus, booking_open
):
    payload = paid_booking_payload(razorpay_orders, 50, paymentStatus=False)
    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 201
    assert response.json()["booking"]["payment_status"] is True


@pytest.mark.asyncio
async def test_booking_with_bad_payment_signature(
    client: AsyncClient, session_factory, razorpay_orders: dict, bus, booking_open
):
    payload = paid_booking_payload(razorpay_orders, 50)
    payload["razorpay_signature"] = sign_payment(
        payload["razorpay_order_id"], payload["razorpay_payment_id"], "some-other-secret"
    )
    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Payment verification failed"
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_booking_with_incomplete_payment_details(
    client: AsyncClient, session_factory, bus, booking_open
):
    response = await client.post(
        "/api/bookings",
        json=booking_payload(paymentStatus=True, razorpay_payment_id="pay_xyz"),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Incomplete payment details"
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_payment_for_unknown_order_rejected(
    client: AsyncClient, session_factory, razorpay_orders: dict, bus, booking_open
):
    """Correctly signed, but Razorpay never issued the order."""
    response = await client.post(
        "/api/bookings",
        json=booking_payload(
            paymentStatus=True,
            razorpay_order_id="order_never",
            razorpay_payment_id="pay_xyz",
            razorpay_signature=sign_payment("order_never", "pay_xyz"),
        ),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Unknown payment order"
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "order_fare, order_overrides",
    [
        (50, {"destination": "Thiruvalla"}),
        (50, {"busRoute": "bus-2", "destination": "Ernakulam"}),
        (10, {}),
    ],
    ids=["other-destination", "other-route", "other-amount"],
)
async def test_payment_for_another_order_rejected(
    client: AsyncClient,
    session_factory,
    razorpay_orders: dict,
    bus,
    second_bus,
    booking_open,
    order_fare,
    order_overrides,
):
    """A valid payment for a cheaper order cannot buy a Kottayam pass on bus-1."""
    paid_elsewhere = paid_booking_payload(razorpay_orders, order_fare, **order_overrides)
    payload = booking_payload(
        paymentStatus=True,
        razorpay_order_id=paid_elsewhere["razorpay_order_id"],
        razorpay_payment_id=paid_elsewhere["razorpay_payment_id"],
        razorpay_signature=paid_elsewhere["razorpay_signature"],
    )

    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Payment does not match the selected route and destination"
    assert await available_seats(session_factory, "bus-1") == 10
    assert await available_seats(session_factory, "bus-2") == 5
    assert await _booking_count(session_factory) == 0


@pytest.mark.asyncio
async def test_payment_cannot_be_used_twice(
    client: AsyncClient, session_factory, razorpay_orders: dict, bus, booking_open
):
    payload = paid_booking_payload(razorpay_orders, 50)
    first = await client.post("/api/bookings", json=payload)
    assert first.status_code == 201

    payload["admissionNumber"] = "24CS095"
    second = await client.post("/api/bookings", json=payload)
    assert second.status_code == 400
    assert second.json()["error"] == "Payment has already been used for a booking"
    assert await available_seats(session_factory, "bus-1") == 9
    assert await _booking_count(session_factory) == 1


@pytest.mark.asyncio
async def test_payment_check_with_gateway_down(
    client: AsyncClient,
    session_factory,
    razorpay_orders: dict,
    gateway,
    bus,
    booking_open,
    monkeypatch,
):
    monkeypatch.setitem(
        circuit_breaker_manager.breakers,
        "razorpay",
        CircuitBreaker(fail_max=5, reset_timeout=60, name="razorpay"),
    )
    payload = paid_booking_payload(razorpay_orders, 50)
    gateway.client.order.fetch.side_effect = RuntimeError("razorpay unreachable")

    response = await client.post("/api/bookings", json=payload)
    assert response.status_code == 502
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_fare_change_does_not_touch_existing_bookings(
    client: AsyncClient, session_factory, admin_user: AdminUser, bus, booking_open
):
    """A booking keeps the fare it was made at."""
    first = await client.post("/api/bookings", json=booking_payload())
    booking_id = first.json()["booking"]["id"]

    stops = await client.get(
        "/api/admin/route-stops", params={"route_code": "bus-1"}, headers=auth_headers(admin_user)
    )
    kottayam = next(s for s in stops.json()["data"] if s["stop_name"] == "Kottayam")
    updated = await client.put(
        f"/api/admin/route-stops/{kottayam['id']}",
        json={"fare": 60},
        headers=auth_headers(admin_user),
    )
    assert updated.status_code == 200

    async with session_factory() as session:
        booking = await session.get(Booking, booking_id)
        assert booking.fare == 50

    second = await client.post("/api/bookings", json=booking_payload(admissionNumber="24CS095"))
    assert second.json()["booking"]["fare"] == 60


# ── Search ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_search_by_admission_number(client: AsyncClient, bus, booking_open):
    await client.post("/api/bookings", json=booking_payload())
    await client.post("/api/bookings", json=booking_payload(destination="Thiruvalla"))
    await client.post("/api/bookings", json=booking_payload(admissionNumber="24CS111"))

    response = await client.get("/api/bookings/search", params={"admission_number": "24cs094"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["count"] == 2
    # newest first
    assert data["bookings"][0]["destination"] == "Thiruvalla"


@pytest.mark.asyncio
async def test_search_no_results(client: AsyncClient):
    response = await client.get("/api/bookings/search", params={"admission_number": "24CS094"})
    assert response.status_code == 200
    assert response.json()["data"] == {"bookings": [], "count": 0}


@pytest.mark.asyncio
async def test_search_invalid_admission_number(client: AsyncClient):
    response = await client.get("/api/bookings/search", params={"admission_number": "24C094"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_rate_limited_per_ip(client: AsyncClient):
    params = {"admission_number": "24CS094"}
    headers = {"X-Forwarded-For": "10.0.0.7, 172.16.0.1"}
    for _ in range(10):
        response = await client.get("/api/bookings/search", params=params, headers=headers)
        assert response.status_code == 200

    blocked = await client.get("/api/bookings/search", params=params, headers=headers)
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "60"

    other_ip = await client.get(
        "/api/bookings/search", params=params, headers={"X-Forwarded-For": "10.0.0.8"}
    )
    assert other_ip.status_code == 200


# ── Admin ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_bookings_require_auth(client: AsyncClient):
    response = await client.get("/api/admin/bookings")
    assert response.status_code == 401
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_admin_list_bookings_with_filters(
    client: AsyncClient, admin_user: AdminUser, razorpay_orders: dict, bus, second_bus, booking_open
):
    await client.post("/api/bookings", json=paid_booking_payload(razorpay_orders, 50))
    await client.post("/api/bookings", json=booking_payload(admissionNumber="24CS095", paymentStatus=False))
    await client.post(
        "/api/bookings",
        json=booking_payload(admissionNumber="24CS096", busRoute="bus-2", destination="Ernakulam"),
    )

    response = await client.get("/api/admin/bookings", headers=auth_headers(admin_user))
    data = response.json()["data"]
    assert data["pagination"]["total"] == 3
    assert data["pagination"]["totalPages"] == 1
    # newest first
    assert data["bookings"][0]["admission_number"] == "24CS096"

    response = await client.get(
        "/api/admin/bookings",
        params={"bus_route": "bus-1", "payment_status": "true"},
        headers=auth_headers(admin_user),
    )
    data = response.json()["data"]
    assert data["pagination"]["total"] == 1
    assert data["bookings"][0]["admission_number"] == "24CS094"

    response = await client.get(
        "/api/admin/bookings", params={"page": 2, "limit": 2}, headers=auth_headers(admin_user)
    )
    data = response.json()["data"]
    assert len(data["bookings"]) == 1
    assert data["pagination"]["totalPages"] == 2


@pytest.mark.asyncio
async def test_admin_update_payment_status(
    client: AsyncClient, admin_user: AdminUser, bus, booking_open
):
    created = await client.post("/api/bookings", json=booking_payload(paymentStatus=False))
    booking_id = created.json()["booking"]["id"]

    response = await client.put(
        f"/api/admin/bookings/{booking_id}",
        json={"payment_status": True},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] is True


@pytest.mark.asyncio
async def test_admin_update_missing_booking(client: AsyncClient, admin_user: AdminUser):
    response = await client.put(
        "/api/admin/bookings/999", json={"payment_status": True}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_delete_booking_returns_seat(
    client: AsyncClient, session_factory, admin_user: AdminUser, bus, booking_open
):
    created = await client.post("/api/bookings", json=booking_payload())
    booking_id = created.json()["booking"]["id"]
    assert await available_seats(session_factory, "bus-1") == 9

    response = await client.delete(
        f"/api/admin/bookings/{booking_id}", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    assert await available_seats(session_factory, "bus-1") == 10
    assert await _booking_count(session_factory) == 0


@pytest.mark.asyncio
async def test_delete_does_not_push_counter_past_capacity(
    client: AsyncClient, session_factory, db: AsyncSession, admin_user: AdminUser, bus
):
    """A booking written without a reserve (counter still full) deletes cleanly."""
    booking = Booking(
        admission_number="24CS094", student_name="Anu Thomas", bus_route="bus-1",
        destination="Kottayam", payment_status=True, fare=50, bus_name="Bus 1",
    )
    db.add(booking)
    await db.commit()

    response = await client.delete(
        f"/api/admin/bookings/{booking.id}", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    assert await available_seats(session_factory, "bus-1") == 10


@pytest.mark.asyncio
async def test_admin_delete_missing_booking(client: AsyncClient, admin_user: AdminUser):
    response = await client.delete("/api/admin/bookings/12345", headers=auth_headers(admin_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_admin_booking_stats(
    client: AsyncClient, admin_user: AdminUser, razorpay_orders: dict, bus, booking_open
):
    await client.post("/api/bookings", json=paid_booking_payload(razorpay_orders, 50))
    await client.post("/api/bookings", json=booking_payload(admissionNumber="24CS095", paymentStatus=False))
    await client.post(
        "/api/bookings",
        json=paid_booking_payload(
            razorpay_orders, 60, admissionNumber="24CS096", destination="Thiruvalla"
        ),
    )

    response = await client.get("/api/admin/bookings/stats", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "max-age=300"
    stats = response.json()["data"]
    assert stats["totalBookings"] == 3
    assert stats["paidBookings"] == 2
    assert stats["pendingBookings"] == 1
    assert stats["recentBookings"] == 3
    assert stats["totalRevenue"] == 110
    assert stats["routeStats"] == [{"route": "bus-1", "count": 3}]
    assert sum(d["count"] for d in stats["dailyStats"]) == 3
