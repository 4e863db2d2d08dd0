"""
services/booking/router.py
Bus pass bookings.

Public:  create a booking, look up bookings by admission number.
Admin:   list with filters, mark paid/unpaid, delete (returns the seat),
         summary statistics.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.analytics.aggregator import AnalyticsAggregator
from services.booking.ledger import BookingLedger
from services.payment.gateway import PaymentGateway, get_payment_gateway
from services.seats.engine import SeatAccountingEngine, get_seat_engine
from services.settings.router import get_booking_config
from shared.middleware.auth import require_admin
from shared.middleware.rate_limit import search_rate_limit
from shared.models.models import AdminUser
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingPaymentUpdateRequest,
    BookingResponse,
    Pagination,
)
from shared.types import BookingConfig
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])
admin_router = APIRouter(prefix="/api/admin/bookings", tags=["Admin: Bookings"])


def get_ledger(
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
    payments: PaymentGateway = Depends(get_payment_gateway),
) -> BookingLedger:
    return BookingLedger(db, seats, payments)


# ── Public ────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_booking(
    data: BookingCreateRequest,
    config: BookingConfig = Depends(get_booking_config),
    ledger: BookingLedger = Depends(get_ledger),
):
    """
    Book one seat. Flow:
    1. Booking must be enabled in admin settings (403 otherwise)
    2. Fare looked up from the catalog (400 for an unknown destination)
    3. Paid only with a verified Razorpay payment for this route, stop and fare
    4. Seat reserved atomically (403 when sold out)
    5. Booking stored with the fare and travel dates of this moment
    """
    booking = await ledger.book(data, config)
    return {"success": True, "booking": BookingResponse.model_validate(booking)}


@router.get("/search", dependencies=[Depends(search_rate_limit)])
async def search_bookings(
    admission_number: str = Query(..., min_length=1, max_length=20),
    ledger: BookingLedger = Depends(get_ledger),
):
    """Bookings for one student, newest first. 10 lookups/min per IP."""
    bookings = await ledger.search(admission_number)
    return envelope(
        {
            "bookings": [BookingResponse.model_validate(b) for b in bookings],
            "count": len(bookings),
        }
    )


# ── Admin ─────────────────────────────────────────────────────

@admin_router.get("")
async def list_bookings(
    bus_route: Optional[str] = Query(None),
    payment_status: Optional[bool] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_admin: AdminUser = Depends(require_admin),
    ledger: BookingLedger = Depends(get_ledger),
):
    rows, total = await ledger.list(
        bus_route=bus_route,
        payment_status=payment_status,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return envelope(
        {
            "bookings": [BookingResponse.model_validate(b) for b in rows],
            "pagination": Pagination(
                page=page, limit=limit, total=total, total_pages=-(-total // limit)
            ),
        }
    )


@admin_router.get("/stats")
async def booking_stats(
    response: Response,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    response.headers["Cache-Control"] = f"max-age={settings.REPORT_CACHE_MAX_AGE}"
    return envelope(await AnalyticsAggregator(db).booking_stats())


@admin_router.put("/{booking_id}")
async def update_booking_payment(
    booking_id: int,
    data: BookingPaymentUpdateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    ledger: BookingLedger = Depends(get_ledger),
):
    booking = await ledger.update_payment_status(booking_id, data.payment_status)
    await audit_log(
        ledger.db, current_admin, "UPDATE_BOOKING_PAYMENT", "Booking", str(booking_id),
        {"payment_status": data.payment_status}, request,
    )
    return envelope(BookingResponse.model_validate(booking))


@admin_router.delete("/{booking_id}")
async def delete_booking(
    booking_id: int,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    ledger: BookingLedger = Depends(get_ledger),
):
    """Delete a booking; its seat goes back to the route in the same transaction."""
    booking = await ledger.delete(booking_id)
    await audit_log(
        ledger.db, current_admin, "DELETE_BOOKING", "Booking", str(booking_id),
        {
            "admission_number": booking.admission_number,
            "bus_route": booking.bus_route,
            "fare": booking.fare,
        },
        request,
    )
    return envelope({"message": "Booking deleted successfully"})
