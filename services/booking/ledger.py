"""
services/booking/ledger.py
Booking ledger: the record of issued bus passes.

Creation order is fixed: settings gate, fare lookup, payment check,
seat reserve, insert. A reserve that is not followed by a committed insert is
compensated with a release.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.catalog.service import FareCatalog, FareQuote
from services.payment.gateway import PaymentGateway
from services.seats.engine import Permit, SeatAccountingEngine
from shared.exceptions import (
    BookingDisabled,
    BusPassError,
    Internal,
    NotFound,
    ServiceUnavailable,
    ValidationError,
)
from shared.models.models import Booking
from shared.schemas.schemas import BookingCreateRequest
from shared.types import (
    BookingConfig,
    RouteCode,
    normalize_admission_number,
    parse_route_code,
)

logger = logging.getLogger(__name__)


class BookingLedger:
    def __init__(
        self,
        db: AsyncSession,
        seats: SeatAccountingEngine,
        payments: Optional[PaymentGateway] = None,
    ):
        self.db = db
        self.seats = seats
        self.payments = payments

    # ── Creation ─────────────────────────────────────────────

    async def book(self, data: BookingCreateRequest, config: BookingConfig) -> Booking:
        """Full public booking flow. Commits on success."""
        if not config.booking_enabled:
            raise BookingDisabled()

        try:
            quote = await FareCatalog(self.db).get_fare(data.bus_route, data.destination)
        except NotFound:
            raise ValidationError("Invalid bus route or destination")

        paid = await self._payment_result(data, quote)
        permit = await self.seats.reserve(data.bus_route)

        try:
            booking = await self.create(data, permit, config, quote, paid=paid)
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            await self.seats.compensate(permit, attempted=self._describe(data, quote))
            if isinstance(exc, BusPassError):
                raise
            logger.exception(f"Booking insert failed on route {data.bus_route}")
            raise Internal("Failed to create booking") from exc

        logger.info(
            f"Booking {booking.id} created: {booking.admission_number} on "
            f"{booking.bus_route} to {booking.destination} (fare {booking.fare})"
        )
        return booking

    async def create(
        self,
        data: BookingCreateRequest,
        permit: Permit,
        config: BookingConfig,
        quote: FareQuote,
        paid: bool = False,
    ) -> Booking:
        """
        Insert one booking against an unused permit for the same route.
        Fare, bus name and travel dates are copied now and never recomputed.
        """
        if quote.route_code != RouteCode(data.bus_route):
            raise ValidationError("Fare quote does not match the booking route")
        permit.consume(data.bus_route)

        booking = Booking(
            admission_number=normalize_admission_number(data.admission_number),
            student_name=data.student_name,
            bus_route=permit.route_code,
            destination=quote.stop_name,
            payment_status=paid,
            fare=quote.fare,
            bus_name=quote.bus_name,
            go_date=config.go_date,
            return_date=config.return_date,
            razorpay_payment_id=data.razorpay_payment_id or None,
            razorpay_order_id=data.razorpay_order_id or None,
            razorpay_signature=data.razorpay_signature or None,
        )
        self.db.add(booking)
        await self.db.flush()
        return booking

    async def _payment_result(self, data: BookingCreateRequest, quote: FareQuote) -> bool:
        """
        A booking is stored as paid only after the checkout result verifies
        against an order issued for this route, destination and fare.
        """
        if not data.has_gateway_data:
            if data.payment_status:
                raise ValidationError("Payment details are required for a paid booking")
            return False

        if not (data.razorpay_order_id and data.razorpay_payment_id and data.razorpay_signature):
            raise ValidationError("Incomplete payment details")
        if self.payments is None:
            raise ServiceUnavailable("Payment service is not configured")

        reused = await self.db.scalar(
            select(func.count(Booking.id)).where(
                Booking.razorpay_payment_id == data.razorpay_payment_id
            )
        )
        if reused:
            raise ValidationError("Payment has already been used for a booking")

        await self.payments.confirm_payment(
            data.razorpay_order_id,
            data.razorpay_payment_id,
            data.razorpay_signature,
            amount_paise=quote.fare * 100,
            bus_route=quote.route_code,
            destination=quote.stop_name,
        )
        return True

    @staticmethod
    def _describe(data: BookingCreateRequest, quote: Optional[FareQuote] = None) -> dict:
        return {
            "admission_number": data.admission_number,
            "student_name": data.student_name,
            "bus_route": data.bus_route,
            "destination": data.destination,
            "payment_status": data.payment_status,
            "fare": quote.fare if quote else None,
            "razorpay_order_id": data.razorpay_order_id,
            "razorpay_payment_id": data.razorpay_payment_id,
        }

    # ── Admin mutations ──────────────────────────────────────

    async def get(self, booking_id: int) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if not booking:
            raise NotFound("Booking not found")
        return booking

    async def update_payment_status(self, booking_id: int, paid: bool) -> Booking:
        booking = await self.get(booking_id)
        booking.payment_status = paid
        await self.db.flush()
        return booking

    async def delete(self, booking_id: int) -> Booking:
        """
        Remove a booking and return its seat in the same transaction;
        the caller commits both or neither.
        """
        booking = await self.get(booking_id)
        await self.db.delete(booking)
        await self.db.flush()
        await self.seats.release(booking.bus_route, session=self.db)
        logger.info(f"Booking {booking_id} deleted, seat returned to {booking.bus_route}")
        return booking

    # ── Queries ──────────────────────────────────────────────

    async def search(self, admission_number: str) -> List[Booking]:
        try:
            normalized = normalize_admission_number(admission_number)
        except ValueError as e:
            raise ValidationError(str(e))
        result = await self.db.execute(
            select(Booking)
            .where(Booking.admission_number == normalized)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
        )
        return list(result.scalars().all())

    async def list(
        self,
        bus_route: Optional[str] = None,
        payment_status: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Booking], int]:
        query = select(Booking)
        if bus_route:
            query = query.where(Booking.bus_route == parse_route_code(bus_route))
        if payment_status is not None:
            query = query.where(Booking.payment_status.is_(payment_status))
        if start_date:
            query = query.where(Booking.created_at >= start_date)
        if end_date:
            query = query.where(Booking.created_at <= end_date)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0
