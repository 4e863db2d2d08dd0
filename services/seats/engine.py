"""
services/seats/engine.py
Seat accounting: the only code that writes buses.available_seats.

Every mutation is a single conditional UPDATE, so the check and the write
happen atomically inside the datastore:

    reserve  -> available_seats - 1  WHERE available_seats > 0 AND is_active
    release  -> available_seats + 1  WHERE available_seats < total_seats
    reset    -> available_seats = total_seats  (active buses)

A successful reserve yields a Permit that authorizes exactly one ledger
insert for that route.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends
from sqlalchemy import case, func, literal, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying

from config.database import get_session_factory
from config.settings import settings
from shared.exceptions import (
    InvalidPermit,
    NotFound,
    RouteInactive,
    RouteNotFound,
    SeatReservationTimeout,
    SoldOut,
)
from shared.models.models import Booking, Bus
from shared.types import RouteCode, RouteMap
from shared.utils.resilience import COMPENSATION_RETRY

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_statement_timeout(exc: DBAPIError) -> bool:
    # Postgres query_canceled, raised when statement_timeout fires
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return code == "57014"


class Permit:
    """Authorization for one ledger insert, issued by a successful reserve."""

    def __init__(self, route_code: RouteCode):
        self.route_code = route_code
        self.token = uuid.uuid4().hex
        self.issued_at = _utcnow()
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self, route_code: str) -> None:
        if self._consumed:
            raise InvalidPermit()
        if RouteCode(route_code) != self.route_code:
            raise InvalidPermit()
        self._consumed = True

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "open"
        return f"<Permit {self.route_code} {self.token[:8]} {state}>"


@dataclass(frozen=True)
class SeatCorrection:
    route_code: str
    before: int
    after: int


class SeatAccountingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        reserve_timeout: float = settings.SEAT_RESERVE_TIMEOUT_SECONDS,
    ):
        self.session_factory = session_factory
        self.reserve_timeout = reserve_timeout

    # ── Reserve ──────────────────────────────────────────────

    async def reserve(self, route_code: str) -> Permit:
        """
        Take one seat on the route or raise SoldOut / RouteInactive /
        RouteNotFound. Runs in its own transaction and commits before
        returning, so no row lock is held while the caller writes the booking.
        """
        route = RouteCode(route_code)
        acquired = await self._decrement(route)
        if not acquired:
            raise await self._rejection(route)

        permit = Permit(route)
        logger.info(f"Seat reserved on route {route} (permit {permit.token[:8]})")
        return permit

    async def _decrement(self, route: RouteCode) -> bool:
        """
        The timeout bounds the UPDATE, not the COMMIT. A reserve that times
        out has never been committed and is rolled back, so it takes no seat.
        """
        stmt = (
            update(Bus)
            .where(
                Bus.route_code == route,
                Bus.is_active.is_(True),
                Bus.available_seats > 0,
            )
            .values(available_seats=Bus.available_seats - 1, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            try:
                result = await asyncio.wait_for(
                    self._apply(session, stmt), timeout=self.reserve_timeout
                )
            except asyncio.TimeoutError:
                await session.rollback()
                logger.error(f"Seat reservation timed out for route {route}")
                raise SeatReservationTimeout()
            except DBAPIError as e:
                await session.rollback()
                if _is_statement_timeout(e):
                    logger.error(f"Seat reservation cancelled by the server for route {route}")
                    raise SeatReservationTimeout()
                raise
            await session.commit()
            return result.rowcount == 1

    async def _apply(self, session: AsyncSession, stmt):
        if session.get_bind().dialect.name == "postgresql":
            # Bound the UPDATE in the database as well
            timeout_ms = max(int(self.reserve_timeout * 1000), 1)
            await session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
        return await session.execute(stmt)

    async def _rejection(self, route: RouteCode) -> Exception:
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(Bus.is_active, Bus.available_seats).where(Bus.route_code == route)
                )
            ).one_or_none()
        if row is None:
            return RouteNotFound()
        if not row.is_active:
            return RouteInactive()
        logger.info(f"Route {route} is sold out")
        return SoldOut()

    # ── Release ──────────────────────────────────────────────

    async def release(self, route_code: str, session: Optional[AsyncSession] = None) -> bool:
        """
        Give one seat back, never exceeding total_seats.
        With a session the update joins the caller's transaction; otherwise it
        commits on its own. Returns False when the counter was already full
        or the route no longer exists.
        """
        route = RouteCode(route_code)
        stmt = (
            update(Bus)
            .where(Bus.route_code == route, Bus.available_seats < Bus.total_seats)
            .values(available_seats=Bus.available_seats + 1, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            result = await session.execute(stmt)
        else:
            async with self.session_factory() as own:
                result = await own.execute(stmt)
                await own.commit()

        released = result.rowcount == 1
        if released:
            logger.info(f"Seat released on route {route}")
        else:
            logger.warning(f"Seat release on route {route} had no effect (full or missing)")
        return released

    async def compensate(self, permit: Permit, attempted: dict) -> bool:
        """
        Undo a reserve whose booking insert failed. Retries transient
        datastore errors; if the seat still cannot be returned the failure is
        logged with the attempted booking so it can be reconciled by hand.
        """
        try:
            async for attempt in AsyncRetrying(**COMPENSATION_RETRY):
                with attempt:
                    await self.release(permit.route_code)
            return True
        except Exception:
            logger.exception(
                f"SEAT LEAK: could not release seat on route {permit.route_code} "
                f"(permit {permit.token}) after failed booking insert; "
                f"attempted booking={attempted}"
            )
            return False

    # ── Bulk / admin operations ──────────────────────────────

    async def reset_all(self, session: AsyncSession) -> int:
        """Restore every active bus to full capacity inside the caller's transaction."""
        result = await session.execute(
            update(Bus)
            .where(Bus.is_active.is_(True))
            .values(available_seats=Bus.total_seats, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Seat counters reset to capacity for {result.rowcount} active buses")
        return result.rowcount

    async def set_available(self, route_code: str, seats: int, session: AsyncSession) -> None:
        """Admin override of the live counter, clamped to [0, total_seats]."""
        route = RouteCode(route_code)
        requested = max(int(seats), 0)
        result = await session.execute(
            update(Bus)
            .where(Bus.route_code == route)
            .values(
                available_seats=case(
                    (Bus.total_seats < requested, Bus.total_seats),
                    else_=literal(requested),
                ),
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound(f"Bus with route code '{route}' not found")

    async def set_availability(self, seats_by_route: RouteMap, session: AsyncSession) -> None:
        for route, seats in seats_by_route.items():
            await self.set_available(route, seats, session)

    async def resize(self, route_code: str, total_seats: int, session: AsyncSession) -> None:
        """
        Change declared capacity. Live accounting is left alone except that
        available_seats is pulled down when it would exceed the new total.
        """
        route = RouteCode(route_code)
        await session.execute(
            update(Bus)
            .where(Bus.route_code == route)
            .values(
                total_seats=total_seats,
                available_seats=case(
                    (Bus.available_seats > total_seats, literal(total_seats)),
                    else_=Bus.available_seats,
                ),
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def reconcile(
        self, session: AsyncSession, settle_seconds: int = 120
    ) -> List[SeatCorrection]:
        """
        Recompute available_seats = total_seats - live bookings for each
        active bus and correct drift (e.g. a reserve whose insert never
        happened). Buses touched within ``settle_seconds`` are skipped so an
        in-flight reserve/insert pair is not mistaken for drift.
        """
        cutoff = _utcnow() - timedelta(seconds=settle_seconds)

        counts = dict(
            (
                await session.execute(
                    select(Booking.bus_route, func.count(Booking.id)).group_by(Booking.bus_route)
                )
            ).all()
        )
        buses = (
            await session.execute(
                select(Bus.id, Bus.route_code, Bus.total_seats, Bus.available_seats).where(
                    Bus.is_active.is_(True), Bus.updated_at <= cutoff
                )
            )
        ).all()

        corrections: List[SeatCorrection] = []
        for bus in buses:
            live = counts.get(bus.route_code, 0)
            expected = min(max(bus.total_seats - live, 0), bus.total_seats)
            if expected == bus.available_seats:
                continue

            # Only overwrite if nobody touched the counter since we read it
            result = await session.execute(
                update(Bus)
                .where(Bus.id == bus.id, Bus.available_seats == bus.available_seats)
                .values(available_seats=expected, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                corrections.append(
                    SeatCorrection(bus.route_code, bus.available_seats, expected)
                )
                logger.warning(
                    f"Seat drift corrected on route {bus.route_code}: "
                    f"{bus.available_seats} -> {expected} ({live} live bookings)"
                )
        return corrections


def get_seat_engine(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> SeatAccountingEngine:
    """FastAPI dependency."""
    return SeatAccountingEngine(session_factory)
