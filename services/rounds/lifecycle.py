"""
services/rounds/lifecycle.py
Booking round lifecycle: archive the current round's totals, clear the
ledger and restore every active bus to full capacity, all in one
transaction.
"""

import logging
from typing import List

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.seats.engine import SeatAccountingEngine
from services.settings.service import get_settings_row
from shared.models.models import Booking, BookingRound, Bus

logger = logging.getLogger(__name__)

ROUNDS_CACHE_KEY = "reports:rounds"


class RoundLifecycle:
    def __init__(self, db: AsyncSession, seats: SeatAccountingEngine):
        self.db = db
        self.seats = seats

    async def reset_round(self) -> BookingRound:
        """
        lock buses → aggregate → archive → clear bookings → reset seats → commit.
        Any failure rolls the whole reset back; the archive row and the
        cleared ledger are never observed apart.
        """
        try:
            # Hold reserves/releases off until the reset commits
            await self.db.execute(
                select(Bus.id).where(Bus.is_active.is_(True)).with_for_update()
            )

            totals = (
                await self.db.execute(
                    select(
                        func.count(Booking.id),
                        func.coalesce(
                            func.sum(
                                case((Booking.payment_status.is_(True), Booking.fare), else_=0)
                            ),
                            0,
                        ),
                    )
                )
            ).one()
            total_bookings, total_revenue = int(totals[0]), int(totals[1])

            settings_row = await get_settings_row(self.db)
            booking_round = BookingRound(
                go_date=settings_row.go_date if settings_row else None,
                return_date=settings_row.return_date if settings_row else None,
                total_bookings=total_bookings,
                total_revenue=total_revenue,
            )
            self.db.add(booking_round)
            await self.db.flush()

            await self.db.execute(delete(Booking).execution_options(synchronize_session=False))
            await self.seats.reset_all(self.db)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Booking round reset failed, all changes rolled back")
            raise

        logger.info(
            f"Booking round {booking_round.id} archived: "
            f"{total_bookings} bookings, revenue {total_revenue}"
        )
        return booking_round

    async def list_rounds(self) -> List[BookingRound]:
        result = await self.db.execute(
            select(BookingRound).order_by(BookingRound.reset_date.desc(), BookingRound.id.desc())
        )
        return list(result.scalars().all())
