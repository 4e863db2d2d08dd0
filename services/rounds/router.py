"""
services/rounds/router.py
End-of-round reset and the archive of past rounds.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.rounds.lifecycle import ROUNDS_CACHE_KEY, RoundLifecycle
from services.seats.engine import SeatAccountingEngine, get_seat_engine
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser
from shared.schemas.schemas import BookingRoundResponse
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin: Booking Rounds"])


def get_round_lifecycle(
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
) -> RoundLifecycle:
    return RoundLifecycle(db, seats)


@router.post("/analytics/reset")
async def reset_booking_round(
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: RoundLifecycle = Depends(get_round_lifecycle),
    redis=Depends(get_redis),
):
    """
    Close the current booking round:
    - archives booking count and paid revenue with the round's travel dates
    - deletes all bookings
    - restores every active bus to full capacity
    """
    booking_round = await lifecycle.reset_round()

    await audit_log(
        lifecycle.db, current_admin, "RESET_BOOKING_ROUND", "BookingRound", str(booking_round.id),
        {
            "total_bookings": booking_round.total_bookings,
            "total_revenue": booking_round.total_revenue,
        },
        request,
    )

    try:
        await RedisCache(redis).delete(ROUNDS_CACHE_KEY)
    except Exception as e:
        logger.error(f"Could not invalidate rounds cache: {str(e)}")

    return envelope(
        {
            "message": "Booking round reset successfully",
            "round": BookingRoundResponse.model_validate(booking_round),
        }
    )


@router.get("/reports/rounds")
async def list_booking_rounds(
    response: Response,
    current_admin: AdminUser = Depends(require_admin),
    lifecycle: RoundLifecycle = Depends(get_round_lifecycle),
    redis=Depends(get_redis),
):
    """Past rounds, newest first. Cached in Redis until the next reset."""
    response.headers["Cache-Control"] = f"max-age={settings.REPORT_CACHE_MAX_AGE}"
    cache = RedisCache(redis)

    try:
        cached = await cache.get(ROUNDS_CACHE_KEY)
    except Exception as e:
        logger.error(f"Rounds cache read failed: {str(e)}")
        cached = None
    if cached is not None:
        return envelope(cached)

    rounds = await lifecycle.list_rounds()
    data = {
        "rounds": jsonable_encoder([BookingRoundResponse.model_validate(r) for r in rounds]),
        "totalRounds": len(rounds),
    }
    try:
        await cache.set(ROUNDS_CACHE_KEY, data)
    except Exception as e:
        logger.error(f"Rounds cache write failed: {str(e)}")
    return envelope(data)
