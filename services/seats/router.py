"""
services/seats/router.py
Seat counter maintenance for admins: restore capacity outside a round
reset, and recount counters from the ledger.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.seats.engine import SeatAccountingEngine, get_seat_engine
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin: Seats"])


@router.post("/reset-seats")
async def reset_seats(
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
):
    """Set every active bus back to full capacity. Bookings are kept."""
    count = await seats.reset_all(db)
    await audit_log(db, current_admin, "RESET_SEATS", "Bus", None, {"buses": count}, request)
    return envelope({"message": f"Seats reset for {count} active buses", "busesReset": count})


@router.post("/seats/reconcile")
async def reconcile_seats(
    request: Request,
    settle_seconds: int = Query(120, ge=0, le=3600),
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
):
    """
    Recompute available_seats = total_seats - live bookings for each
    active bus and fix any drift. Buses touched in the last
    ``settle_seconds`` are left for the next pass.
    """
    corrections = await seats.reconcile(db, settle_seconds=settle_seconds)
    payload = [
        {"routeCode": c.route_code, "before": c.before, "after": c.after} for c in corrections
    ]
    if corrections:
        await audit_log(
            db, current_admin, "RECONCILE_SEATS", "Bus", None, {"corrections": payload}, request
        )
    return envelope({"corrections": payload, "count": len(payload)})
