"""
services/settings/router.py
Booking gate and travel dates: public read endpoints and the admin
settings form, including per-route seat overrides.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.bus.service import BusInventory
from services.seats.engine import SeatAccountingEngine, get_seat_engine
from services.settings.service import get_settings_row, load_booking_config
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser
from shared.schemas.schemas import SettingsResponse, SettingsUpdateRequest
from shared.types import BookingConfig
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Settings"])
admin_router = APIRouter(prefix="/api/admin/settings", tags=["Admin: Settings"])


async def get_booking_config(db: AsyncSession = Depends(get_db)) -> BookingConfig:
    """FastAPI dependency: settings snapshot taken once per request."""
    return await load_booking_config(db)


# ── Public ────────────────────────────────────────────────────

@router.get("/booking-status")
async def booking_status(config: BookingConfig = Depends(get_booking_config)):
    return {"enabled": config.booking_enabled}


@router.get("/travel-dates")
async def travel_dates(config: BookingConfig = Depends(get_booking_config)):
    return {"goDate": config.go_date, "returnDate": config.return_date}


# ── Admin ─────────────────────────────────────────────────────

async def _settings_response(db: AsyncSession, seats: SeatAccountingEngine) -> SettingsResponse:
    row = await get_settings_row(db, create=True)
    availability = await BusInventory(db, seats).availability(active_only=False)
    return SettingsResponse(
        booking_enabled=row.booking_enabled,
        go_date=row.go_date,
        return_date=row.return_date,
        bus_availability=availability,
    )


@admin_router.get("")
async def get_admin_settings(
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
):
    return envelope(await _settings_response(db, seats))


@admin_router.patch("")
async def update_admin_settings(
    data: SettingsUpdateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
):
    """
    Update the booking flag and travel dates. busAvailability overrides
    live seat counters per route; each value is clamped to capacity and an
    unknown route rejects the whole update.
    """
    row = await get_settings_row(db, create=True)
    row.booking_enabled = data.booking_enabled
    row.go_date = data.go_date
    row.return_date = data.return_date
    await db.flush()

    if data.bus_availability:
        await seats.set_availability(data.bus_availability, db)

    await audit_log(
        db, current_admin, "UPDATE_SETTINGS", "AdminSettings", str(row.id),
        data.model_dump(mode="json"), request,
    )
    logger.info(
        f"Settings updated by {current_admin.username}: booking_enabled={row.booking_enabled}"
    )
    return envelope(await _settings_response(db, seats))
