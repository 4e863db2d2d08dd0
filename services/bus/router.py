"""
services/bus/router.py
Bus inventory endpoints: public route list and live seat counters,
admin create/update/delete.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.bus.service import BusInventory
from services.catalog.service import FareCatalog
from services.seats.engine import SeatAccountingEngine, get_seat_engine
from shared.exceptions import RouteNotFound
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser, Bus
from shared.schemas.schemas import (
    BusCreateRequest,
    BusResponse,
    BusUpdateRequest,
    RouteStopResponse,
)
from shared.types import parse_route_code
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

router = APIRouter(prefix="/api/buses", tags=["Buses"])
admin_router = APIRouter(prefix="/api/admin/buses", tags=["Admin: Buses"])


def get_bus_inventory(
    db: AsyncSession = Depends(get_db),
    seats: SeatAccountingEngine = Depends(get_seat_engine),
) -> BusInventory:
    return BusInventory(db, seats)


# ── Public ────────────────────────────────────────────────────

@router.get("")
async def list_buses(inventory: BusInventory = Depends(get_bus_inventory)):
    """Active buses for the booking form."""
    buses = await inventory.list_active()
    return envelope([BusResponse.model_validate(b) for b in buses])


@router.get("/availability")
async def seat_availability(inventory: BusInventory = Depends(get_bus_inventory)):
    """Live seat counters keyed by route code."""
    return envelope(await inventory.availability())


@router.get("/{route_code}/stops")
async def list_route_stops(route_code: str, db: AsyncSession = Depends(get_db)):
    """Destinations and fares for one active route, in stop order."""
    route = parse_route_code(route_code)
    active = await db.scalar(
        select(Bus.id).where(Bus.route_code == route, Bus.is_active.is_(True))
    )
    if not active:
        raise RouteNotFound()

    stops = await FareCatalog(db).list_stops(route, active_only=True)
    return envelope([RouteStopResponse.model_validate(s) for s in stops])


# ── Admin ─────────────────────────────────────────────────────

@admin_router.get("")
async def admin_list_buses(
    current_admin: AdminUser = Depends(require_admin),
    inventory: BusInventory = Depends(get_bus_inventory),
):
    buses = await inventory.list_all()
    return envelope([BusResponse.model_validate(b) for b in buses])


@admin_router.post("", status_code=201)
async def create_bus(
    data: BusCreateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    inventory: BusInventory = Depends(get_bus_inventory),
):
    bus = await inventory.create_bus(data)
    await audit_log(
        inventory.db, current_admin, "CREATE_BUS", "Bus", bus.route_code,
        data.model_dump(), request,
    )
    return envelope(BusResponse.model_validate(bus))


@admin_router.put("/{bus_id}")
async def update_bus(
    bus_id: int,
    data: BusUpdateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    inventory: BusInventory = Depends(get_bus_inventory),
):
    """
    Name, active flag and capacity. A supplied available_seats is clamped
    to [0, total_seats]; a capacity change does not recount bookings.
    """
    bus = await inventory.update_bus(bus_id, data)
    await audit_log(
        inventory.db, current_admin, "UPDATE_BUS", "Bus", bus.route_code,
        data.model_dump(exclude_unset=True), request,
    )
    return envelope(BusResponse.model_validate(bus))


@admin_router.delete("/{bus_id}")
async def delete_bus(
    bus_id: int,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    inventory: BusInventory = Depends(get_bus_inventory),
):
    bus = await inventory.delete_bus(bus_id)
    await audit_log(inventory.db, current_admin, "DELETE_BUS", "Bus", bus.route_code, {}, request)
    return envelope({"message": "Bus deleted successfully"})
