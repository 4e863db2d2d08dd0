"""
services/catalog/router.py
Admin management of route stops and their fares.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.catalog.service import FareCatalog
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser
from shared.schemas.schemas import (
    RouteStopCreateRequest,
    RouteStopResponse,
    RouteStopUpdateRequest,
)
from shared.types import parse_route_code
from shared.utils.audit import audit_log
from shared.utils.responses import envelope

router = APIRouter(prefix="/api/admin/route-stops", tags=["Admin: Route Stops"])


@router.get("")
async def list_stops(
    route_code: Optional[str] = Query(None),
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    route = parse_route_code(route_code) if route_code else None
    stops = await FareCatalog(db).list_stops(route)
    return envelope([RouteStopResponse.model_validate(s) for s in stops])


@router.post("", status_code=201)
async def create_stop(
    data: RouteStopCreateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stop = await FareCatalog(db).create_stop(data)
    await audit_log(
        db, current_admin, "CREATE_ROUTE_STOP", "RouteStop", str(stop.id),
        data.model_dump(), request,
    )
    return envelope(RouteStopResponse.model_validate(stop))


@router.put("/{stop_id}")
async def update_stop(
    stop_id: int,
    data: RouteStopUpdateRequest,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Fare changes apply to new bookings only."""
    stop = await FareCatalog(db).update_stop(stop_id, data)
    await audit_log(
        db, current_admin, "UPDATE_ROUTE_STOP", "RouteStop", str(stop_id),
        data.model_dump(exclude_unset=True), request,
    )
    return envelope(RouteStopResponse.model_validate(stop))


@router.delete("/{stop_id}")
async def delete_stop(
    stop_id: int,
    request: Request,
    current_admin: AdminUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await FareCatalog(db).delete_stop(stop_id)
    await audit_log(db, current_admin, "DELETE_ROUTE_STOP", "RouteStop", str(stop_id), {}, request)
    return envelope({"message": "Route stop deleted successfully"})
