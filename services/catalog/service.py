"""
services/catalog/service.py
Fare catalog: route → ordered stops → fare. Read by the booking flow,
managed by admins.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import Conflict, NotFound, ValidationError
from shared.models.models import Bus, RouteStop
from shared.schemas.schemas import RouteStopCreateRequest, RouteStopUpdateRequest
from shared.types import RouteCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FareQuote:
    route_code: str
    stop_name: str
    fare: int
    bus_name: str


class FareCatalog:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_fare(self, route_code: str, stop_name: str) -> FareQuote:
        """
        Fare and bus name for a destination. Raises NotFound when the bus or
        the stop is missing or inactive; there is no default fare.
        """
        route = RouteCode(route_code)
        result = await self.db.execute(
            select(RouteStop.fare, RouteStop.stop_name, Bus.name)
            .join(Bus, Bus.route_code == RouteStop.route_code)
            .where(
                RouteStop.route_code == route,
                RouteStop.stop_name == stop_name,
                RouteStop.is_active.is_(True),
                Bus.is_active.is_(True),
            )
        )
        row = result.one_or_none()
        if row is None:
            raise NotFound(f"No active fare for '{stop_name}' on route {route}")
        return FareQuote(route_code=route, stop_name=row.stop_name, fare=row.fare, bus_name=row.name)

    async def list_stops(
        self, route_code: Optional[str] = None, active_only: bool = False
    ) -> List[RouteStop]:
        query = select(RouteStop).order_by(RouteStop.route_code, RouteStop.stop_order)
        if route_code:
            query = query.where(RouteStop.route_code == RouteCode(route_code))
        if active_only:
            query = query.join(Bus, Bus.route_code == RouteStop.route_code).where(
                RouteStop.is_active.is_(True), Bus.is_active.is_(True)
            )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ── Admin CRUD ───────────────────────────────────────────

    async def get_stop(self, stop_id: int) -> RouteStop:
        stop = await self.db.get(RouteStop, stop_id)
        if not stop:
            raise NotFound("Route stop not found")
        return stop

    async def _ensure_unique(
        self,
        route_code: str,
        stop_name: Optional[str],
        stop_order: Optional[int],
        exclude_id: Optional[int] = None,
    ) -> None:
        if stop_name is not None:
            query = select(RouteStop.id).where(
                RouteStop.route_code == route_code, RouteStop.stop_name == stop_name
            )
            if exclude_id is not None:
                query = query.where(RouteStop.id != exclude_id)
            if await self.db.scalar(query):
                raise Conflict("Stop already exists for this route")

        if stop_order is not None:
            query = select(RouteStop.id).where(
                RouteStop.route_code == route_code, RouteStop.stop_order == stop_order
            )
            if exclude_id is not None:
                query = query.where(RouteStop.id != exclude_id)
            if await self.db.scalar(query):
                raise Conflict("Stop order already exists for this route")

    async def create_stop(self, data: RouteStopCreateRequest) -> RouteStop:
        route = RouteCode(data.route_code)
        if not await self.db.scalar(select(Bus.id).where(Bus.route_code == route)):
            raise ValidationError("Invalid route code")

        await self._ensure_unique(route, data.stop_name, data.stop_order)

        stop = RouteStop(
            route_code=route,
            stop_name=data.stop_name,
            fare=data.fare,
            stop_order=data.stop_order,
            is_active=data.is_active,
        )
        self.db.add(stop)
        try:
            await self.db.flush()
        except IntegrityError:
            # Concurrent insert won the unique constraint race
            raise Conflict("Stop name or order already exists for this route")
        logger.info(f"Route stop created: {route}/{stop.stop_name} fare={stop.fare}")
        return stop

    async def update_stop(self, stop_id: int, data: RouteStopUpdateRequest) -> RouteStop:
        """Fare edits affect future bookings only; booked fares are snapshots."""
        stop = await self.get_stop(stop_id)
        changes = data.model_dump(exclude_unset=True)

        await self._ensure_unique(
            stop.route_code,
            changes.get("stop_name") if changes.get("stop_name") != stop.stop_name else None,
            changes.get("stop_order") if changes.get("stop_order") != stop.stop_order else None,
            exclude_id=stop.id,
        )

        for field, value in changes.items():
            setattr(stop, field, value)
        try:
            await self.db.flush()
        except IntegrityError:
            raise Conflict("Stop name or order already exists for this route")
        return stop

    async def delete_stop(self, stop_id: int) -> None:
        stop = await self.get_stop(stop_id)
        await self.db.delete(stop)
        await self.db.flush()
