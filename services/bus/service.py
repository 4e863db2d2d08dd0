"""
services/bus/service.py
Bus inventory: identity, active flag and declared capacity. Live seat
counters are changed only through the seat accounting engine.
"""

import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.seats.engine import SeatAccountingEngine
from shared.exceptions import Conflict, NotFound
from shared.models.models import Bus, RouteStop
from shared.schemas.schemas import BusCreateRequest, BusUpdateRequest
from shared.types import RouteCode, RouteMap

logger = logging.getLogger(__name__)


class BusInventory:
    def __init__(self, db: AsyncSession, seats: SeatAccountingEngine):
        self.db = db
        self.seats = seats

    async def get_bus(self, bus_id: int) -> Bus:
        bus = await self.db.get(Bus, bus_id)
        if not bus:
            raise NotFound("Bus not found")
        return bus

    async def create_bus(self, data: BusCreateRequest) -> Bus:
        route = RouteCode(data.route_code)
        existing = await self.db.scalar(select(Bus.id).where(Bus.route_code == route))
        if existing:
            raise Conflict("Bus with this route code already exists")

        bus = Bus(
            name=data.name,
            route_code=route,
            total_seats=data.total_seats,
            available_seats=data.total_seats,
            is_active=data.is_active,
        )
        self.db.add(bus)
        try:
            await self.db.flush()
        except IntegrityError:
            raise Conflict("Bus with this route code already exists")

        logger.info(f"Bus created: {bus.name} ({route}) with {bus.total_seats} seats")
        return bus

    async def update_bus(self, bus_id: int, data: BusUpdateRequest) -> Bus:
        """
        total_seats changes do not recount live bookings. An explicit
        available_seats is clamped to [0, total_seats].
        """
        bus = await self.get_bus(bus_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes and changes["name"] is not None:
            bus.name = changes["name"]
        if "is_active" in changes and changes["is_active"] is not None:
            bus.is_active = changes["is_active"]
        await self.db.flush()

        if changes.get("total_seats") is not None:
            await self.seats.resize(bus.route_code, changes["total_seats"], self.db)
        if changes.get("available_seats") is not None:
            await self.seats.set_available(bus.route_code, changes["available_seats"], self.db)

        await self.db.refresh(bus)
        return bus

    async def delete_bus(self, bus_id: int) -> Bus:
        """Deleting a bus removes its stops and its seat counter with it."""
        bus = await self.get_bus(bus_id)
        await self.db.execute(delete(RouteStop).where(RouteStop.route_code == bus.route_code))
        await self.db.delete(bus)
        await self.db.flush()
        logger.info(f"Bus deleted: {bus.route_code}")
        return bus

    async def list_all(self) -> List[Bus]:
        result = await self.db.execute(select(Bus).order_by(Bus.created_at, Bus.id))
        return list(result.scalars().all())

    async def list_active(self) -> List[Bus]:
        result = await self.db.execute(
            select(Bus).where(Bus.is_active.is_(True)).order_by(Bus.created_at, Bus.id)
        )
        return list(result.scalars().all())

    async def availability(self, active_only: bool = True) -> RouteMap:
        query = select(Bus.route_code, Bus.available_seats)
        if active_only:
            query = query.where(Bus.is_active.is_(True))
        result = await self.db.execute(query)
        return {RouteCode(route): seats for route, seats in result.all()}
