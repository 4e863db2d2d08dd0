"""
services/analytics/aggregator.py
Read-only report derivations over the ledger, inventory and catalog.
Everything is computed fresh per call; nothing here writes.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import NotFound
from shared.models.models import Booking, Bus
from shared.schemas.schemas import (
    BookingStats,
    DetailedStats,
    RouteDemand,
    RouteRevenue,
    StopBookings,
)
from shared.types import parse_route_code

HIGH_DEMAND_PERCENT = 15
MEDIUM_DEMAND_PERCENT = 5


def demand_level(percentage: int) -> str:
    if percentage >= HIGH_DEMAND_PERCENT:
        return "High"
    if percentage >= MEDIUM_DEMAND_PERCENT:
        return "Medium"
    return "Low"


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


class AnalyticsAggregator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def revenue_by_route(self) -> dict:
        """Revenue from paid bookings, highest-earning route first."""
        result = await self.db.execute(
            select(
                Booking.bus_route,
                func.max(Booking.bus_name).label("bus_name"),
                func.coalesce(func.sum(Booking.fare), 0).label("total_revenue"),
                func.count(Booking.id).label("booking_count"),
            )
            .where(Booking.payment_status.is_(True))
            .group_by(Booking.bus_route)
        )
        routes = [
            RouteRevenue(
                bus_route=row.bus_route,
                bus_name=row.bus_name,
                total_revenue=int(row.total_revenue),
                booking_count=row.booking_count,
                revenue_per_booking=(
                    round(int(row.total_revenue) / row.booking_count, 2)
                    if row.booking_count else 0.0
                ),
            )
            for row in result.all()
        ]
        routes.sort(key=lambda r: r.total_revenue, reverse=True)
        return {"totalRevenue": sum(r.total_revenue for r in routes), "routes": routes}

    async def _booking_counts_by_route(self) -> Counter:
        result = await self.db.execute(
            select(Booking.bus_route, func.count(Booking.id)).group_by(Booking.bus_route)
        )
        return Counter(dict(result.all()))

    async def demand_by_route(self) -> dict:
        """
        Share of all live bookings per active bus. Percentages are rounded
        and bucketed into Low (<5), Medium (5-14) and High (>=15).
        """
        counts = await self._booking_counts_by_route()
        total = sum(counts.values())

        buses = (
            await self.db.execute(
                select(Bus.route_code, Bus.name, Bus.is_active)
                .where(Bus.is_active.is_(True))
                .order_by(Bus.name)
            )
        ).all()

        routes: List[RouteDemand] = []
        for bus in buses:
            count = counts.get(bus.route_code, 0)
            percentage = _percent(count, total)
            routes.append(
                RouteDemand(
                    route_code=bus.route_code,
                    bus_name=bus.name,
                    total_bookings=count,
                    booking_percentage=percentage,
                    demand_level=demand_level(percentage),
                    is_active=bus.is_active,
                )
            )
        routes.sort(key=lambda r: r.total_bookings, reverse=True)
        return {"routes": routes, "totalBookings": total}

    async def stop_bookings(self, route_code: str) -> dict:
        route = parse_route_code(route_code)
        bus_name = await self.db.scalar(
            select(Bus.name).where(Bus.route_code == route, Bus.is_active.is_(True))
        )
        if bus_name is None:
            raise NotFound("Invalid or inactive bus route")

        result = await self.db.execute(
            select(Booking.destination, func.count(Booking.id))
            .where(Booking.bus_route == route)
            .group_by(Booking.destination)
        )
        counts = dict(result.all())
        route_total = sum(counts.values())

        stops = sorted(
            (
                StopBookings(
                    stop_name=name,
                    booking_count=count,
                    percentage_of_route=_percent(count, route_total),
                )
                for name, count in counts.items()
            ),
            key=lambda s: s.booking_count,
            reverse=True,
        )
        return {
            "busRoute": route,
            "busName": bus_name,
            "totalRouteBookings": route_total,
            "stops": stops,
        }

    async def detailed_stats(self) -> DetailedStats:
        """Dashboard counters. Capacity is the sum of real total_seats."""
        buses = (
            await self.db.execute(
                select(
                    func.count(Bus.id),
                    func.coalesce(func.sum(Bus.available_seats), 0),
                    func.coalesce(func.sum(Bus.total_seats), 0),
                ).where(Bus.is_active.is_(True))
            )
        ).one()
        total_buses, available, capacity = buses[0], int(buses[1]), int(buses[2])

        total_bookings = await self.db.scalar(select(func.count(Booking.id))) or 0
        paid = await self.db.scalar(
            select(func.count(Booking.id)).where(Booking.payment_status.is_(True))
        ) or 0

        occupancy = (capacity - available) / capacity * 100 if capacity > 0 else 0.0
        return DetailedStats(
            total_buses=total_buses,
            total_bookings=total_bookings,
            current_bookings=paid,
            paid_bookings=paid,
            unpaid_bookings=total_bookings - paid,
            available_seats=available,
            total_capacity=capacity,
            occupancy_rate=f"{occupancy:.1f}",
        )

    async def booking_stats(self) -> BookingStats:
        """Totals, last-7-days count, per-route and per-day (30 days) counts."""
        now = datetime.now(timezone.utc)

        total = await self.db.scalar(select(func.count(Booking.id))) or 0
        paid = await self.db.scalar(
            select(func.count(Booking.id)).where(Booking.payment_status.is_(True))
        ) or 0
        recent = await self.db.scalar(
            select(func.count(Booking.id)).where(Booking.created_at >= now - timedelta(days=7))
        ) or 0
        revenue = await self.db.scalar(
            select(func.coalesce(func.sum(Booking.fare), 0)).where(
                Booking.payment_status.is_(True)
            )
        ) or 0

        by_route = await self._booking_counts_by_route()

        created = (
            await self.db.execute(
                select(Booking.created_at)
                .where(Booking.created_at >= now - timedelta(days=30))
                .order_by(Booking.created_at)
            )
        ).scalars().all()
        daily = Counter(ts.date().isoformat() for ts in created)

        return BookingStats(
            total_bookings=total,
            paid_bookings=paid,
            pending_bookings=total - paid,
            recent_bookings=recent,
            total_revenue=int(revenue),
            route_stats=[{"route": r, "count": c} for r, c in sorted(by_route.items())],
            daily_stats=[{"date": d, "count": c} for d, c in daily.items()],
        )
