"""
services/analytics/router.py
Admin reports: revenue, route demand, stop popularity and dashboard
counters. Responses may be cached by the client for five minutes.
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.analytics.aggregator import AnalyticsAggregator
from shared.middleware.auth import require_admin
from shared.models.models import AdminUser
from shared.utils.responses import envelope

router = APIRouter(prefix="/api/admin", tags=["Admin: Reports"])


def get_aggregator(
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> AnalyticsAggregator:
    response.headers["Cache-Control"] = f"max-age={settings.REPORT_CACHE_MAX_AGE}"
    return AnalyticsAggregator(db)


@router.get("/reports/revenue")
async def revenue_report(
    current_admin: AdminUser = Depends(require_admin),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return envelope(await aggregator.revenue_by_route())


@router.get("/reports/routes")
async def route_demand_report(
    current_admin: AdminUser = Depends(require_admin),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return envelope(await aggregator.demand_by_route())


@router.get("/reports/stops")
async def stop_report(
    bus_route: str = Query(..., min_length=1),
    current_admin: AdminUser = Depends(require_admin),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return envelope(await aggregator.stop_bookings(bus_route))


@router.get("/analytics/detailed-stats")
async def detailed_stats(
    current_admin: AdminUser = Depends(require_admin),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
):
    return envelope(await aggregator.detailed_stats())
