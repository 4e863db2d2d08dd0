"""
tasks/seat_tasks.py
Celery tasks for seat counter maintenance.

The reconciliation pass is idempotent: running it twice in a row changes
nothing the second time.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _reconcile(settle_seconds: int) -> list:
    from services.seats.engine import SeatAccountingEngine

    # Fresh engine per run: the worker's event loop is created by asyncio.run
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            corrections = await SeatAccountingEngine(session_factory).reconcile(
                session, settle_seconds=settle_seconds
            )
            await session.commit()
        return [
            {"route_code": c.route_code, "before": c.before, "after": c.after}
            for c in corrections
        ]
    finally:
        await engine.dispose()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def reconcile_seat_counters(self, settle_seconds: int = 120):
    """
    Recompute available_seats from live bookings for every active bus.
    Buses touched within ``settle_seconds`` are skipped this run.
    """
    try:
        corrections = asyncio.run(_reconcile(settle_seconds))
    except Exception as exc:
        logger.error(f"Seat reconciliation failed: {str(exc)}")
        raise self.retry(exc=exc)

    if corrections:
        logger.warning(f"Seat reconciliation corrected {len(corrections)} routes: {corrections}")
    else:
        logger.info("Seat reconciliation: all counters consistent")
    return {"corrected": len(corrections), "corrections": corrections}
