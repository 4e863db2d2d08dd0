"""
services/settings/service.py
Admin settings singleton: the booking gate and the current round's
travel dates.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AdminSettings
from shared.types import BookingConfig

logger = logging.getLogger(__name__)


async def get_settings_row(db: AsyncSession, create: bool = False) -> AdminSettings | None:
    row = await db.get(AdminSettings, AdminSettings.SINGLETON_ID)
    if row is None and create:
        row = AdminSettings(id=AdminSettings.SINGLETON_ID, booking_enabled=False)
        db.add(row)
        await db.flush()
    return row


async def load_booking_config(db: AsyncSession) -> BookingConfig:
    """
    Snapshot the settings row for one request. A missing row or a failed
    read yields a closed config, so booking is never enabled by accident.
    """
    try:
        row = await get_settings_row(db)
    except SQLAlchemyError as e:
        logger.error(f"Could not read admin settings, booking closed: {str(e)}")
        await db.rollback()
        return BookingConfig.closed()

    if row is None:
        return BookingConfig.closed()
    return BookingConfig(
        booking_enabled=row.booking_enabled,
        go_date=row.go_date,
        return_date=row.return_date,
    )
