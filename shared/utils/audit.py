"""
shared/utils/audit.py
Admin audit trail. Every admin mutation appends one AdminAuditLog row in
the same transaction as the change it records.
"""

from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AdminAuditLog, AdminUser


async def audit_log(
    db: AsyncSession,
    admin: AdminUser,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Append an immutable record to AdminAuditLog."""
    log = AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    )
    db.add(log)
