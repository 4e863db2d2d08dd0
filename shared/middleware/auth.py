"""
shared/middleware/auth.py
FastAPI dependency functions for admin authentication.
The JWT may arrive as a Bearer header or as the admin_token cookie.
"""

from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.exceptions import Forbidden, Unauthorized
from shared.models.models import AdminRole, AdminUser
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict, raw: str):
        self.admin_id: int = int(payload["sub"])
        self.username: str = payload.get("username", "")
        self.role: str = payload.get("role", AdminRole.ADMIN.value)
        self.jti: str = payload["jti"]
        self.payload = payload
        self.raw = raw


def _extract_token(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials:
        return credentials.credentials
    return request.cookies.get(settings.ADMIN_COOKIE_NAME)


async def get_token_data(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header or session cookie.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    token = _extract_token(request, credentials)
    if not token:
        raise Unauthorized("Authentication required")

    try:
        payload = verify_access_token(token)
    except JWTError:
        raise Unauthorized("Invalid or expired session")

    # Check if token has been revoked (logged out)
    jti = payload.get("jti")
    if not jti or await RedisCache(redis).is_token_revoked(jti):
        raise Unauthorized("Invalid or expired session")

    return TokenData(payload, token)


async def get_current_admin(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> AdminUser:
    """Load the AdminUser row named by the JWT sub claim."""
    result = await db.execute(select(AdminUser).where(AdminUser.id == token_data.admin_id))
    admin = result.scalar_one_or_none()

    if not admin or not admin.is_active:
        raise Unauthorized("Invalid or expired session")
    return admin


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: AdminRole):
        self.roles = {r.value for r in roles}

    async def __call__(
        self,
        current_admin: AdminUser = Depends(get_current_admin),
    ) -> AdminUser:
        if current_admin.role not in self.roles:
            raise Forbidden("Insufficient permissions")
        return current_admin


# Convenience role dependencies
require_admin = RoleRequired(AdminRole.ADMIN, AdminRole.SUPER_ADMIN)
