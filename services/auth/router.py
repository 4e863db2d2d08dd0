"""
services/auth/router.py
Admin session endpoints.
Implements: Login → JWT issue (Bearer + httpOnly cookie) → Validate → Logout
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.exceptions import Unauthorized
from shared.middleware.auth import TokenData, get_current_admin, get_token_data
from shared.models.models import AdminUser
from shared.schemas.schemas import AdminLoginRequest, AdminUserResponse
from shared.utils.audit import audit_log
from shared.utils.responses import envelope
from shared.utils.security import (
    create_access_token,
    get_token_remaining_ttl,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin: Auth"])


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.ADMIN_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


@router.post("/login")
async def login(
    data: AdminLoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Username + password login.
    Returns the JWT in the body and also sets it as an httpOnly cookie.
    """
    result = await db.execute(select(AdminUser).where(AdminUser.username == data.username))
    admin = result.scalar_one_or_none()

    if not admin or not admin.is_active or not verify_password(data.password, admin.password_hash):
        logger.warning(f"Failed admin login for '{data.username}'")
        raise Unauthorized("Invalid credentials")

    token, _ = create_access_token(admin.id, admin.username, admin.role)
    admin.last_login = datetime.now(timezone.utc)
    await audit_log(db, admin, "LOGIN", "AdminUser", str(admin.id), {}, request)

    _set_auth_cookie(response, token)
    logger.info(f"Admin {admin.username} logged in")
    return envelope({"user": AdminUserResponse.model_validate(admin), "token": token})


@router.post("/logout")
async def logout(
    response: Response,
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the JWT to the Redis deny-list until it expires and clear the cookie."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)

    response.delete_cookie(key=settings.ADMIN_COOKIE_NAME, path="/")
    logger.info(f"Admin {token_data.username} logged out")
    return envelope({"message": "Logged out successfully"})


@router.get("/validate")
async def validate_session(current_admin: AdminUser = Depends(get_current_admin)):
    return envelope({"user": AdminUserResponse.model_validate(current_admin), "valid": True})
