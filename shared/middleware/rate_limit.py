"""
shared/middleware/rate_limit.py
Per-IP sliding-window rate limiting for public lookup endpoints.
"""

import logging

from fastapi import Depends, Request
from jose import JWTError

from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.exceptions import TooManyRequests
from shared.utils.security import verify_access_token

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """First x-forwarded-for hop when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def has_valid_admin_token(request: Request) -> bool:
    """
    True only when the Bearer header or the admin cookie carries a JWT that
    verifies. The deny-list is checked later by the auth dependency.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]
    else:
        token = request.cookies.get(settings.ADMIN_COOKIE_NAME)
    if not token:
        return False
    try:
        verify_access_token(token)
    except JWTError:
        return False
    return True


class SlidingRateLimit:
    """Dependency factory: ``Depends(SlidingRateLimit("search", 10, 60))``."""

    def __init__(self, scope: str, limit: int, window_seconds: int = 60):
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds

    async def __call__(self, request: Request, redis=Depends(get_redis)) -> None:
        ip = client_ip(request)
        try:
            allowed = await RedisCache(redis).check_sliding_rate_limit(
                f"{self.scope}:{ip}", self.limit, self.window_seconds
            )
        except Exception as e:
            # Redis down: fail open
            logger.error(f"Rate limit check for {self.scope} failed: {str(e)}")
            return

        if not allowed:
            logger.warning(f"Rate limit exceeded on {self.scope} for IP {ip}")
            raise TooManyRequests(retry_after=self.window_seconds)


search_rate_limit = SlidingRateLimit(
    "search",
    settings.SEARCH_RATE_LIMIT_PER_MINUTE,
    settings.SEARCH_RATE_LIMIT_WINDOW_SECONDS,
)
