"""Shared FastAPI dependencies."""

from typing import Callable

from beanie import PydanticObjectId
from bson import ObjectId
from fastapi import Depends, Header, Request

from app.core.exceptions import ForbiddenError, RateLimitedError, UnauthorizedError
from app.core.logging import get_logger
from app.core.security import bearer_token, decode_access_token
from app.db.init import get_redis
from app.models.user import User
from app.services.rate_limit import get_client_ip, rate_limit, rate_limit_key
from app.services.users import is_bot_user_agent

log = get_logger(__name__)

# (limit, window seconds) per rate-limited route
RATE_LIMITS = {
    "auth:register": (10, 3600),
    "auth:login": (20, 900),
    "leads": (10, 3600),
    "consultation": (5, 3600),
    "service-proposals": (5, 3600),
    "gate": (30, 600),
}


async def get_current_user(authorization: str | None = Header(default=None)) -> User:
    """Dependency: Bearer JWT -> User."""
    payload = decode_access_token(bearer_token(authorization))
    if not ObjectId.is_valid(payload["id"]):
        raise UnauthorizedError("Invalid token")
    user = await User.get(PydanticObjectId(payload["id"]))
    if not user:
        raise UnauthorizedError("User not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: require current user to have role admin."""
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user


async def reject_bots(user_agent: str | None = Header(default=None)) -> None:
    """Dependency: crawler and empty user agents get 403 before any limiter counts them."""
    if is_bot_user_agent(user_agent):
        raise ForbiddenError("Forbidden")


def rate_limited(route: str, limit: int | None = None, window_seconds: int | None = None) -> Callable:
    """Dependency factory counting one request per call against route and client IP."""
    default_limit, default_window = RATE_LIMITS.get(route, (60, 60))
    limit = limit or default_limit
    window_seconds = window_seconds or default_window

    async def dependency(request: Request, redis=Depends(get_redis)) -> None:
        ip = get_client_ip(request)
        result = await rate_limit(redis, rate_limit_key(route, ip), limit, window_seconds)
        if not result.allowed:
            log.warning("rate_limited", route=route, client_ip=ip)
            raise RateLimitedError(retry_after=result.reset_seconds)

    return dependency
