"""Fixed-window request counters in Redis, keyed by route and client IP."""

from dataclasses import dataclass

from fastapi import Request
from redis.exceptions import RedisError

from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger

log = get_logger(__name__)

KEY_PREFIX = "ratelimit"

# Every key family the edge and the API use for throttling and blocking.
FLUSH_PATTERNS = (
    "ratelimit:*",
    "api:global:*",
    "api:strikes:*",
    "api:datacenter:*",
    "blocked:ip:*",
    "strikes:*",
    "requests:count:*",
    "bandwidth:*",
)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


def rate_limit_key(route: str, ip: str) -> str:
    return f"{KEY_PREFIX}:{route}:ip:{ip}"


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


async def rate_limit(redis, key: str, limit: int, window_seconds: int) -> RateLimitResult:
    """
    Count one request against key.
    The first increment in a window sets the expiry; the store's INCR is the only synchronization.
    With no store configured, or the store unreachable, every request is allowed.
    """
    if redis is None:
        return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_seconds=window_seconds)

    try:
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, window_seconds)
        ttl = await redis.ttl(key)
    except RedisError as e:
        log.warning("rate_limit_store_unavailable", key=key, error=str(e))
        return RateLimitResult(allowed=True, limit=limit, remaining=limit, reset_seconds=window_seconds)
    reset_seconds = ttl if isinstance(ttl, int) and ttl > 0 else window_seconds

    return RateLimitResult(
        allowed=count <= limit,
        limit=limit,
        remaining=max(0, limit - count),
        reset_seconds=reset_seconds,
    )


async def flush_rate_limits(redis) -> int:
    """Delete every rate-limit and block key; return how many were removed."""
    if redis is None:
        return 0
    total = 0
    try:
        for pattern in FLUSH_PATTERNS:
            keys = [k async for k in redis.scan_iter(match=pattern, count=500)]
            if keys:
                total += await redis.delete(*keys)
    except RedisError as e:
        log.error("rate_limit_flush_failed", deleted=total, error=str(e))
        raise ServiceUnavailableError("Rate limit store unavailable") from e
    log.info("rate_limits_flushed", deleted=total)
    return total
