"""
Redis fixed-window rate limiting for the booking and payment endpoints.

Fails open: capacity and payment correctness are enforced by the database, so a
Redis outage must never block a patient from booking or a webhook from landing.
"""

import logging
import time
from typing import Optional

import redis
from fastapi import HTTPException, Request

from .config import RATE_LIMIT_ENABLED, REDIS_URL

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Get or create the Redis client (REDIS_URL, defaulting to localhost)"""
    global redis_client

    if redis_client is None:
        url = REDIS_URL or "redis://localhost:6379/0"
        masked_url = f"{url.split('@')[0].split(':')[0]}:****@{url.split('@')[1]}" if "@" in url else url
        logger.info(f"📡 Connecting to Redis for rate limiting: {masked_url}")
        redis_client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30,
        )
    return redis_client


def check_rate_limit(key: str, limit: int, window_seconds: int, client: redis.Redis) -> tuple[bool, int, int]:
    """INCR the window counter; returns (is_allowed, current_count, ttl_seconds)"""
    window = int(time.time()) // window_seconds
    window_key = f"{key}:{window}"

    pipe = client.pipeline()
    pipe.incr(window_key)
    pipe.expire(window_key, window_seconds)
    count, _ = pipe.execute()

    ttl = window_seconds - int(time.time()) % window_seconds
    return count <= limit, count, ttl


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_dependency(
    request: Request,
    limit: int,
    window_seconds: int,
    key_prefix: str = "rate_limit",
    use_ip: bool = True,
):
    """FastAPI dependency body: raise 429 when the caller is over the limit"""
    if not RATE_LIMIT_ENABLED:
        return

    key = f"{key_prefix}:{client_ip(request)}" if use_ip else f"{key_prefix}:global"

    try:
        is_allowed, current_count, ttl = check_rate_limit(key, limit, window_seconds, get_redis_client())
    except redis.RedisError as e:
        logger.warning(f"⚠️ Rate limiting unavailable, allowing request (fail-open): {e}")
        return

    if not is_allowed:
        logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after": ttl,
                "limit": limit,
                "window_seconds": window_seconds,
            },
            headers={"Retry-After": str(ttl)},
        )


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit", use_ip: bool = True):
    """
    Create a rate limiter dependency with specific parameters

    Example usage:
        rate_limit_reserve = create_rate_limiter(limit=20, window_seconds=60, key_prefix="reserve")

        @router.post("/appointments")
        async def reserve(..., _: None = Depends(rate_limit_reserve)):
            ...
    """

    async def rate_limiter(request: Request):
        return await rate_limit_dependency(request, limit, window_seconds, key_prefix, use_ip)

    return rate_limiter


rate_limit_payment_webhook = create_rate_limiter(
    limit=100, window_seconds=60, key_prefix="payment_webhook", use_ip=False
)
rate_limit_reservation = create_rate_limiter(limit=20, window_seconds=60, key_prefix="reserve")
rate_limit_checkout = create_rate_limiter(limit=20, window_seconds=60, key_prefix="checkout")
