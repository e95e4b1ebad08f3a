"""Rate limiting middleware using Redis.

Sliding window per caller: one sorted set of request timestamps per
(caller, rule). Authenticated traffic is keyed by staff user id, since a
restaurant's tills usually share one public IP; anonymous traffic is keyed
by client IP.

The limiter fails open: if Redis is unreachable requests are let through
and the failure is logged.
"""

import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from stampcard.auth.jwt import decode_token
from stampcard.middleware.exceptions import create_error_response
from stampcard.utils.cache import get_redis

logger = logging.getLogger(__name__)

# (path prefix, requests, window seconds); first match wins
ROUTE_RULES = (
    ("/api/pos/register-customer", 60, 60),
    ("/api/pos/redeem-reward", 60, 60),
)


async def sliding_window_hit(
    redis_client, key: str, limit: int, window: int, now: float
) -> tuple[bool, int, float]:
    """Record one request if under the limit.

    Returns (allowed, remaining, reset_at).
    """
    await redis_client.zremrangebyscore(key, 0, now - window)
    used = await redis_client.zcard(key)

    if used >= limit:
        oldest = await redis_client.zrange(key, 0, 0, withscores=True)
        reset_at = oldest[0][1] + window if oldest else now + window
        return False, 0, reset_at

    await redis_client.zadd(key, {f"{now:.6f}": now})
    await redis_client.expire(key, window)
    return True, limit - used - 1, now + window


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        default_limit: int = 300,
        default_window: int = 60,
        exempt_paths: Optional[list[str]] = None,
    ):
        super().__init__(app)
        self.default_rule = ("", default_limit, default_window)
        self.exempt_paths = tuple(exempt_paths or ["/health", "/docs", "/openapi.json"])

    def rule_for(self, path: str) -> tuple[str, int, int]:
        for rule in ROUTE_RULES:
            if path.startswith(rule[0]):
                return rule
        return self.default_rule

    @staticmethod
    def caller_key(request: Request) -> str:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            staff_id = decode_token(auth_header[7:]).get("sub")
            if staff_id:
                return f"staff:{staff_id}"

        # First hop from the load balancer
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path.startswith(self.exempt_paths):
            return await call_next(request)

        prefix, limit, window = self.rule_for(path)
        key = f"ratelimit:{self.caller_key(request)}:{prefix or 'default'}"
        now = time.time()

        try:
            allowed, remaining, reset_at = await sliding_window_hit(
                await get_redis(), key, limit, window, now
            )
        except Exception as e:
            logger.error(f"Rate limit check failed, letting request through: {e}")
            return await call_next(request)

        if not allowed:
            retry_after = max(int(reset_at - now), 1)
            logger.warning(f"Rate limit hit for {key}")
            return create_error_response(
                status_code=429,
                message=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                error_code="RATE_LIMITED",
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(int(reset_at))
        return response
