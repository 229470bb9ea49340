"""
Rate Limiting Middleware
========================

Redis sliding-window limits keyed by client IP:
- credential endpoints (login, self-registration): REGISTER_RATE_LIMIT per
  REGISTER_RATE_WINDOW_SECONDS, always applied
- everything else: RATE_LIMIT_PER_MINUTE, when RATE_LIMIT_ENABLED

Without Redis every request is allowed.
"""

import logging
import time
from typing import Callable, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import get_settings
from ..errors import build_error_payload
from ..token_blacklist import get_redis_client

logger = logging.getLogger(__name__)

CREDENTIAL_PATHS = ("/api/auth/login", "/api/auth/register-beneficiary")
EXEMPT_PATHS = ("/health", "/api/health", "/docs", "/redoc", "/openapi.json")


class RateLimiter:
    """
    Redis-based rate limiter using sliding window algorithm.
    """

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        """Explicit client, else the shared application Redis (may be None)"""
        if self._client is not None:
            return self._client
        return get_redis_client()

    def is_allowed(self, key: str, limit: int, window_seconds: int = 60) -> Tuple[bool, int, int]:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Rate limit key (e.g., "ratelimit:ip:10.0.0.1")
            limit: Maximum requests allowed
            window_seconds: Time window in seconds

        Returns:
            (is_allowed, remaining, reset_time)
        """
        client = self.client
        if not client:
            # No Redis - allow all
            return (True, limit, 0)

        now = time.time()
        window_start = now - window_seconds

        try:
            pipe = client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, window_seconds)
            results = pipe.execute()
            current_count = results[1]
        except Exception as e:
            logger.warning(f"Rate limit check failed: {e}")
            return (True, limit, 0)

        reset_time = int(now + window_seconds)
        if current_count >= limit:
            return (False, 0, reset_time)
        return (True, max(0, limit - current_count - 1), reset_time)


# Singleton rate limiter
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter instance"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def reset_rate_limiter(limiter: Optional[RateLimiter] = None) -> None:
    """Replace the singleton (tests)"""
    global _rate_limiter
    _rate_limiter = limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _limited_response(limit: int, reset: int, message: str) -> JSONResponse:
    retry_after = max(reset - int(time.time()), 0)
    return JSONResponse(
        status_code=429,
        content=build_error_payload("rate_limited", message, {"retry_after": retry_after}),
        headers={
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(reset),
            "Retry-After": str(retry_after),
        },
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for per-IP rate limiting.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in EXEMPT_PATHS:
            return await call_next(request)

        settings = get_settings()
        limiter = get_rate_limiter()
        ip = client_ip(request)

        if request.method == "POST" and path in CREDENTIAL_PATHS:
            limit = settings.register_rate_limit
            allowed, remaining, reset = limiter.is_allowed(
                f"ratelimit:credentials:{path}:{ip}", limit, settings.register_rate_window_seconds,
            )
            if not allowed:
                logger.warning(f"Rate limit exceeded on {path} for {ip}")
                return _limited_response(limit, reset, "Too many attempts, try again later")

        if settings.rate_limit_enabled:
            limit = settings.rate_limit_per_minute
            allowed, remaining, reset = limiter.is_allowed(f"ratelimit:ip:{ip}", limit, 60)
            if not allowed:
                logger.warning(f"Rate limit exceeded for {ip}")
                return _limited_response(limit, reset, f"Limit: {limit} requests per minute")
            response = await call_next(request)
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(remaining)
            return response

        return await call_next(request)
