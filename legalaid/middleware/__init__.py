"""
Middleware Package
==================

Security headers and Redis-backed rate limiting.
"""

from .rate_limit import (
    RateLimitMiddleware,
    RateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)
from .security import SecurityHeadersMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RateLimiter",
    "get_rate_limiter",
    "reset_rate_limiter",
    "SecurityHeadersMiddleware",
]
