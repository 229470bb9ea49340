"""
Security Middleware
===================

Security headers on every response, plus optional HTTPS enforcement.

Environment:
- ENFORCE_HTTPS: redirect plain HTTP to HTTPS (default: false)
- HSTS_MAX_AGE: Strict-Transport-Security max-age in seconds
"""

import os

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response


def _enforce_https() -> bool:
    return os.environ.get("ENFORCE_HTTPS", "false").lower() in ("true", "1", "yes")


def _hsts_max_age() -> int:
    return int(os.environ.get("HSTS_MAX_AGE", "31536000"))


def _is_https(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Headers added:
    - X-Content-Type-Options: nosniff
    - X-Frame-Options: DENY
    - Referrer-Policy
    - Content-Security-Policy (JSON endpoints)
    - Strict-Transport-Security when served over HTTPS
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if _enforce_https() and not _is_https(request):
            url = str(request.url).replace("http://", "https://", 1)
            return RedirectResponse(url, status_code=301)

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Interactive docs load their own scripts
        if not request.url.path.startswith(("/docs", "/redoc")):
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        if _is_https(request):
            response.headers["Strict-Transport-Security"] = f"max-age={_hsts_max_age()}; includeSubDomains"

        return response
