"""
Service Errors
==============

Error taxonomy for the authorization/workflow core.

Every error carries an HTTP status, a stable machine code and a message
that is safe to show to the caller. They are raised deep inside the guard,
workflow and visibility layers and recovered once, at the request boundary,
by the handlers registered in `install_error_handlers`.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for all caller-facing errors"""

    status_code = 400
    code = "bad_request"
    default_message = "Bad request"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class Unauthenticated(ServiceError):
    """No session, or the session could not be resolved"""
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class Forbidden(ServiceError):
    """Authenticated, but the guard denied the action"""
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class InvalidTransition(ServiceError):
    """The caller may act on the entity, but not from its current status"""
    status_code = 409
    code = "invalid_transition"
    default_message = "Invalid transition"


class InvalidTarget(ServiceError):
    """The referenced target (e.g. a lawyer to assign) is not acceptable"""
    status_code = 400
    code = "invalid_target"
    default_message = "Invalid target"


class ProfileIncomplete(ServiceError):
    """Beneficiary account without a linked beneficiary profile"""
    status_code = 409
    code = "profile_incomplete"
    default_message = "Beneficiary profile not found for this account"


class Conflict(ServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class ValidationFailed(ServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


# =============================================================================
# RESPONSE SHAPING
# =============================================================================

def _sanitize_error_detail(detail: Any) -> Any:
    if detail is None:
        return None
    if isinstance(detail, str):
        compact = " ".join(detail.split())
        return compact[:300]
    return detail


def _error_code_for_status(status_code: int) -> str:
    return {
        400: "bad_request",
        401: "unauthenticated",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        429: "rate_limited",
        500: "internal_error",
    }.get(status_code, "error")


def build_error_payload(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_payload(exc.code, exc.message, exc.details),
    )


async def http_error_handler(request: Request, exc: HTTPException):
    detail = _sanitize_error_detail(exc.detail)
    message = detail if isinstance(detail, str) and detail else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_payload(_error_code_for_status(exc.status_code), message),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return structured validation errors without echoing inputs."""
    sanitized_errors = [
        {"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=build_error_payload(
            "validation_error",
            "Invalid request",
            {"errors": sanitized_errors},
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    """Always answer with JSON and never leak internals"""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc.__class__.__name__}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=build_error_payload("internal_error", "Internal server error"),
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the error handlers on an application"""
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
