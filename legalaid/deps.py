"""
FastAPI Dependencies
====================

Database session and principal resolution shared by every router.

The principal is resolved once per request (session cookie, or an
`Authorization: Bearer` header) and passed down explicitly.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from .auth import AuthService, Principal
from .config import get_settings
from .db.session import get_db
from .errors import NotFound, Unauthenticated

logger = logging.getLogger(__name__)


def get_db_dependency():
    """Get database session for FastAPI dependency injection"""
    db = next(get_db())
    try:
        yield db
    finally:
        db.close()


def session_token_from_request(request: Request, authorization: Optional[str] = None) -> Optional[str]:
    """Bearer header wins over the cookie when both are present"""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return request.cookies.get(get_settings().session_cookie_name)


async def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db_dependency),
) -> Optional[Principal]:
    """Resolved principal, or None for an anonymous caller"""
    token = session_token_from_request(request, authorization)
    return AuthService(db).resolve(token)


async def require_principal(
    principal: Optional[Principal] = Depends(get_current_principal),
) -> Principal:
    """Reject anonymous callers with 401"""
    if principal is None:
        raise Unauthenticated()
    return principal


def get_or_404(db: Session, model, record_id: str):
    """Load a row by primary key or raise NotFound"""
    record = db.query(model).filter(model.id == record_id).first()
    if record is None:
        raise NotFound()
    return record
