"""
Identity Module
===============

Password hashing, session tokens and the identity context resolver.

A session is a signed JWT carried in an HttpOnly cookie (or a Bearer
header). Resolution turns it into an immutable `Principal`:
- kind: staff | beneficiary
- role: one of the closed `Role` values
- beneficiary_id: the linked profile, for beneficiary principals

Resolution fails closed: a missing, malformed, expired, revoked or
orphaned session resolves to Anonymous (None), never to a default role.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import Beneficiary, RevokedSession, Role, User, UserType
from .token_blacklist import is_revoked as cache_is_revoked
from .token_blacklist import revoke as cache_revoke

logger = logging.getLogger(__name__)


# =============================================================================
# PASSWORD HASHING
# =============================================================================

# bcrypt truncates passwords at 72 bytes; enforce to avoid silent truncation.
MAX_PASSWORD_BYTES = 72


def is_password_too_long(password: str) -> bool:
    """Return True if password exceeds bcrypt 72-byte limit."""
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


@lru_cache()
def _pwd_context() -> CryptContext:
    return CryptContext(
        schemes=["bcrypt"],
        deprecated="auto",
        bcrypt__rounds=get_settings().bcrypt_rounds,
    )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    if is_password_too_long(plain_password):
        logger.warning("Auth failed: password exceeds bcrypt 72-byte limit")
        return False
    try:
        return _pwd_context().verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Auth failed: invalid password format ({e})")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    if is_password_too_long(password):
        raise ValueError("Password exceeds bcrypt 72-byte limit")
    return _pwd_context().hash(password)


# =============================================================================
# SESSION TOKENS
# =============================================================================

def create_session_token(user: User, ttl: Optional[timedelta] = None) -> str:
    """Issue a signed session token for a user"""
    settings = get_settings()
    now = datetime.utcnow()
    expire = now + (ttl or timedelta(minutes=settings.session_ttl_minutes))
    payload = {
        "sub": user.id,
        "kind": user.user_type.value,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.session_secret, algorithm=settings.session_algorithm)


def decode_session_token(token: str) -> Optional[dict]:
    """Decode and validate a session token; None if invalid or expired"""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[settings.session_algorithm],
            options={"require": ["sub", "jti", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Session token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid session token: {e}")
        return None
    return payload


# =============================================================================
# PRINCIPAL
# =============================================================================

@dataclass(frozen=True)
class Principal:
    """The authenticated actor of one request. Built once, never mutated."""
    user_id: str
    kind: UserType
    role: Role
    username: str
    full_name: str
    email: Optional[str] = None
    beneficiary_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.kind == UserType.STAFF

    @property
    def is_beneficiary(self) -> bool:
        return self.kind == UserType.BENEFICIARY

    @property
    def profile_complete(self) -> bool:
        """Beneficiaries need a linked profile for ownership checks"""
        return not self.is_beneficiary or self.beneficiary_id is not None

    @property
    def is_consistent(self) -> bool:
        """Kind and role must agree (beneficiary kind <=> beneficiary role)"""
        return self.is_beneficiary == (self.role == Role.BENEFICIARY)


# =============================================================================
# AUTH SERVICE
# =============================================================================

class AuthService:
    """Identity resolution and credential checks using SQLAlchemy"""

    def __init__(self, db: Session):
        self.db = db

    def _is_session_revoked(self, jti: str) -> bool:
        # Redis first (fast); None means "ask the database"
        cached = cache_is_revoked(jti)
        if cached is not None:
            return cached
        return self.db.query(RevokedSession).filter(RevokedSession.jti == jti).first() is not None

    def principal_for_user(self, user: User, session_id: Optional[str] = None) -> Principal:
        """Build the principal for a loaded, active user"""
        beneficiary_id = None
        if user.user_type == UserType.BENEFICIARY:
            profile = self.db.query(Beneficiary).filter(Beneficiary.user_id == user.id).first()
            if profile is None:
                logger.warning(f"Beneficiary account {user.id} has no linked profile")
            else:
                beneficiary_id = profile.id

        return Principal(
            user_id=user.id,
            kind=user.user_type,
            role=user.role,
            username=user.username,
            full_name=user.full_name,
            email=user.email,
            beneficiary_id=beneficiary_id,
            session_id=session_id,
        )

    def resolve(self, token: Optional[str]) -> Optional[Principal]:
        """
        Resolve a session token to a Principal.

        Args:
            token: Raw session token (cookie or bearer value)

        Returns:
            Principal, or None (Anonymous) for anything that is not a
            live session of an active user
        """
        if not token:
            return None

        payload = decode_session_token(token)
        if not payload:
            return None

        jti = payload.get("jti")
        if self._is_session_revoked(jti):
            logger.warning(f"Auth failed: session {jti} has been revoked")
            return None

        user_id = payload.get("sub")
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            logger.warning(f"Auth failed: user {user_id} not found or inactive")
            return None

        # Token minted for a different account kind than the stored user
        if payload.get("kind") != user.user_type.value:
            logger.warning(f"Auth failed: session kind mismatch for user {user_id}")
            return None

        return self.principal_for_user(user, session_id=jti)

    def authenticate_user(self, login: str, password: str) -> Optional[User]:
        """
        Authenticate by username or email and password.

        Returns:
            The User if authentication succeeds, None otherwise
        """
        user = self.db.query(User).filter(
            or_(User.username == login, User.email == login),
            User.is_active == True,  # noqa: E712
        ).first()
        if not user:
            logger.warning(f"Auth failed: login {login} not found")
            return None

        if not user.password_hash:
            logger.warning(f"Auth failed: user {user.id} has no password set")
            return None

        if not verify_password(password, user.password_hash):
            logger.warning(f"Auth failed: invalid password for user {user.id}")
            return None

        user.last_login = datetime.utcnow()
        self.db.commit()
        return user

    def revoke_session(self, token: str) -> Tuple[bool, Optional[str]]:
        """
        Revoke a session token (logout).

        Returns:
            (revoked, user_id) - revoked is False when the token was
            already invalid, which is fine for logout
        """
        payload = decode_session_token(token)
        if not payload:
            return False, None

        jti = payload["jti"]
        user_id = payload.get("sub")
        expires_at = datetime.utcfromtimestamp(payload["exp"])

        # Redis for fast checks, database for durability
        cache_revoke(jti, expires_at)
        existing = self.db.query(RevokedSession).filter(RevokedSession.jti == jti).first()
        if not existing:
            self.db.add(RevokedSession(jti=jti, user_id=user_id, expires_at=expires_at))
            self.db.commit()
        return True, user_id


# =============================================================================
# FASTAPI DEPENDENCY HELPERS
# =============================================================================

def get_auth_service(db: Session) -> AuthService:
    """Get AuthService instance for a database session"""
    return AuthService(db)
