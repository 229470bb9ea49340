"""
Session Revocation Cache
========================

Redis-backed set of revoked session ids (JWT `jti`) for fast logout checks.
The `revoked_sessions` table stays the source of truth; Redis only answers
the common case without a database round trip.

Redis is optional: with REDIS_URL unset every helper reports "unknown"
and callers fall back to the database.
"""

import logging
from datetime import datetime
from typing import Optional

from redis import Redis

from .config import get_settings

logger = logging.getLogger(__name__)

REVOKED_PREFIX = "session:revoked:"

_redis_client: Optional[Redis] = None


def get_redis_client() -> Optional[Redis]:
    """Get Redis client (singleton); None when not configured or unreachable."""
    global _redis_client

    redis_url = get_settings().redis_url
    if not redis_url:
        return None

    if _redis_client is None:
        try:
            client = Redis.from_url(redis_url, decode_responses=True)
            client.ping()
            _redis_client = client
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Using database fallback.")
            return None

    return _redis_client


def reset_redis_client() -> None:
    """Forget the cached client (tests / settings reload)."""
    global _redis_client
    _redis_client = None


def revoke(jti: str, expires_at: datetime) -> bool:
    """
    Mark a session id as revoked until it would have expired anyway.

    Returns:
        True if stored in Redis, False if only the database will know
    """
    redis = get_redis_client()
    if not redis:
        return False

    try:
        ttl_seconds = max(int((expires_at - datetime.utcnow()).total_seconds()), 60)
        redis.setex(f"{REVOKED_PREFIX}{jti}", ttl_seconds, "1")
        return True
    except Exception as e:
        logger.warning(f"Redis revoke failed: {e}")
        return False


def is_revoked(jti: str) -> Optional[bool]:
    """
    Check the cache for a revoked session id.

    Returns:
        True if revoked, None if the cache cannot tell (caller checks the
        database). A Redis miss is not definitive because entries written
        while Redis was down only live in the database.
    """
    redis = get_redis_client()
    if redis:
        try:
            if redis.exists(f"{REVOKED_PREFIX}{jti}"):
                return True
        except Exception as e:
            logger.warning(f"Redis revoke check failed: {e}")

    return None


def remove_expired_revocations(db_session) -> int:
    """
    Delete revocation rows whose session would have expired anyway.

    Args:
        db_session: SQLAlchemy database session

    Returns:
        Number of rows removed
    """
    from .db.models import RevokedSession

    result = db_session.query(RevokedSession).filter(
        RevokedSession.expires_at < datetime.utcnow()
    ).delete()

    db_session.commit()
    logger.info(f"Removed {result} expired session revocations")
    return result
