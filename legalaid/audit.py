"""
Audit Log
=========

Audit rows are added to the caller's session so they commit (or roll back)
together with the change they describe.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .db.models import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    user_id: Optional[str],
    action: str,
    entity: str,
    entity_id: Optional[str],
    details: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Stage an audit row in the current transaction"""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        details=details,
        ip_address=ip_address,
    )
    db.add(entry)
    logger.debug(f"Audit: {user_id} {action} {entity} {entity_id}")
    return entry
