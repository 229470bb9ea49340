"""
Database Package
================

SQLAlchemy models and session helpers.
"""

from .models import (
    Base,
    generate_uuid,
    UserType,
    Role,
    Priority,
    CaseStatus,
    TimelineEventType,
    JudicialServiceStatus,
    TaskStatus,
    TaskType,
    ServiceRequestStatus,
    AttachmentKind,
    User,
    Beneficiary,
    Case,
    CaseTimelineEvent,
    JudicialService,
    Task,
    ServiceRequest,
    Document,
    Notification,
    AuditLog,
    RevokedSession,
)
from .session import (
    SessionLocal,
    get_engine,
    reset_engine,
    init_db,
    drop_db,
    get_db,
    get_db_session,
)

__all__ = [
    "Base",
    "generate_uuid",
    "UserType",
    "Role",
    "Priority",
    "CaseStatus",
    "TimelineEventType",
    "JudicialServiceStatus",
    "TaskStatus",
    "TaskType",
    "ServiceRequestStatus",
    "AttachmentKind",
    "User",
    "Beneficiary",
    "Case",
    "CaseTimelineEvent",
    "JudicialService",
    "Task",
    "ServiceRequest",
    "Document",
    "Notification",
    "AuditLog",
    "RevokedSession",
    "SessionLocal",
    "get_engine",
    "reset_engine",
    "init_db",
    "drop_db",
    "get_db",
    "get_db_session",
]
