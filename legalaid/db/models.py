"""
SQLAlchemy Models for Database
==============================

Schema for the legal-aid workflow core:
- Users (staff + beneficiary accounts) and beneficiary profiles
- Cases with their append-only timeline
- Judicial services, tasks and service requests
- Documents attached to any of the above
- Notifications, audit log and revoked sessions

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey,
    Index, event
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserType(str, enum.Enum):
    """Principal kind of an account"""
    STAFF = "staff"
    BENEFICIARY = "beneficiary"


class Role(str, enum.Enum):
    """Closed set of roles; capabilities per role live in authz.ROLE_CAPABILITIES"""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    LAWYER = "lawyer"
    VIEWER = "viewer"
    EXPERT = "expert"
    BENEFICIARY = "beneficiary"


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class CaseStatus(str, enum.Enum):
    """Case lifecycle status"""
    PENDING_REVIEW = "pending_review"
    PENDING_ADMIN_REVIEW = "pending_admin_review"  # legacy alias of pending_review
    ACCEPTED_PENDING_ASSIGNMENT = "accepted_pending_assignment"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    AWAITING_DOCUMENTS = "awaiting_documents"
    AWAITING_HEARING = "awaiting_hearing"
    COMPLETED = "completed"
    CLOSED_ADMIN = "closed_admin"
    REJECTED = "rejected"


class TimelineEventType(str, enum.Enum):
    """Case timeline event types"""
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    LAWYER_ASSIGNED = "lawyer_assigned"
    STATUS_CHANGED = "status_changed"
    DOCUMENT_ADDED = "document_added"


class JudicialServiceStatus(str, enum.Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_REVIEW = "in_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    FOLLOW_UP = "follow_up"
    AWAITING_BENEFICIARY = "awaiting_beneficiary"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskType(str, enum.Enum):
    FOLLOW_UP = "follow_up"
    DOCUMENT_PREPARATION = "document_preparation"
    COURT_APPEARANCE = "court_appearance"
    CLIENT_MEETING = "client_meeting"
    RESEARCH = "research"
    OTHER = "other"


class ServiceRequestStatus(str, enum.Enum):
    NEW = "new"
    IN_REVIEW = "in_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AttachmentKind(str, enum.Enum):
    """What a document hangs off"""
    CASE = "case"
    TASK = "task"
    JUDICIAL_SERVICE = "judicial_service"
    SERVICE_REQUEST = "service_request"
    SESSION = "session"
    POWER_OF_ATTORNEY = "power_of_attorney"
    BENEFICIARY = "beneficiary"


# =============================================================================
# PEOPLE
# =============================================================================

class User(Base):
    """Login account (staff member or beneficiary)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    username = Column(String(150), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    user_type = Column(Enum(UserType), default=UserType.STAFF, nullable=False)
    role = Column(Enum(Role), default=Role.VIEWER, nullable=False)
    password_hash = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    # Relationships
    beneficiary_profile = relationship("Beneficiary", back_populates="user", uselist=False)
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class Beneficiary(Base):
    """Person served by the organization; optionally linked to one account"""
    __tablename__ = "beneficiaries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    # Set once at registration / linking, basis of every ownership check
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)
    full_name = Column(String(255), nullable=False)
    id_number = Column(String(100), nullable=True, unique=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    status = Column(String(50), default="pending", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="beneficiary_profile")
    cases = relationship("Case", back_populates="beneficiary")


# =============================================================================
# CASES
# =============================================================================

class Case(Base):
    """Legal case - the primary workflow entity"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_number = Column(String(100), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    case_type = Column(String(100), nullable=True)
    priority = Column(Enum(Priority), default=Priority.MEDIUM, nullable=False)
    opponent_name = Column(String(255), nullable=True)
    opponent_lawyer = Column(String(255), nullable=True)

    beneficiary_id = Column(String(36), ForeignKey("beneficiaries.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(CaseStatus), default=CaseStatus.PENDING_REVIEW, nullable=False)
    assigned_lawyer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Staff only, never serialized to beneficiaries
    internal_notes = Column(Text, nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    accepted_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_case_beneficiary", "beneficiary_id"),
        Index("ix_case_lawyer", "assigned_lawyer_id"),
    )

    # Relationships
    beneficiary = relationship("Beneficiary", back_populates="cases")
    assigned_lawyer = relationship("User", foreign_keys=[assigned_lawyer_id])
    timeline_events = relationship(
        "CaseTimelineEvent",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="CaseTimelineEvent.created_at",
    )


class CaseTimelineEvent(Base):
    """Append-only audit entry written with every case transition"""
    __tablename__ = "case_timeline_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(Enum(TimelineEventType), nullable=False)
    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=False)
    note = Column(Text, nullable=True)
    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_timeline_case", "case_id", "created_at"),
    )

    # Relationships
    case = relationship("Case", back_populates="timeline_events")


@event.listens_for(CaseTimelineEvent, "before_update")
def _timeline_events_are_immutable(mapper, connection, target):
    raise ValueError("Case timeline events are append-only")


# =============================================================================
# SECONDARY WORKFLOW ENTITIES
# =============================================================================

class JudicialService(Base):
    """Judicial service request (court filing, representation, etc.)"""
    __tablename__ = "judicial_services"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    service_number = Column(String(50), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    service_type = Column(String(100), nullable=True)
    priority = Column(Enum(Priority), default=Priority.MEDIUM, nullable=False)

    beneficiary_id = Column(String(36), ForeignKey("beneficiaries.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(JudicialServiceStatus), default=JudicialServiceStatus.NEW, nullable=False)
    assigned_lawyer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    accepted_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    beneficiary = relationship("Beneficiary")


class Task(Base):
    """Task assigned to a beneficiary account, optionally linked to a lawyer/case"""
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    task_type = Column(Enum(TaskType), default=TaskType.OTHER, nullable=False)
    priority = Column(Enum(Priority), default=Priority.MEDIUM, nullable=False)
    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, nullable=False)

    beneficiary_id = Column(String(36), ForeignKey("beneficiaries.id", ondelete="CASCADE"), nullable=False)
    assigned_to = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    lawyer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="SET NULL"), nullable=True)

    show_in_portal = Column(Boolean, default=True, nullable=False)
    notify_beneficiary = Column(Boolean, default=True, nullable=False)
    due_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    beneficiary = relationship("Beneficiary")


class ServiceRequest(Base):
    """Beneficiary-submitted request for legal aid"""
    __tablename__ = "service_requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    beneficiary_id = Column(String(36), ForeignKey("beneficiaries.id", ondelete="CASCADE"), nullable=False)
    service_type = Column(String(100), nullable=False)
    issue_summary = Column(Text, nullable=False)
    issue_details = Column(Text, nullable=True)
    urgent = Column(Boolean, default=False, nullable=False)
    urgent_date = Column(DateTime, nullable=True)
    status = Column(Enum(ServiceRequestStatus), default=ServiceRequestStatus.NEW, nullable=False)

    # Staff only
    review_notes = Column(Text, nullable=True)
    reviewed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    beneficiary = relationship("Beneficiary")


# =============================================================================
# DOCUMENTS
# =============================================================================

class Document(Base):
    """File metadata attached to exactly one owner record"""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    attached_to = Column(Enum(AttachmentKind), nullable=False)
    attached_id = Column(String(36), nullable=False)
    # Beneficiary the document belongs to (for portal visibility)
    beneficiary_id = Column(String(36), ForeignKey("beneficiaries.id", ondelete="SET NULL"), nullable=True)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    storage_key = Column(String(500), nullable=False)
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_document_owner", "attached_to", "attached_id"),
        Index("ix_document_beneficiary", "beneficiary_id"),
    )


# =============================================================================
# NOTIFICATIONS / AUDIT / SESSIONS
# =============================================================================

class Notification(Base):
    """In-app notification; read state is mutated by the recipient only"""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    url = Column(String(500), nullable=True)
    related_entity_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_user", "user_id", "is_read"),
    )

    # Relationships
    user = relationship("User", back_populates="notifications")


class AuditLog(Base):
    """Who did what to which record"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False)
    entity = Column(String(64), nullable=False)
    entity_id = Column(String(36), nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RevokedSession(Base):
    """Durable record of logged-out session tokens"""
    __tablename__ = "revoked_sessions"

    jti = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, default=datetime.utcnow)
