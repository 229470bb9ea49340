"""
Pydantic Schemas for the Legal Aid API
======================================

Request bodies and response shapes.

Response models come in pairs where a record carries staff-only fields:
`CaseResponse` / `CaseInternalResponse`,
`ServiceRequestResponse` / `ServiceRequestInternalResponse`.
The visibility layer picks one per caller, so a field a beneficiary may not
see is absent from the payload rather than null.

Edit bodies forbid unknown keys; status, assignment and timestamps only
move through the workflow endpoints.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .db.models import (
    AttachmentKind, CaseStatus, JudicialServiceStatus, Priority, Role,
    ServiceRequestStatus, TaskStatus, TaskType, TimelineEventType, UserType,
)


# =============================================================================
# AUTH
# =============================================================================

class LoginRequest(BaseModel):
    """Username or email plus password"""
    login: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)


class MeResponse(BaseModel):
    id: str
    username: str
    full_name: str
    email: Optional[str] = None
    user_type: UserType
    role: Role
    beneficiary_id: Optional[str] = None
    profile_complete: bool = True


class SessionResponse(BaseModel):
    """Login result; the token is also set as an HttpOnly cookie"""
    access_token: str
    token_type: str = "bearer"
    user: MeResponse


class RegisterBeneficiaryRequest(BaseModel):
    """Self-registration: account + beneficiary profile (+ optional first request)"""
    username: str = Field(..., min_length=3, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1, max_length=255)
    id_number: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None

    # Optional initial service request
    service_type: Optional[str] = None
    issue_summary: Optional[str] = None
    issue_details: Optional[str] = None
    urgent: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "username": "sara.k",
                "email": "sara@example.org",
                "password": "a-long-password",
                "full_name": "Sara K",
                "service_type": "consultation",
                "issue_summary": "Eviction notice received",
            }
        }


class RegisterBeneficiaryResponse(BaseModel):
    user_id: str
    beneficiary_id: str
    service_request_id: Optional[str] = None


class CreateUserRequest(BaseModel):
    """Admin-created staff account"""
    username: str = Field(..., min_length=3, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: Role

    @field_validator("role")
    @classmethod
    def staff_role_only(cls, value: Role) -> Role:
        if value == Role.BENEFICIARY:
            raise ValueError("Beneficiary accounts are created through registration")
        return value


class UserResponse(BaseModel):
    id: str
    username: str
    full_name: str
    email: str
    user_type: UserType
    role: Role
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# CASES
# =============================================================================

class CaseCreateRequest(BaseModel):
    """
    Case creation body.

    beneficiary_id and internal_notes are only honored for staff; for a
    beneficiary caller they are discarded.
    """
    title: str = Field(..., min_length=1, max_length=255)
    case_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    case_type: Optional[str] = None
    priority: Optional[Priority] = None
    opponent_name: Optional[str] = None
    opponent_lawyer: Optional[str] = None
    beneficiary_id: Optional[str] = None
    internal_notes: Optional[str] = None


class CaseUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    case_type: Optional[str] = None
    priority: Optional[Priority] = None
    opponent_name: Optional[str] = None
    opponent_lawyer: Optional[str] = None
    internal_notes: Optional[str] = None

    class Config:
        extra = "forbid"


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class AssignLawyerRequest(BaseModel):
    lawyer_id: str = Field(..., min_length=1)


class CaseStatusRequest(BaseModel):
    status: CaseStatus
    note: Optional[str] = None


class CaseResponse(BaseModel):
    """Case as any reader may see it"""
    id: str
    case_number: str
    title: str
    description: Optional[str] = None
    case_type: Optional[str] = None
    priority: Priority
    status: CaseStatus
    opponent_name: Optional[str] = None
    opponent_lawyer: Optional[str] = None
    beneficiary_id: str
    assigned_lawyer_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CaseInternalResponse(CaseResponse):
    """Case with staff-only fields"""
    internal_notes: Optional[str] = None
    created_by_user_id: Optional[str] = None
    accepted_by_user_id: Optional[str] = None


class TimelineEventResponse(BaseModel):
    id: str
    case_id: str
    event_type: TimelineEventType
    from_status: Optional[str] = None
    to_status: str
    note: Optional[str] = None
    actor_user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# DOCUMENTS
# =============================================================================

class DocumentItem(BaseModel):
    """Metadata of one stored file"""
    storage_key: str = Field(..., min_length=1, max_length=500)
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    description: Optional[str] = None


class AttachDocumentsRequest(BaseModel):
    documents: List[DocumentItem] = Field(..., min_length=1)
    # Staff only; beneficiary uploads are always public
    is_public: Optional[bool] = None


class PortalDocumentsRequest(BaseModel):
    documents: List[DocumentItem] = Field(..., min_length=1)
    request_id: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    attached_to: AttachmentKind
    attached_id: str
    storage_key: str
    file_name: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_public: bool
    uploaded_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# JUDICIAL SERVICES
# =============================================================================

class JudicialServiceCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    service_type: Optional[str] = None
    priority: Optional[Priority] = None
    # Staff only
    beneficiary_id: Optional[str] = None


class JudicialServiceUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    service_type: Optional[str] = None
    priority: Optional[Priority] = None

    class Config:
        extra = "forbid"


class JudicialServiceStatusRequest(BaseModel):
    status: JudicialServiceStatus
    note: Optional[str] = None


class JudicialServiceResponse(BaseModel):
    id: str
    service_number: str
    title: str
    description: Optional[str] = None
    service_type: Optional[str] = None
    priority: Priority
    status: JudicialServiceStatus
    beneficiary_id: str
    assigned_lawyer_id: Optional[str] = None
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# TASKS
# =============================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    beneficiary_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    task_type: Optional[TaskType] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    show_in_portal: bool = True
    notify_beneficiary: bool = True


class TaskUpdateRequest(BaseModel):
    """Any field for admins; the linked lawyer may only send status"""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: Optional[TaskType] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    show_in_portal: Optional[bool] = None
    notify_beneficiary: Optional[bool] = None
    status: Optional[TaskStatus] = None

    class Config:
        extra = "forbid"


class TaskResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    task_type: TaskType
    priority: Priority
    status: TaskStatus
    beneficiary_id: str
    assigned_to: Optional[str] = None
    lawyer_id: Optional[str] = None
    case_id: Optional[str] = None
    show_in_portal: bool
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaskInternalResponse(TaskResponse):
    assigned_by: Optional[str] = None
    notify_beneficiary: bool = True


# =============================================================================
# SERVICE REQUESTS
# =============================================================================

class ServiceRequestCreateRequest(BaseModel):
    service_type: str = Field(..., min_length=1, max_length=100)
    issue_summary: str = Field(..., min_length=1)
    issue_details: Optional[str] = None
    urgent: bool = False
    urgent_date: Optional[datetime] = None


class ServiceRequestStatusRequest(BaseModel):
    status: ServiceRequestStatus
    review_notes: Optional[str] = None


class ServiceRequestResponse(BaseModel):
    id: str
    beneficiary_id: str
    service_type: str
    issue_summary: str
    issue_details: Optional[str] = None
    urgent: bool
    urgent_date: Optional[datetime] = None
    status: ServiceRequestStatus
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceRequestInternalResponse(ServiceRequestResponse):
    review_notes: Optional[str] = None
    reviewed_by_user_id: Optional[str] = None


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    url: Optional[str] = None
    related_entity_id: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MarkAllReadResponse(BaseModel):
    updated: int


# =============================================================================
# HEALTH
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
