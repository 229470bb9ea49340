"""
Case Endpoints
==============

- POST   /api/cases                       - Create (beneficiary: pending_review, admin: accepted_pending_assignment)
- GET    /api/cases                       - List visible cases (status, priority, q, limit, offset)
- GET    /api/cases/{case_id}             - Case + visible documents
- PATCH  /api/cases/{case_id}             - Edit descriptive fields
- DELETE /api/cases/{case_id}             - Hard delete
- PATCH  /api/cases/{case_id}/approve     - Admin approve
- PATCH  /api/cases/{case_id}/reject      - Admin reject
- PATCH  /api/cases/{case_id}/assign-lawyer
- PATCH  /api/cases/{case_id}/status      - Admin or assigned lawyer
- GET    /api/cases/{case_id}/documents
- POST   /api/cases/{case_id}/documents
- GET    /api/cases/{case_id}/timeline
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from .auth import Principal
from .authz import CASE_GUARD, Action, EntityKind
from .db.models import Case, CaseStatus, Priority
from .deps import get_db_dependency, get_or_404, require_principal
from .documents import DocumentWorkflow
from .notifications import (
    deliver_notifications, plan_attachment, plan_case_assignment, plan_case_event, plan_case_transition,
)
from .schemas import (
    AssignLawyerRequest, AttachDocumentsRequest, CaseCreateRequest, CaseStatusRequest,
    CaseUpdateRequest, RejectRequest,
)
from .visibility import (
    case_timeline, project_case, project_documents, project_many, project_timeline,
    visible_cases_query, visible_documents,
)
from .workflow import CaseWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["cases"])


def _readable_case(db: Session, principal: Principal, case_id: str) -> Case:
    """Load a case the caller may read; other beneficiaries' cases look absent"""
    CASE_GUARD.ensure(principal, Action.READ)
    case = get_or_404(db, Case, case_id)
    CASE_GUARD.ensure(principal, Action.READ, case)
    return case


@router.post("", status_code=201)
async def create_case(
    body: CaseCreateRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    result = CaseWorkflow(db).create(principal, body.model_dump(exclude_unset=True))
    background_tasks.add_task(
        deliver_notifications,
        plan_case_transition(result.record, principal.user_id, None, result.to_status),
    )
    return project_case(principal, result.record)


@router.get("")
async def list_cases(
    status: Optional[CaseStatus] = None,
    priority: Optional[Priority] = None,
    q: Optional[str] = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    cases = visible_cases_query(db, principal, status=status, priority=priority, q=q).offset(offset).limit(limit).all()
    return project_many(principal, EntityKind.CASE, cases)


@router.get("/{case_id}")
async def get_case(
    case_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    payload = project_case(principal, case)
    payload["documents"] = project_documents(visible_documents(db, principal, EntityKind.CASE, case))
    return payload


@router.patch("/{case_id}")
async def update_case(
    case_id: str,
    body: CaseUpdateRequest,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    case = CaseWorkflow(db).update_fields(principal, case, body.model_dump(exclude_unset=True))
    return project_case(principal, case)


@router.delete("/{case_id}")
async def delete_case(
    case_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    CaseWorkflow(db).delete(principal, case)
    return {"deleted": True, "id": case_id}


# =============================================================================
# TRANSITIONS
# =============================================================================

@router.patch("/{case_id}/approve")
async def approve_case(
    case_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    result = CaseWorkflow(db).approve(principal, case)
    background_tasks.add_task(
        deliver_notifications,
        plan_case_event(result.record, principal.user_id, "case_approved", "Your case has been accepted"),
    )
    return project_case(principal, result.record)


@router.patch("/{case_id}/reject")
async def reject_case(
    case_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[RejectRequest] = None,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    reason = body.reason if body else None
    result = CaseWorkflow(db).reject(principal, case, reason)
    message = "Your case has been rejected" + (f": {reason}" if reason else "")
    background_tasks.add_task(
        deliver_notifications,
        plan_case_event(result.record, principal.user_id, "case_rejected", message),
    )
    return project_case(principal, result.record)


@router.patch("/{case_id}/assign-lawyer")
async def assign_case_lawyer(
    case_id: str,
    body: AssignLawyerRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    result = CaseWorkflow(db).assign_lawyer(principal, case, body.lawyer_id)
    background_tasks.add_task(
        deliver_notifications,
        plan_case_assignment(result.record, principal.user_id, result.extra.get("previous_lawyer_id")),
    )
    return project_case(principal, result.record)


@router.patch("/{case_id}/status")
async def set_case_status(
    case_id: str,
    body: CaseStatusRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    result = CaseWorkflow(db).set_status(principal, case, body.status, body.note)
    background_tasks.add_task(
        deliver_notifications,
        plan_case_transition(result.record, principal.user_id, result.from_status, result.to_status),
    )
    return project_case(principal, result.record)


# =============================================================================
# DOCUMENTS + TIMELINE
# =============================================================================

@router.get("/{case_id}/documents")
async def list_case_documents(
    case_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    return project_documents(visible_documents(db, principal, EntityKind.CASE, case))


@router.post("/{case_id}/documents", status_code=201)
async def attach_case_documents(
    case_id: str,
    body: AttachDocumentsRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    documents = DocumentWorkflow(db).attach(
        principal, EntityKind.CASE, case, [item.model_dump() for item in body.documents], body.is_public,
    )
    background_tasks.add_task(
        deliver_notifications,
        plan_attachment("case", case, principal.user_id, len(documents), documents[0].is_public),
    )
    return project_documents(documents)


@router.get("/{case_id}/timeline")
async def get_case_timeline(
    case_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    case = _readable_case(db, principal, case_id)
    return project_timeline(case_timeline(db, case))
