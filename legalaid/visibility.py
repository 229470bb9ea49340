"""
Visibility Resolver
===================

Caller-specific shaping of records, lists and attachments.

- Lists: a SQL pre-filter per granted scope (all / assigned / own) applied
  before pagination, never a filter over already-serialized rows.
- Records: staff-only fields are absent for callers without
  read_internal on the record.
- Documents: callers with read_internal see everything attached; everyone
  else only sees public documents that belong to their own profile.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, false, or_
from sqlalchemy.orm import Query, Session

from .auth import Principal
from .authz import GUARDS, Action, EntityKind, Scope
from .db.models import (
    Case, CaseTimelineEvent, Document, JudicialService, ServiceRequest, Task,
)
from .documents import ATTACHMENT_KINDS
from .schemas import (
    CaseInternalResponse, CaseResponse, DocumentResponse, JudicialServiceResponse,
    ServiceRequestInternalResponse, ServiceRequestResponse, TaskInternalResponse,
    TaskResponse, TimelineEventResponse,
)

logger = logging.getLogger(__name__)


# =============================================================================
# LIST PRE-FILTERS
# =============================================================================

MODELS = {
    EntityKind.CASE: Case,
    EntityKind.JUDICIAL_SERVICE: JudicialService,
    EntityKind.TASK: Task,
    EntityKind.SERVICE_REQUEST: ServiceRequest,
}

# scope -> SQL clause builder, per entity; mirrors the guard predicates
SCOPE_FILTERS: Dict[EntityKind, Dict[Scope, Callable[[Principal], Any]]] = {
    EntityKind.CASE: {
        Scope.ASSIGNED: lambda p: Case.assigned_lawyer_id == p.user_id,
        Scope.OWN: lambda p: Case.beneficiary_id == p.beneficiary_id,
    },
    EntityKind.JUDICIAL_SERVICE: {
        Scope.ASSIGNED: lambda p: JudicialService.assigned_lawyer_id == p.user_id,
        Scope.OWN: lambda p: JudicialService.beneficiary_id == p.beneficiary_id,
    },
    EntityKind.TASK: {
        Scope.ASSIGNED: lambda p: Task.lawyer_id == p.user_id,
        Scope.OWN: lambda p: and_(
            Task.show_in_portal == True,  # noqa: E712
            or_(Task.beneficiary_id == p.beneficiary_id, Task.assigned_to == p.user_id),
        ),
    },
    EntityKind.SERVICE_REQUEST: {
        Scope.ASSIGNED: lambda p: false(),
        Scope.OWN: lambda p: ServiceRequest.beneficiary_id == p.beneficiary_id,
    },
}


def escape_like(term: str) -> str:
    """Match % and _ in a search term literally"""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def visible_query(db: Session, principal: Optional[Principal], entity: EntityKind) -> Query:
    """
    Query of the records of one kind the principal may read.

    Raises the guard's error when the principal may not read any record of
    this kind (anonymous, no capability, beneficiary without a profile).
    """
    scope = GUARDS[entity].ensure(principal, Action.READ)
    query = db.query(MODELS[entity])
    if scope == Scope.ALL:
        return query
    return query.filter(SCOPE_FILTERS[entity][scope](principal))


def visible_cases_query(
    db: Session,
    principal: Optional[Principal],
    status: Optional[str] = None,
    priority: Optional[str] = None,
    q: Optional[str] = None,
) -> Query:
    """Visible cases with the list filters applied on top of the scope filter"""
    query = visible_query(db, principal, EntityKind.CASE)
    if status:
        query = query.filter(Case.status == status)
    if priority:
        query = query.filter(Case.priority == priority)
    if q:
        like = f"%{escape_like(q.strip())}%"
        query = query.filter(or_(
            Case.title.ilike(like, escape="\\"),
            Case.case_number.ilike(like, escape="\\"),
            Case.description.ilike(like, escape="\\"),
        ))
    return query.order_by(Case.created_at.desc())


# =============================================================================
# RECORD PROJECTIONS
# =============================================================================

_RESPONSE_MODELS = {
    EntityKind.CASE: (CaseResponse, CaseInternalResponse),
    EntityKind.JUDICIAL_SERVICE: (JudicialServiceResponse, JudicialServiceResponse),
    EntityKind.TASK: (TaskResponse, TaskInternalResponse),
    EntityKind.SERVICE_REQUEST: (ServiceRequestResponse, ServiceRequestInternalResponse),
}


def can_read_internal(principal: Optional[Principal], entity: EntityKind, record) -> bool:
    return GUARDS[entity].can(principal, Action.READ_INTERNAL, record)


def project(principal: Optional[Principal], entity: EntityKind, record) -> Dict[str, Any]:
    """Serialize a record for this caller, dropping staff-only fields when needed"""
    public_model, internal_model = _RESPONSE_MODELS[entity]
    model = internal_model if can_read_internal(principal, entity, record) else public_model
    return model.model_validate(record).model_dump(mode="json")


def project_case(principal: Optional[Principal], case: Case) -> Dict[str, Any]:
    return project(principal, EntityKind.CASE, case)


def project_many(principal: Optional[Principal], entity: EntityKind, records) -> List[Dict[str, Any]]:
    return [project(principal, entity, record) for record in records]


def project_timeline(events) -> List[Dict[str, Any]]:
    return [TimelineEventResponse.model_validate(e).model_dump(mode="json") for e in events]


def case_timeline(db: Session, case: Case) -> List[CaseTimelineEvent]:
    return db.query(CaseTimelineEvent).filter(
        CaseTimelineEvent.case_id == case.id
    ).order_by(CaseTimelineEvent.created_at, CaseTimelineEvent.id).all()


# =============================================================================
# DOCUMENTS
# =============================================================================

def document_filter(principal: Principal):
    """Clause limiting documents to the ones a non-internal reader may see"""
    return and_(
        Document.is_public == True,  # noqa: E712
        Document.beneficiary_id == principal.beneficiary_id,
    )


def visible_documents(
    db: Session,
    principal: Optional[Principal],
    entity: EntityKind,
    record,
) -> List[Document]:
    """
    Documents attached to a record, filtered for the caller.

    The caller must be able to read the record; that is checked here too.
    """
    guard = GUARDS[entity]
    guard.ensure(principal, Action.READ, record)

    query = db.query(Document).filter(
        Document.attached_to == ATTACHMENT_KINDS[entity],
        Document.attached_id == record.id,
    )
    if not guard.can(principal, Action.READ_INTERNAL, record):
        query = query.filter(document_filter(principal))
    return query.order_by(Document.created_at).all()


def portal_documents(db: Session, principal: Principal) -> List[Document]:
    """Every public document of the caller's own profile, whatever it hangs off"""
    GUARDS[EntityKind.SERVICE_REQUEST].ensure(principal, Action.ATTACH)
    return db.query(Document).filter(document_filter(principal)).order_by(Document.created_at.desc()).all()


def project_documents(documents) -> List[Dict[str, Any]]:
    return [DocumentResponse.model_validate(d).model_dump(mode="json") for d in documents]
