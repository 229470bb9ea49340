"""
Judicial Service + Service Request Endpoints
============================================

Judicial services:
- POST   /api/judicial-services
- GET    /api/judicial-services
- GET    /api/judicial-services/{service_id}
- PATCH  /api/judicial-services/{service_id}                 - Admin field edit
- DELETE /api/judicial-services/{service_id}                 - Admin
- PATCH  /api/judicial-services/{service_id}/assign-lawyer   - Admin
- PATCH  /api/judicial-services/{service_id}/status          - Admin
- GET    /api/judicial-services/{service_id}/attachments
- POST   /api/judicial-services/{service_id}/attachments

Service requests:
- POST   /api/service-requests                   - Beneficiary
- GET    /api/service-requests                   - Own (beneficiary) / all (staff)
- GET    /api/service-requests/{request_id}
- PATCH  /api/service-requests/{request_id}/status  - Admin or lawyer
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from .auth import Principal
from .authz import JUDICIAL_SERVICE_GUARD, SERVICE_REQUEST_GUARD, Action, EntityKind
from .db.models import JudicialService, JudicialServiceStatus, ServiceRequest, ServiceRequestStatus
from .deps import get_db_dependency, get_or_404, require_principal
from .documents import DocumentWorkflow
from .notifications import (
    admin_recipients, deliver_notifications, plan_attachment, plan_judicial_service_event,
    plan_new_judicial_service, plan_service_request_event,
)
from .schemas import (
    AssignLawyerRequest, AttachDocumentsRequest, JudicialServiceCreateRequest,
    JudicialServiceStatusRequest, JudicialServiceUpdateRequest, ServiceRequestCreateRequest,
    ServiceRequestStatusRequest,
)
from .visibility import project, project_documents, project_many, visible_documents, visible_query
from .workflow_services import JudicialServiceWorkflow, ServiceRequestWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["services"])


def _readable_service(db: Session, principal: Principal, service_id: str) -> JudicialService:
    JUDICIAL_SERVICE_GUARD.ensure(principal, Action.READ)
    service = get_or_404(db, JudicialService, service_id)
    JUDICIAL_SERVICE_GUARD.ensure(principal, Action.READ, service)
    return service


def _readable_request(db: Session, principal: Principal, request_id: str) -> ServiceRequest:
    SERVICE_REQUEST_GUARD.ensure(principal, Action.READ)
    request = get_or_404(db, ServiceRequest, request_id)
    SERVICE_REQUEST_GUARD.ensure(principal, Action.READ, request)
    return request


# =============================================================================
# JUDICIAL SERVICES
# =============================================================================

@router.post("/judicial-services", status_code=201)
async def create_judicial_service(
    body: JudicialServiceCreateRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    result = JudicialServiceWorkflow(db).create(principal, body.model_dump(exclude_unset=True))
    service = result.record
    if result.extra.get("submitted_by_beneficiary"):
        drafts = plan_new_judicial_service(service, admin_recipients(db), principal.user_id)
    else:
        drafts = plan_judicial_service_event(
            service, principal.user_id, "judicial_service_created", "A judicial service was opened for you",
        )
    background_tasks.add_task(deliver_notifications, drafts)
    return project(principal, EntityKind.JUDICIAL_SERVICE, service)


@router.get("/judicial-services")
async def list_judicial_services(
    status: Optional[JudicialServiceStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    query = visible_query(db, principal, EntityKind.JUDICIAL_SERVICE)
    if status:
        query = query.filter(JudicialService.status == status)
    services = query.order_by(JudicialService.created_at.desc()).offset(offset).limit(limit).all()
    return project_many(principal, EntityKind.JUDICIAL_SERVICE, services)


@router.get("/judicial-services/{service_id}")
async def get_judicial_service(
    service_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    payload = project(principal, EntityKind.JUDICIAL_SERVICE, service)
    payload["attachments"] = project_documents(
        visible_documents(db, principal, EntityKind.JUDICIAL_SERVICE, service)
    )
    return payload


@router.patch("/judicial-services/{service_id}")
async def update_judicial_service(
    service_id: str,
    body: JudicialServiceUpdateRequest,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    service = JudicialServiceWorkflow(db).update_fields(principal, service, body.model_dump(exclude_unset=True))
    return project(principal, EntityKind.JUDICIAL_SERVICE, service)


@router.delete("/judicial-services/{service_id}")
async def delete_judicial_service(
    service_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    JudicialServiceWorkflow(db).delete(principal, service)
    return {"deleted": True, "id": service_id}


@router.patch("/judicial-services/{service_id}/assign-lawyer")
async def assign_judicial_service_lawyer(
    service_id: str,
    body: AssignLawyerRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    result = JudicialServiceWorkflow(db).assign_lawyer(principal, service, body.lawyer_id)
    background_tasks.add_task(
        deliver_notifications,
        plan_judicial_service_event(
            result.record, principal.user_id, "judicial_service_assigned", "A lawyer has been assigned",
        ),
    )
    return project(principal, EntityKind.JUDICIAL_SERVICE, result.record)


@router.patch("/judicial-services/{service_id}/status")
async def set_judicial_service_status(
    service_id: str,
    body: JudicialServiceStatusRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    result = JudicialServiceWorkflow(db).set_status(principal, service, body.status, body.note)
    background_tasks.add_task(
        deliver_notifications,
        plan_judicial_service_event(
            result.record, principal.user_id, "judicial_service_status_changed",
            f"Status changed from {result.from_status} to {result.to_status}",
        ),
    )
    return project(principal, EntityKind.JUDICIAL_SERVICE, result.record)


@router.get("/judicial-services/{service_id}/attachments")
async def list_judicial_service_attachments(
    service_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    return project_documents(visible_documents(db, principal, EntityKind.JUDICIAL_SERVICE, service))


@router.post("/judicial-services/{service_id}/attachments", status_code=201)
async def attach_judicial_service_documents(
    service_id: str,
    body: AttachDocumentsRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    service = _readable_service(db, principal, service_id)
    documents = DocumentWorkflow(db).attach(
        principal, EntityKind.JUDICIAL_SERVICE, service,
        [item.model_dump() for item in body.documents], body.is_public,
    )
    background_tasks.add_task(
        deliver_notifications,
        plan_attachment("judicial_service", service, principal.user_id, len(documents), documents[0].is_public),
    )
    return project_documents(documents)


# =============================================================================
# SERVICE REQUESTS
# =============================================================================

@router.post("/service-requests", status_code=201)
async def create_service_request(
    body: ServiceRequestCreateRequest,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    request = ServiceRequestWorkflow(db).create(principal, body.model_dump(exclude_unset=True))
    return project(principal, EntityKind.SERVICE_REQUEST, request)


@router.get("/service-requests")
async def list_service_requests(
    status: Optional[ServiceRequestStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    query = visible_query(db, principal, EntityKind.SERVICE_REQUEST)
    if status:
        query = query.filter(ServiceRequest.status == status)
    requests = query.order_by(ServiceRequest.created_at.desc()).offset(offset).limit(limit).all()
    return project_many(principal, EntityKind.SERVICE_REQUEST, requests)


@router.get("/service-requests/{request_id}")
async def get_service_request(
    request_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    request = _readable_request(db, principal, request_id)
    return project(principal, EntityKind.SERVICE_REQUEST, request)


@router.patch("/service-requests/{request_id}/status")
async def set_service_request_status(
    request_id: str,
    body: ServiceRequestStatusRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    request = _readable_request(db, principal, request_id)
    result = ServiceRequestWorkflow(db).set_status(principal, request, body.status, body.review_notes)
    background_tasks.add_task(
        deliver_notifications,
        plan_service_request_event(result.record, principal.user_id, f"Your request is now {result.to_status}"),
    )
    return project(principal, EntityKind.SERVICE_REQUEST, result.record)
