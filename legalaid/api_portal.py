"""
Portal Endpoints
================

Recipient-side notifications and the beneficiary's own documents.

- GET   /api/notifications                 - unread_only filter
- PATCH /api/notifications/{id}/read       - Recipient only (others: 404)
- POST  /api/notifications/mark-all-read
- GET   /api/documents/my                  - Public documents of the caller's profile
- POST  /api/documents/my                  - Portal upload (forced public)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .auth import Principal
from .deps import get_db_dependency, require_principal
from .documents import DocumentWorkflow
from .notifications import list_notifications, mark_all_read, mark_read
from .schemas import MarkAllReadResponse, NotificationResponse, PortalDocumentsRequest
from .visibility import portal_documents, project_documents

logger = logging.getLogger(__name__)

router = APIRouter(tags=["portal"])


@router.get("/notifications", response_model=List[NotificationResponse])
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    return list_notifications(db, principal, unread_only=unread_only, limit=limit)


@router.patch("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def read_notification(
    notification_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    return mark_read(db, principal, notification_id)


@router.post("/notifications/mark-all-read", response_model=MarkAllReadResponse)
async def read_all_notifications(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    return MarkAllReadResponse(updated=mark_all_read(db, principal))


@router.get("/documents/my")
async def get_my_documents(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    return project_documents(portal_documents(db, principal))


@router.post("/documents/my", status_code=201)
async def upload_my_documents(
    body: PortalDocumentsRequest,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    documents = DocumentWorkflow(db).attach_for_beneficiary(
        principal, [item.model_dump() for item in body.documents], body.request_id,
    )
    return project_documents(documents)
