"""
Document Attachments
====================

Metadata for files attached to cases, judicial services, tasks, service
requests and beneficiary profiles. Storage itself is external; callers pass
the storage key the upload service returned.

Beneficiary uploads are always public. Staff choose the flag, with a
per-kind default (case documents are internal unless marked otherwise).
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .audit import record_audit
from .auth import Principal
from .authz import GUARDS, SERVICE_REQUEST_GUARD, Action, EntityKind
from .db.models import AttachmentKind, Document, ServiceRequest
from .errors import NotFound, ValidationFailed
from .workflow import CaseWorkflow, WorkflowEngine

logger = logging.getLogger(__name__)

ATTACHMENT_KINDS: Dict[EntityKind, AttachmentKind] = {
    EntityKind.CASE: AttachmentKind.CASE,
    EntityKind.JUDICIAL_SERVICE: AttachmentKind.JUDICIAL_SERVICE,
    EntityKind.TASK: AttachmentKind.TASK,
    EntityKind.SERVICE_REQUEST: AttachmentKind.SERVICE_REQUEST,
}

# is_public when a staff uploader does not say
STAFF_PUBLIC_DEFAULTS: Dict[EntityKind, bool] = {
    EntityKind.CASE: False,
    EntityKind.JUDICIAL_SERVICE: True,
    EntityKind.TASK: True,
    EntityKind.SERVICE_REQUEST: False,
}

DOCUMENT_FIELDS = ("storage_key", "file_name", "mime_type", "size_bytes", "category", "description")


def resolve_public_flag(principal: Principal, entity: EntityKind, requested: Optional[bool]) -> bool:
    """Beneficiary uploads are forced public; staff fall back to the per-kind default"""
    if principal.is_beneficiary:
        return True
    if requested is None:
        return STAFF_PUBLIC_DEFAULTS.get(entity, False)
    return bool(requested)


class DocumentWorkflow(WorkflowEngine):
    """Attach document metadata to records"""

    def _build(
        self,
        principal: Principal,
        item: Mapping[str, Any],
        attached_to: AttachmentKind,
        attached_id: str,
        beneficiary_id: Optional[str],
        is_public: bool,
    ) -> Document:
        data = {key: item.get(key) for key in DOCUMENT_FIELDS if item.get(key) is not None}
        if not data.get("storage_key") or not data.get("file_name"):
            raise ValidationFailed("storage_key and file_name are required")
        return Document(
            id=str(uuid.uuid4()),
            attached_to=attached_to,
            attached_id=attached_id,
            beneficiary_id=beneficiary_id,
            uploaded_by=principal.user_id,
            is_public=is_public,
            **data,
        )

    def attach(
        self,
        principal: Principal,
        entity: EntityKind,
        record,
        items: Iterable[Mapping[str, Any]],
        is_public: Optional[bool] = None,
    ) -> List[Document]:
        """
        Attach documents to a workflow record.

        Args:
            principal: Acting principal
            entity: Kind of the parent record
            record: Loaded parent record
            items: Document metadata dicts
            is_public: Staff-requested visibility (ignored for beneficiaries)

        Returns:
            The committed Document rows
        """
        GUARDS[entity].ensure(principal, Action.ATTACH, record)
        items = list(items)
        if not items:
            raise ValidationFailed("No documents supplied")

        public = resolve_public_flag(principal, entity, is_public)
        kind = ATTACHMENT_KINDS[entity]

        with self.atomic():
            documents = [
                self._build(principal, item, kind, record.id, record.beneficiary_id, public)
                for item in items
            ]
            self.db.add_all(documents)
            if entity == EntityKind.CASE:
                CaseWorkflow(self.db).record_documents_added(principal, record, len(documents))
            record_audit(
                self.db, principal.user_id, "upload", entity.value, record.id,
                f"{len(documents)} document(s), public={public}",
            )

        logger.info(f"{len(documents)} document(s) attached to {entity.value} {record.id} by {principal.user_id}")
        return documents

    def attach_for_beneficiary(
        self,
        principal: Principal,
        items: Iterable[Mapping[str, Any]],
        request_id: Optional[str] = None,
    ) -> List[Document]:
        """
        Portal upload: to one of the caller's service requests, or to their
        own profile when no request is named. Always public.
        """
        SERVICE_REQUEST_GUARD.ensure(principal, Action.ATTACH)
        items = list(items)
        if not items:
            raise ValidationFailed("No documents supplied")

        if request_id:
            request = self.db.query(ServiceRequest).filter(ServiceRequest.id == request_id).first()
            if request is None:
                raise NotFound()
            SERVICE_REQUEST_GUARD.ensure(principal, Action.ATTACH, request)
            attached_to, attached_id = AttachmentKind.SERVICE_REQUEST, request.id
        else:
            attached_to, attached_id = AttachmentKind.BENEFICIARY, principal.beneficiary_id

        with self.atomic():
            documents = [
                self._build(principal, item, attached_to, attached_id, principal.beneficiary_id, True)
                for item in items
            ]
            self.db.add_all(documents)
            record_audit(
                self.db, principal.user_id, "upload", attached_to.value, attached_id,
                f"{len(documents)} document(s) from portal",
            )

        logger.info(f"{len(documents)} portal document(s) uploaded by beneficiary {principal.beneficiary_id}")
        return documents
