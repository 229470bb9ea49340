"""
Judicial Service + Service Request Workflows
============================================

Judicial services: new -> assigned (lawyer set) -> in_review / accepted /
rejected. Only admins assign lawyers or change status.

Service requests: new -> in_review -> accepted / rejected, moved by staff
(admin or lawyer). Beneficiaries create and read their own.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Any, Mapping, Optional

from .audit import record_audit
from .auth import Principal
from .authz import JUDICIAL_SERVICE_GUARD, SERVICE_REQUEST_GUARD, Action, Scope
from .db.models import (
    AttachmentKind, JudicialService, JudicialServiceStatus, Priority, ServiceRequest,
    ServiceRequestStatus,
)
from .errors import InvalidTransition, ValidationFailed
from .workflow import (
    JUDICIAL_SERVICE_ASSIGN_LAWYER,
    JUDICIAL_SERVICE_STATUS_TABLE,
    SERVICE_REQUEST_STATUS_TABLE,
    TransitionResult,
    WorkflowEngine,
)

logger = logging.getLogger(__name__)

JUDICIAL_SERVICE_INPUT_FIELDS = ("title", "description", "service_type", "priority")
JUDICIAL_SERVICE_EDITABLE_FIELDS = JUDICIAL_SERVICE_INPUT_FIELDS

SERVICE_REQUEST_INPUT_FIELDS = ("service_type", "issue_summary", "issue_details", "urgent", "urgent_date")


class JudicialServiceWorkflow(WorkflowEngine):
    """Judicial service creation, assignment and status changes"""

    def _next_service_number(self) -> str:
        stamp = int(time.time() * 1000)
        number = f"JS-{stamp}"
        while self.db.query(JudicialService.id).filter(JudicialService.service_number == number).first():
            stamp += 1
            number = f"JS-{stamp}"
        return number

    def create(self, principal: Principal, fields: Mapping[str, Any]) -> TransitionResult:
        """
        Create a judicial service.

        Beneficiaries always file for themselves; staff name the beneficiary.
        Both start in `new`.
        """
        scope = JUDICIAL_SERVICE_GUARD.ensure(principal, Action.CREATE)

        if scope == Scope.OWN:
            beneficiary_id = principal.beneficiary_id
        else:
            beneficiary_id = self.require_beneficiary(fields.get("beneficiary_id")).id

        data = {key: fields[key] for key in JUDICIAL_SERVICE_INPUT_FIELDS if fields.get(key) is not None}
        if not data.get("title"):
            raise ValidationFailed("title is required")
        data.setdefault("priority", Priority.MEDIUM)

        with self.atomic():
            service = JudicialService(
                id=str(uuid.uuid4()),
                service_number=self._next_service_number(),
                beneficiary_id=beneficiary_id,
                status=JudicialServiceStatus.NEW,
                created_by_user_id=principal.user_id,
                **data,
            )
            self.db.add(service)
            record_audit(
                self.db, principal.user_id, "create", "judicial_service", service.id,
                f"Created judicial service {service.service_number}",
            )

        logger.info(f"Judicial service {service.id} created by {principal.user_id} ({scope.value})")
        return TransitionResult(
            service, None, service.status.value, principal.user_id,
            extra={"submitted_by_beneficiary": scope == Scope.OWN},
        )

    def assign_lawyer(self, principal: Principal, service: JudicialService, lawyer_id: str) -> TransitionResult:
        JUDICIAL_SERVICE_GUARD.ensure(principal, Action.ASSIGN, service)
        JUDICIAL_SERVICE_ASSIGN_LAWYER.require("judicial service", service.status)
        if service.assigned_lawyer_id == lawyer_id:
            raise InvalidTransition("Lawyer is already assigned to this judicial service")
        lawyer = self.require_lawyer(lawyer_id)

        from_status = service.status
        with self.atomic():
            service.assigned_lawyer_id = lawyer.id
            service.status = JUDICIAL_SERVICE_ASSIGN_LAWYER.target
            record_audit(
                self.db, principal.user_id, "assign_lawyer", "judicial_service", service.id, f"lawyer={lawyer.id}"
            )

        logger.info(f"Judicial service {service.id} assigned to {lawyer.id}")
        return TransitionResult(service, from_status.value, service.status.value, principal.user_id)

    def set_status(
        self,
        principal: Principal,
        service: JudicialService,
        target: JudicialServiceStatus,
        note: Optional[str] = None,
    ) -> TransitionResult:
        JUDICIAL_SERVICE_GUARD.ensure(principal, Action.TRANSITION, service)
        JUDICIAL_SERVICE_STATUS_TABLE.require(principal.role, service.status, target)

        from_status = service.status
        with self.atomic():
            service.status = target
            if target == JudicialServiceStatus.ACCEPTED:
                service.accepted_at = datetime.utcnow()
                service.accepted_by_user_id = principal.user_id
            record_audit(
                self.db, principal.user_id, "status_change", "judicial_service", service.id,
                f"{from_status.value} -> {target.value}" + (f": {note}" if note else ""),
            )

        logger.info(f"Judicial service {service.id} moved {from_status.value} -> {target.value}")
        return TransitionResult(service, from_status.value, target.value, principal.user_id)

    def update_fields(self, principal: Principal, service: JudicialService, changes: Mapping[str, Any]) -> JudicialService:
        JUDICIAL_SERVICE_GUARD.ensure(principal, Action.UPDATE, service)
        if not changes:
            raise ValidationFailed("No changes supplied")

        with self.atomic():
            changed = self.apply_fields(service, changes, JUDICIAL_SERVICE_EDITABLE_FIELDS)
            record_audit(self.db, principal.user_id, "update", "judicial_service", service.id, ",".join(changed))
        return service

    def delete(self, principal: Principal, service: JudicialService) -> None:
        JUDICIAL_SERVICE_GUARD.ensure(principal, Action.DELETE, service)

        service_id = service.id
        with self.atomic():
            self.delete_attachments(AttachmentKind.JUDICIAL_SERVICE, service_id)
            self.db.delete(service)
            record_audit(self.db, principal.user_id, "delete", "judicial_service", service_id)
        logger.info(f"Judicial service {service_id} deleted by {principal.user_id}")


class ServiceRequestWorkflow(WorkflowEngine):
    """Beneficiary service requests and their staff review"""

    def create(self, principal: Principal, fields: Mapping[str, Any]) -> ServiceRequest:
        """Owner and status are server-assigned; any supplied values are ignored"""
        SERVICE_REQUEST_GUARD.ensure(principal, Action.CREATE)

        data = {key: fields[key] for key in SERVICE_REQUEST_INPUT_FIELDS if fields.get(key) is not None}
        if not data.get("service_type") or not data.get("issue_summary"):
            raise ValidationFailed("service_type and issue_summary are required")

        with self.atomic():
            request = ServiceRequest(
                id=str(uuid.uuid4()),
                beneficiary_id=principal.beneficiary_id,
                status=ServiceRequestStatus.NEW,
                **data,
            )
            self.db.add(request)
            record_audit(
                self.db, principal.user_id, "create", "service_request", request.id,
                f"Created service request: {request.service_type}",
            )

        logger.info(f"Service request {request.id} created by beneficiary {principal.beneficiary_id}")
        return request

    def set_status(
        self,
        principal: Principal,
        request: ServiceRequest,
        target: ServiceRequestStatus,
        review_notes: Optional[str] = None,
    ) -> TransitionResult:
        SERVICE_REQUEST_GUARD.ensure(principal, Action.TRANSITION, request)
        SERVICE_REQUEST_STATUS_TABLE.require(principal.role, request.status, target)

        from_status = request.status
        with self.atomic():
            request.status = target
            request.reviewed_by_user_id = principal.user_id
            request.reviewed_at = datetime.utcnow()
            if review_notes is not None:
                request.review_notes = review_notes
            record_audit(
                self.db, principal.user_id, "status_change", "service_request", request.id,
                f"{from_status.value} -> {target.value}",
            )

        logger.info(f"Service request {request.id} moved {from_status.value} -> {target.value}")
        return TransitionResult(request, from_status.value, target.value, principal.user_id)
