"""
Workflow Engine
===============

Status state machines and the case workflow.

Each entity has:
- a legal-successor graph (no jumps, terminal states have no successors)
- per-role status vocabularies, intersected with the graph into a table
  (role, current status) -> allowed next statuses
- named transitions (approve / reject / assign-lawyer) with fixed
  source states and a fixed target

A transition is: guard (may this principal act on this record) ->
table (is the move legal from here) -> mutate + timeline event + audit in
one transaction. Notifications are computed by the caller from the
returned, post-transition record.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from .audit import record_audit
from .auth import Principal
from .authz import CASE_GUARD, Action, Scope
from .db.models import (
    Beneficiary, Case, CaseStatus, CaseTimelineEvent, Document, AttachmentKind,
    JudicialServiceStatus, Priority, Role, ServiceRequestStatus, TaskStatus,
    TimelineEventType, User, UserType,
)
from .errors import Conflict, InvalidTarget, InvalidTransition, ValidationFailed

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION TABLES
# =============================================================================

class TransitionTable:
    """
    Table-driven transition guard.

    Built from a successor graph and the status vocabulary each role may
    move into. Lookups are (role, canonical current status) -> next set.
    """

    def __init__(
        self,
        entity: str,
        graph: Mapping[Any, Iterable[Any]],
        vocabularies: Mapping[Role, Iterable[Any]],
        aliases: Optional[Mapping[Any, Any]] = None,
    ):
        self.entity = entity
        self.aliases = dict(aliases or {})
        self.graph = {state: frozenset(nexts) for state, nexts in graph.items()}
        self.table: Dict[Tuple[Role, Any], FrozenSet[Any]] = {}
        for role, vocabulary in vocabularies.items():
            vocabulary = frozenset(vocabulary)
            for state, nexts in self.graph.items():
                self.table[(role, state)] = frozenset(n for n in nexts if n in vocabulary)

    def canonical(self, status):
        return self.aliases.get(status, status)

    def allowed_next(self, role: Role, current) -> FrozenSet[Any]:
        return self.table.get((role, self.canonical(current)), frozenset())

    def is_terminal(self, status) -> bool:
        return not self.graph.get(self.canonical(status))

    def require(self, role: Role, current, target) -> None:
        """Raise InvalidTransition unless role may move current -> target"""
        allowed = self.allowed_next(role, current)
        if target not in allowed:
            logger.warning(
                f"Rejected {self.entity} transition {_value(current)} -> {_value(target)} for role {_value(role)}"
            )
            raise InvalidTransition(
                f"Cannot move {self.entity} from {_value(current)} to {_value(target)}",
                details={
                    "from": _value(current),
                    "to": _value(target),
                    "allowed": sorted(_value(s) for s in allowed),
                },
            )


@dataclass(frozen=True)
class NamedTransition:
    """A fixed-target transition (approve, reject, assign) with legal sources"""
    name: str
    sources: FrozenSet[Any]
    target: Any

    def require(self, entity: str, current) -> None:
        if current not in self.sources:
            logger.warning(f"Rejected {entity} {self.name} from {_value(current)}")
            raise InvalidTransition(
                f"Cannot {self.name} {entity} in status {_value(current)}",
                details={"from": _value(current), "to": _value(self.target)},
            )


def _value(item) -> str:
    return getattr(item, "value", item)


# ---- Case -------------------------------------------------------------------

CASE_OPERATING_STATUSES = frozenset({
    CaseStatus.IN_PROGRESS,
    CaseStatus.AWAITING_DOCUMENTS,
    CaseStatus.AWAITING_HEARING,
    CaseStatus.COMPLETED,
})

CASE_ADMIN_STATUSES = frozenset({
    CaseStatus.PENDING_REVIEW,
    CaseStatus.REJECTED,
    CaseStatus.ACCEPTED_PENDING_ASSIGNMENT,
    CaseStatus.ASSIGNED,
    CaseStatus.COMPLETED,
    CaseStatus.CLOSED_ADMIN,
})

_CASE_WORKING = (
    CaseStatus.IN_PROGRESS,
    CaseStatus.AWAITING_DOCUMENTS,
    CaseStatus.AWAITING_HEARING,
)

CASE_GRAPH = {
    CaseStatus.PENDING_REVIEW: {
        CaseStatus.ACCEPTED_PENDING_ASSIGNMENT, CaseStatus.REJECTED, CaseStatus.CLOSED_ADMIN,
    },
    CaseStatus.ACCEPTED_PENDING_ASSIGNMENT: {CaseStatus.ASSIGNED, CaseStatus.CLOSED_ADMIN},
    CaseStatus.ASSIGNED: {*_CASE_WORKING, CaseStatus.COMPLETED, CaseStatus.CLOSED_ADMIN},
    CaseStatus.IN_PROGRESS: {
        CaseStatus.AWAITING_DOCUMENTS, CaseStatus.AWAITING_HEARING,
        CaseStatus.COMPLETED, CaseStatus.CLOSED_ADMIN,
    },
    CaseStatus.AWAITING_DOCUMENTS: {
        CaseStatus.IN_PROGRESS, CaseStatus.AWAITING_HEARING,
        CaseStatus.COMPLETED, CaseStatus.CLOSED_ADMIN,
    },
    CaseStatus.AWAITING_HEARING: {
        CaseStatus.IN_PROGRESS, CaseStatus.AWAITING_DOCUMENTS,
        CaseStatus.COMPLETED, CaseStatus.CLOSED_ADMIN,
    },
    CaseStatus.COMPLETED: {CaseStatus.CLOSED_ADMIN},
    CaseStatus.CLOSED_ADMIN: set(),
    CaseStatus.REJECTED: set(),
}

CASE_STATUS_ALIASES = {CaseStatus.PENDING_ADMIN_REVIEW: CaseStatus.PENDING_REVIEW}

CASE_STATUS_TABLE = TransitionTable(
    "case",
    CASE_GRAPH,
    {
        Role.SUPER_ADMIN: CASE_ADMIN_STATUSES,
        Role.ADMIN: CASE_ADMIN_STATUSES,
        Role.LAWYER: CASE_OPERATING_STATUSES,
    },
    aliases=CASE_STATUS_ALIASES,
)

_CASE_REVIEW_STATES = frozenset({CaseStatus.PENDING_REVIEW, CaseStatus.PENDING_ADMIN_REVIEW})

CASE_APPROVE = NamedTransition("approve", _CASE_REVIEW_STATES, CaseStatus.ACCEPTED_PENDING_ASSIGNMENT)
CASE_REJECT = NamedTransition("reject", _CASE_REVIEW_STATES, CaseStatus.REJECTED)
CASE_ASSIGN_LAWYER = NamedTransition(
    "assign a lawyer to",
    frozenset({CaseStatus.ACCEPTED_PENDING_ASSIGNMENT, CaseStatus.ASSIGNED}),
    CaseStatus.ASSIGNED,
)

# ---- Judicial service -------------------------------------------------------

JUDICIAL_SERVICE_GRAPH = {
    JudicialServiceStatus.NEW: {
        JudicialServiceStatus.IN_REVIEW, JudicialServiceStatus.ACCEPTED, JudicialServiceStatus.REJECTED,
    },
    JudicialServiceStatus.ASSIGNED: {
        JudicialServiceStatus.IN_REVIEW, JudicialServiceStatus.ACCEPTED, JudicialServiceStatus.REJECTED,
    },
    JudicialServiceStatus.IN_REVIEW: {JudicialServiceStatus.ACCEPTED, JudicialServiceStatus.REJECTED},
    JudicialServiceStatus.ACCEPTED: set(),
    JudicialServiceStatus.REJECTED: set(),
}

_JS_ADMIN_STATUSES = frozenset({
    JudicialServiceStatus.IN_REVIEW, JudicialServiceStatus.ACCEPTED, JudicialServiceStatus.REJECTED,
})

JUDICIAL_SERVICE_STATUS_TABLE = TransitionTable(
    "judicial service",
    JUDICIAL_SERVICE_GRAPH,
    {Role.SUPER_ADMIN: _JS_ADMIN_STATUSES, Role.ADMIN: _JS_ADMIN_STATUSES},
)

JUDICIAL_SERVICE_ASSIGN_LAWYER = NamedTransition(
    "assign a lawyer to",
    frozenset({JudicialServiceStatus.NEW, JudicialServiceStatus.ASSIGNED}),
    JudicialServiceStatus.ASSIGNED,
)

# ---- Task -------------------------------------------------------------------

_TASK_PROGRESS = (
    TaskStatus.FOLLOW_UP,
    TaskStatus.AWAITING_BENEFICIARY,
    TaskStatus.UNDER_REVIEW,
)
_TASK_CLOSING = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

TASK_GRAPH = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {*_TASK_PROGRESS, *_TASK_CLOSING},
    TaskStatus.FOLLOW_UP: {TaskStatus.IN_PROGRESS, *_TASK_PROGRESS, *_TASK_CLOSING} - {TaskStatus.FOLLOW_UP},
    TaskStatus.AWAITING_BENEFICIARY: {TaskStatus.IN_PROGRESS, *_TASK_PROGRESS, *_TASK_CLOSING} - {TaskStatus.AWAITING_BENEFICIARY},
    TaskStatus.UNDER_REVIEW: {TaskStatus.IN_PROGRESS, *_TASK_PROGRESS, *_TASK_CLOSING} - {TaskStatus.UNDER_REVIEW},
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}

_TASK_STATUSES = frozenset(TaskStatus) - {TaskStatus.PENDING}

TASK_STATUS_TABLE = TransitionTable(
    "task",
    TASK_GRAPH,
    {Role.SUPER_ADMIN: _TASK_STATUSES, Role.ADMIN: _TASK_STATUSES, Role.LAWYER: _TASK_STATUSES},
)

# ---- Service request --------------------------------------------------------

SERVICE_REQUEST_GRAPH = {
    ServiceRequestStatus.NEW: {
        ServiceRequestStatus.IN_REVIEW, ServiceRequestStatus.ACCEPTED, ServiceRequestStatus.REJECTED,
    },
    ServiceRequestStatus.IN_REVIEW: {ServiceRequestStatus.ACCEPTED, ServiceRequestStatus.REJECTED},
    ServiceRequestStatus.ACCEPTED: set(),
    ServiceRequestStatus.REJECTED: set(),
}

_SR_STAFF_STATUSES = frozenset(SERVICE_REQUEST_GRAPH) - {ServiceRequestStatus.NEW}

SERVICE_REQUEST_STATUS_TABLE = TransitionTable(
    "service request",
    SERVICE_REQUEST_GRAPH,
    {
        Role.SUPER_ADMIN: _SR_STAFF_STATUSES,
        Role.ADMIN: _SR_STAFF_STATUSES,
        Role.LAWYER: _SR_STAFF_STATUSES,
    },
)


# =============================================================================
# ENGINE BASE
# =============================================================================

@dataclass
class TransitionResult:
    """A committed transition, carrying the post-transition record"""
    record: Any
    from_status: Optional[str]
    to_status: str
    actor_user_id: str
    event: Optional[CaseTimelineEvent] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class WorkflowEngine:
    """Shared plumbing for the per-entity workflows"""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self):
        """Commit everything staged in the block together, or nothing"""
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def require_lawyer(self, lawyer_id: Optional[str]) -> User:
        """Assignment target must be an active staff lawyer"""
        lawyer = self.db.query(User).filter(User.id == lawyer_id).first() if lawyer_id else None
        if (
            lawyer is None
            or not lawyer.is_active
            or lawyer.user_type != UserType.STAFF
            or lawyer.role != Role.LAWYER
        ):
            logger.warning(f"Invalid lawyer target: {lawyer_id}")
            raise InvalidTarget("Invalid lawyer", details={"lawyer_id": lawyer_id})
        return lawyer

    def require_beneficiary(self, beneficiary_id: Optional[str]) -> Beneficiary:
        if not beneficiary_id:
            raise ValidationFailed("beneficiary_id is required")
        beneficiary = self.db.query(Beneficiary).filter(Beneficiary.id == beneficiary_id).first()
        if beneficiary is None:
            raise InvalidTarget("Unknown beneficiary", details={"beneficiary_id": beneficiary_id})
        return beneficiary

    def delete_attachments(self, kind: AttachmentKind, attached_id: str) -> int:
        """Stage deletion of every document hanging off a record"""
        return self.db.query(Document).filter(
            Document.attached_to == kind,
            Document.attached_id == attached_id,
        ).delete(synchronize_session=False)

    @staticmethod
    def apply_fields(record, changes: Mapping[str, Any], editable: Iterable[str]) -> List[str]:
        """Copy whitelisted fields onto a record; anything else is an error"""
        editable = set(editable)
        unknown = sorted(set(changes) - editable)
        if unknown:
            raise ValidationFailed("Use workflow endpoints for these fields", details={"fields": unknown})
        for key, value in changes.items():
            setattr(record, key, value)
        return sorted(changes)


# =============================================================================
# CASE WORKFLOW
# =============================================================================

CASE_INPUT_FIELDS = (
    "case_number", "title", "description", "case_type", "priority",
    "opponent_name", "opponent_lawyer",
)

CASE_EDITABLE_FIELDS = (
    "title", "description", "case_type", "priority",
    "opponent_name", "opponent_lawyer", "internal_notes",
)


def generate_case_number() -> str:
    return f"CASE-{datetime.utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class CaseWorkflow(WorkflowEngine):
    """Case creation, transitions, field edits and deletion"""

    # ---- helpers ------------------------------------------------------------

    def _append_event(
        self,
        case: Case,
        event_type: TimelineEventType,
        from_status: Optional[CaseStatus],
        to_status: CaseStatus,
        principal: Principal,
        note: Optional[str] = None,
    ) -> CaseTimelineEvent:
        event = CaseTimelineEvent(
            case_id=case.id,
            event_type=event_type,
            from_status=_value(from_status) if from_status is not None else None,
            to_status=_value(to_status),
            note=note,
            actor_user_id=principal.user_id,
        )
        self.db.add(event)
        return event

    def _new_case(self, principal: Principal, fields: Mapping[str, Any], **server_fields) -> Case:
        data = {key: fields[key] for key in CASE_INPUT_FIELDS if fields.get(key) is not None}
        data.setdefault("case_number", generate_case_number())
        data.setdefault("priority", Priority.MEDIUM)
        if not data.get("title"):
            raise ValidationFailed("title is required")

        if self.db.query(Case).filter(Case.case_number == data["case_number"]).first():
            raise Conflict("Case number already exists", details={"case_number": data["case_number"]})

        case = Case(id=str(uuid.uuid4()), created_by_user_id=principal.user_id, **data, **server_fields)
        self.db.add(case)
        return case

    # ---- creation -----------------------------------------------------------

    def create(self, principal: Principal, fields: Mapping[str, Any]) -> TransitionResult:
        """Dispatch to the beneficiary or admin entry point by granted scope"""
        scope = CASE_GUARD.ensure(principal, Action.CREATE)
        if scope == Scope.OWN:
            return self.create_for_beneficiary(principal, fields)
        return self.create_for_admin(principal, fields)

    def create_for_beneficiary(self, principal: Principal, fields: Mapping[str, Any]) -> TransitionResult:
        """
        Self-submitted case: starts in pending_review, owned by the caller.

        Any beneficiary_id / internal_notes in the input is discarded.
        """
        scope = CASE_GUARD.ensure(principal, Action.CREATE)
        if scope != Scope.OWN:
            raise InvalidTarget("Staff cases are created through the admin entry point")

        with self.atomic():
            case = self._new_case(
                principal,
                fields,
                beneficiary_id=principal.beneficiary_id,
                status=CaseStatus.PENDING_REVIEW,
            )
            event = self._append_event(case, TimelineEventType.CREATED, None, case.status, principal)
            record_audit(self.db, principal.user_id, "create", "case", case.id, f"Created case {case.case_number}")

        logger.info(f"Case {case.id} submitted by beneficiary {principal.beneficiary_id}")
        return TransitionResult(case, None, case.status.value, principal.user_id, event)

    def create_for_admin(self, principal: Principal, fields: Mapping[str, Any]) -> TransitionResult:
        """Staff-created case: skips review and starts accepted_pending_assignment"""
        scope = CASE_GUARD.ensure(principal, Action.CREATE)
        if scope != Scope.ALL:
            raise InvalidTarget("Beneficiary cases are created through the self-service entry point")

        beneficiary = self.require_beneficiary(fields.get("beneficiary_id"))
        now = datetime.utcnow()
        with self.atomic():
            case = self._new_case(
                principal,
                fields,
                beneficiary_id=beneficiary.id,
                status=CaseStatus.ACCEPTED_PENDING_ASSIGNMENT,
                internal_notes=fields.get("internal_notes"),
                accepted_by_user_id=principal.user_id,
                accepted_at=now,
            )
            event = self._append_event(case, TimelineEventType.CREATED, None, case.status, principal)
            record_audit(self.db, principal.user_id, "create", "case", case.id, f"Created case {case.case_number}")

        logger.info(f"Case {case.id} created by admin {principal.user_id} for beneficiary {beneficiary.id}")
        return TransitionResult(case, None, case.status.value, principal.user_id, event)

    # ---- named transitions --------------------------------------------------

    def approve(self, principal: Principal, case: Case) -> TransitionResult:
        CASE_GUARD.ensure(principal, Action.APPROVE, case)
        CASE_APPROVE.require("case", case.status)

        from_status = case.status
        with self.atomic():
            case.status = CASE_APPROVE.target
            case.accepted_by_user_id = principal.user_id
            case.accepted_at = datetime.utcnow()
            event = self._append_event(case, TimelineEventType.APPROVED, from_status, case.status, principal)
            record_audit(self.db, principal.user_id, "approve", "case", case.id)

        logger.info(f"Case {case.id} approved by {principal.user_id}")
        return TransitionResult(case, from_status.value, case.status.value, principal.user_id, event)

    def reject(self, principal: Principal, case: Case, reason: Optional[str] = None) -> TransitionResult:
        """Reject a pending case; the reason goes on the timeline, not the case row"""
        CASE_GUARD.ensure(principal, Action.REJECT, case)
        CASE_REJECT.require("case", case.status)

        from_status = case.status
        with self.atomic():
            case.status = CASE_REJECT.target
            event = self._append_event(
                case, TimelineEventType.REJECTED, from_status, case.status, principal, note=reason
            )
            record_audit(self.db, principal.user_id, "reject", "case", case.id)

        logger.info(f"Case {case.id} rejected by {principal.user_id}")
        return TransitionResult(case, from_status.value, case.status.value, principal.user_id, event)

    def assign_lawyer(self, principal: Principal, case: Case, lawyer_id: str) -> TransitionResult:
        CASE_GUARD.ensure(principal, Action.ASSIGN, case)
        CASE_ASSIGN_LAWYER.require("case", case.status)
        if case.status == CaseStatus.ASSIGNED and case.assigned_lawyer_id == lawyer_id:
            raise InvalidTransition("Lawyer is already assigned to this case")
        lawyer = self.require_lawyer(lawyer_id)

        from_status = case.status
        previous_lawyer_id = case.assigned_lawyer_id
        with self.atomic():
            case.assigned_lawyer_id = lawyer.id
            case.status = CASE_ASSIGN_LAWYER.target
            event = self._append_event(
                case, TimelineEventType.LAWYER_ASSIGNED, from_status, case.status, principal, note=lawyer.id
            )
            record_audit(self.db, principal.user_id, "assign_lawyer", "case", case.id, f"lawyer={lawyer.id}")

        logger.info(f"Case {case.id} assigned to lawyer {lawyer.id} by {principal.user_id}")
        return TransitionResult(
            case, from_status.value, case.status.value, principal.user_id, event,
            extra={"previous_lawyer_id": previous_lawyer_id},
        )

    # ---- status endpoint ----------------------------------------------------

    def set_status(
        self,
        principal: Principal,
        case: Case,
        target: CaseStatus,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a case within the caller's status vocabulary.

        Admins use the admin set, the assigned lawyer the operating set.
        """
        CASE_GUARD.ensure(principal, Action.TRANSITION, case)
        CASE_STATUS_TABLE.require(principal.role, case.status, target)
        if target == CaseStatus.ASSIGNED and not case.assigned_lawyer_id:
            raise InvalidTransition("Assign a lawyer before moving the case to assigned")

        from_status = case.status
        now = datetime.utcnow()
        with self.atomic():
            case.status = target
            if target == CaseStatus.COMPLETED:
                case.completed_at = now
            elif target == CaseStatus.CLOSED_ADMIN:
                case.closed_at = now
            event = self._append_event(
                case, TimelineEventType.STATUS_CHANGED, from_status, target, principal, note=note
            )
            record_audit(
                self.db, principal.user_id, "status_change", "case", case.id,
                f"{from_status.value} -> {target.value}",
            )

        logger.info(f"Case {case.id} moved {from_status.value} -> {target.value} by {principal.user_id}")
        return TransitionResult(case, from_status.value, target.value, principal.user_id, event)

    # ---- edits --------------------------------------------------------------

    def update_fields(self, principal: Principal, case: Case, changes: Mapping[str, Any]) -> Case:
        """Edit descriptive fields; status, assignment and stamps are not editable here"""
        CASE_GUARD.ensure(principal, Action.UPDATE, case)
        if not changes:
            raise ValidationFailed("No changes supplied")

        with self.atomic():
            changed = self.apply_fields(case, changes, CASE_EDITABLE_FIELDS)
            record_audit(self.db, principal.user_id, "update", "case", case.id, ",".join(changed))
        return case

    def delete(self, principal: Principal, case: Case) -> None:
        """Hard delete: the case, its timeline and its attached documents"""
        CASE_GUARD.ensure(principal, Action.DELETE, case)

        case_id = case.id
        with self.atomic():
            self.delete_attachments(AttachmentKind.CASE, case_id)
            self.db.delete(case)
            record_audit(self.db, principal.user_id, "delete", "case", case_id)

        logger.info(f"Case {case_id} deleted by {principal.user_id}")

    def record_documents_added(self, principal: Principal, case: Case, count: int) -> CaseTimelineEvent:
        """Stage a document_added timeline event (caller owns the transaction)"""
        return self._append_event(
            case, TimelineEventType.DOCUMENT_ADDED, case.status, case.status, principal,
            note=f"documents_added:{count}",
        )
