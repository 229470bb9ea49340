"""
Task Workflow
=============

Tasks are assigned to a beneficiary's account (assigned_to) and may link a
lawyer and a case. pending -> in_progress -> follow_up /
awaiting_beneficiary / under_review -> completed / cancelled.

Admins may edit any field; the linked lawyer may only change status.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .audit import record_audit
from .auth import Principal
from .authz import TASK_GUARD, Action
from .db.models import AttachmentKind, Case, Priority, Task, TaskStatus, TaskType
from .errors import InvalidTarget, ValidationFailed
from .workflow import TASK_STATUS_TABLE, TransitionResult, WorkflowEngine

logger = logging.getLogger(__name__)

TASK_INPUT_FIELDS = (
    "title", "description", "task_type", "priority", "due_date",
    "show_in_portal", "notify_beneficiary",
)
TASK_EDITABLE_FIELDS = TASK_INPUT_FIELDS + ("lawyer_id", "case_id")


class TaskWorkflow(WorkflowEngine):
    """Task creation and updates"""

    def _require_case_for(self, case_id: str, beneficiary_id: str) -> Case:
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if case is None or case.beneficiary_id != beneficiary_id:
            raise InvalidTarget("Case does not belong to the task's beneficiary", details={"case_id": case_id})
        return case

    def create(self, principal: Principal, fields: Mapping[str, Any]) -> TransitionResult:
        """
        Create a task for a beneficiary.

        The beneficiary must have a linked account; it becomes assigned_to.
        """
        TASK_GUARD.ensure(principal, Action.CREATE)

        beneficiary = self.require_beneficiary(fields.get("beneficiary_id"))
        if not beneficiary.user_id:
            raise InvalidTarget(
                "Beneficiary has no linked user account",
                details={"beneficiary_id": beneficiary.id},
            )

        lawyer_id = fields.get("lawyer_id")
        if lawyer_id:
            self.require_lawyer(lawyer_id)
        case_id = fields.get("case_id")
        if case_id:
            self._require_case_for(case_id, beneficiary.id)

        data = {key: fields[key] for key in TASK_INPUT_FIELDS if fields.get(key) is not None}
        if not data.get("title"):
            raise ValidationFailed("title is required")
        data.setdefault("task_type", TaskType.OTHER)
        data.setdefault("priority", Priority.MEDIUM)

        with self.atomic():
            task = Task(
                id=str(uuid.uuid4()),
                beneficiary_id=beneficiary.id,
                assigned_to=beneficiary.user_id,
                assigned_by=principal.user_id,
                lawyer_id=lawyer_id,
                case_id=case_id,
                status=TaskStatus.PENDING,
                **data,
            )
            self.db.add(task)
            record_audit(self.db, principal.user_id, "create", "task", task.id, f"Created task {task.title}")

        logger.info(f"Task {task.id} created for beneficiary {beneficiary.id} by {principal.user_id}")
        return TransitionResult(task, None, task.status.value, principal.user_id)

    def update(self, principal: Principal, task: Task, changes: Mapping[str, Any]) -> Optional[TransitionResult]:
        """
        Apply field edits and/or a status change.

        Field edits need task:update (admins). A status change needs
        task:transition, which the linked lawyer also holds.

        Returns:
            TransitionResult when the status changed, else None
        """
        changes: Dict[str, Any] = dict(changes)
        target: Optional[TaskStatus] = changes.pop("status", None)
        if target is None and not changes:
            raise ValidationFailed("No changes supplied")

        if changes:
            TASK_GUARD.ensure(principal, Action.UPDATE, task)
            if changes.get("lawyer_id"):
                self.require_lawyer(changes["lawyer_id"])
            if changes.get("case_id"):
                self._require_case_for(changes["case_id"], task.beneficiary_id)
        if target is not None:
            TASK_GUARD.ensure(principal, Action.TRANSITION, task)
            TASK_STATUS_TABLE.require(principal.role, task.status, target)

        from_status = task.status
        with self.atomic():
            changed = self.apply_fields(task, changes, TASK_EDITABLE_FIELDS) if changes else []
            if target is not None:
                task.status = target
                if target == TaskStatus.COMPLETED:
                    task.completed_at = datetime.utcnow()
                changed.append("status")
            record_audit(self.db, principal.user_id, "update", "task", task.id, ",".join(changed))

        if target is None:
            return None
        logger.info(f"Task {task.id} moved {from_status.value} -> {target.value} by {principal.user_id}")
        return TransitionResult(task, from_status.value, target.value, principal.user_id)

    def delete(self, principal: Principal, task: Task) -> None:
        TASK_GUARD.ensure(principal, Action.DELETE, task)

        task_id = task.id
        with self.atomic():
            self.delete_attachments(AttachmentKind.TASK, task_id)
            self.db.delete(task)
            record_audit(self.db, principal.user_id, "delete", "task", task_id)
        logger.info(f"Task {task_id} deleted by {principal.user_id}")
