"""
Notification Fan-out
====================

Planning is synchronous and pure: drafts are computed from the
post-transition record inside the request, so they always reflect the
assignment that was just committed.

Delivery is best-effort: `deliver_notifications` runs after the response
(FastAPI BackgroundTasks) in its own database session. A failure is logged
and swallowed, never turned into a failed request.

Recipient rule: the assigned lawyer and the beneficiary's linked account,
minus the actor.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from .auth import Principal
from .db.models import (
    Case, JudicialService, Notification, Role, Task, User, UserType,
)
from .db.session import get_db_session
from .errors import NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationDraft:
    """A notification to be written for one recipient"""
    user_id: str
    type: str
    title: str
    message: str
    url: Optional[str] = None
    related_entity_id: Optional[str] = None


def recipients_for(candidates: Iterable[Optional[str]], actor_user_id: Optional[str]) -> List[str]:
    """Distinct, non-empty candidate user ids, excluding the actor, in order"""
    recipients: List[str] = []
    for user_id in candidates:
        if not user_id or user_id == actor_user_id or user_id in recipients:
            continue
        recipients.append(user_id)
    return recipients


def _beneficiary_user_id(record) -> Optional[str]:
    beneficiary = getattr(record, "beneficiary", None)
    return beneficiary.user_id if beneficiary is not None else None


def _drafts(user_ids: Sequence[str], type_: str, title: str, message: str, url: str, entity_id: str):
    return [
        NotificationDraft(user_id, type_, title, message, url=url, related_entity_id=entity_id)
        for user_id in user_ids
    ]


# =============================================================================
# PLANNERS
# =============================================================================

def plan_case_event(case: Case, actor_user_id: str, type_: str, message: str) -> List[NotificationDraft]:
    """Assigned lawyer + beneficiary account for a case event"""
    recipients = recipients_for([case.assigned_lawyer_id, _beneficiary_user_id(case)], actor_user_id)
    return _drafts(
        recipients, type_, f"Case {case.case_number}", message, f"/cases/{case.id}", case.id,
    )


def plan_case_transition(case: Case, actor_user_id: str, from_status: Optional[str], to_status: str) -> List[NotificationDraft]:
    if from_status is None:
        message = f"Case created with status {to_status}"
    else:
        message = f"Case status changed from {from_status} to {to_status}"
    return plan_case_event(case, actor_user_id, "case_status_changed", message)


def plan_case_assignment(case: Case, actor_user_id: str, previous_lawyer_id: Optional[str] = None) -> List[NotificationDraft]:
    drafts = plan_case_event(case, actor_user_id, "case_assigned", "A lawyer has been assigned to the case")
    # The lawyer taken off the case hears about it too
    for user_id in recipients_for([previous_lawyer_id], actor_user_id):
        if user_id != case.assigned_lawyer_id:
            drafts.append(NotificationDraft(
                user_id, "case_unassigned", f"Case {case.case_number}",
                "You are no longer assigned to this case", f"/cases/{case.id}", case.id,
            ))
    return drafts


def plan_judicial_service_event(service: JudicialService, actor_user_id: str, type_: str, message: str) -> List[NotificationDraft]:
    recipients = recipients_for([service.assigned_lawyer_id, _beneficiary_user_id(service)], actor_user_id)
    return _drafts(
        recipients, type_, f"Judicial service {service.service_number}", message,
        f"/judicial-services/{service.id}", service.id,
    )


def plan_new_judicial_service(service: JudicialService, admin_ids: Iterable[str], actor_user_id: str) -> List[NotificationDraft]:
    """Beneficiary-submitted service: every active admin is told"""
    return _drafts(
        recipients_for(admin_ids, actor_user_id), "judicial_service_new",
        "New judicial service request", f"{service.title} ({service.service_number})",
        f"/judicial-services/{service.id}", service.id,
    )


def plan_service_request_event(request, actor_user_id: str, message: str) -> List[NotificationDraft]:
    return _drafts(
        recipients_for([_beneficiary_user_id(request)], actor_user_id), "service_request_status_changed",
        "Service request update", message, f"/service-requests/{request.id}", request.id,
    )


def task_recipients(task: Task, actor_user_id: Optional[str]) -> List[str]:
    """Linked lawyer, plus the beneficiary account when the task is shown and notifiable"""
    candidates = [task.lawyer_id]
    if task.show_in_portal and task.notify_beneficiary:
        candidates.append(task.assigned_to)
    return recipients_for(candidates, actor_user_id)


def plan_task_event(task: Task, actor_user_id: str, type_: str, message: str) -> List[NotificationDraft]:
    return _drafts(task_recipients(task, actor_user_id), type_, task.title, message, f"/tasks/{task.id}", task.id)


def plan_attachment(entity_label: str, record, actor_user_id: str, count: int, is_public: bool) -> List[NotificationDraft]:
    """
    Documents added to a case / judicial service / task.

    Internal documents are only announced to staff.
    """
    if isinstance(record, Task):
        recipients = task_recipients(record, actor_user_id)
        beneficiary_user = record.assigned_to
        url = f"/tasks/{record.id}"
    else:
        beneficiary_user = _beneficiary_user_id(record)
        recipients = recipients_for([record.assigned_lawyer_id, beneficiary_user], actor_user_id)
        url = f"/{entity_label.replace('_', '-')}s/{record.id}"
    if not is_public:
        recipients = [user_id for user_id in recipients if user_id != beneficiary_user]

    return _drafts(
        recipients, "document_added", "New documents",
        f"{count} document(s) added to {entity_label.replace('_', ' ')}", url, record.id,
    )


def admin_recipients(db: Session) -> List[str]:
    """Ids of every active admin / super admin account"""
    rows = db.query(User.id).filter(
        User.user_type == UserType.STAFF,
        User.role.in_([Role.ADMIN, Role.SUPER_ADMIN]),
        User.is_active == True,  # noqa: E712
    ).all()
    return [row[0] for row in rows]


# =============================================================================
# DELIVERY
# =============================================================================

def write_notifications(db: Session, drafts: Iterable[NotificationDraft]) -> int:
    """Stage one Notification row per draft in the given session"""
    count = 0
    for draft in drafts:
        db.add(Notification(
            user_id=draft.user_id,
            type=draft.type,
            title=draft.title,
            message=draft.message,
            url=draft.url,
            related_entity_id=draft.related_entity_id,
        ))
        count += 1
    return count


def deliver_notifications(drafts: Sequence[NotificationDraft]) -> int:
    """
    Persist drafts in a fresh session. Never raises.

    Returns:
        Number of notifications written (0 on failure)
    """
    if not drafts:
        return 0
    try:
        with get_db_session() as db:
            count = write_notifications(db, drafts)
        logger.info(f"Delivered {count} notification(s)")
        return count
    except Exception:
        logger.exception(f"Notification delivery failed for {len(drafts)} draft(s)")
        return 0


# =============================================================================
# RECIPIENT-SIDE OPERATIONS
# =============================================================================

def list_notifications(db: Session, principal: Principal, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == principal.user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, principal: Principal, notification_id: str) -> Notification:
    """Mark one of the caller's notifications read; anyone else's is NotFound"""
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == principal.user_id,
    ).first()
    if notification is None:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        db.commit()
    return notification


def mark_all_read(db: Session, principal: Principal) -> int:
    updated = db.query(Notification).filter(
        Notification.user_id == principal.user_id,
        Notification.is_read == False,  # noqa: E712
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    return updated
