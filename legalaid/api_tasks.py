"""
Task Endpoints
==============

- POST   /api/tasks                        - Admin
- GET    /api/tasks                        - Visible tasks
- GET    /api/tasks/{task_id}
- PATCH  /api/tasks/{task_id}              - Admin any field, linked lawyer status only
- DELETE /api/tasks/{task_id}              - Admin
- GET    /api/tasks/{task_id}/attachments
- POST   /api/tasks/{task_id}/attachments
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from .auth import Principal
from .authz import TASK_GUARD, Action, EntityKind
from .db.models import Task, TaskStatus
from .deps import get_db_dependency, get_or_404, require_principal
from .documents import DocumentWorkflow
from .notifications import deliver_notifications, plan_attachment, plan_task_event
from .schemas import AttachDocumentsRequest, TaskCreateRequest, TaskUpdateRequest
from .visibility import project, project_documents, project_many, visible_documents, visible_query
from .workflow_tasks import TaskWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


def _readable_task(db: Session, principal: Principal, task_id: str) -> Task:
    TASK_GUARD.ensure(principal, Action.READ)
    task = get_or_404(db, Task, task_id)
    TASK_GUARD.ensure(principal, Action.READ, task)
    return task


@router.post("", status_code=201)
async def create_task(
    body: TaskCreateRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    result = TaskWorkflow(db).create(principal, body.model_dump(exclude_unset=True))
    background_tasks.add_task(
        deliver_notifications,
        plan_task_event(result.record, principal.user_id, "task_assigned", "A new task has been assigned"),
    )
    return project(principal, EntityKind.TASK, result.record)


@router.get("")
async def list_tasks(
    status: Optional[TaskStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    query = visible_query(db, principal, EntityKind.TASK)
    if status:
        query = query.filter(Task.status == status)
    tasks = query.order_by(Task.created_at.desc()).offset(offset).limit(limit).all()
    return project_many(principal, EntityKind.TASK, tasks)


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    task = _readable_task(db, principal, task_id)
    payload = project(principal, EntityKind.TASK, task)
    payload["attachments"] = project_documents(visible_documents(db, principal, EntityKind.TASK, task))
    return payload


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdateRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    task = _readable_task(db, principal, task_id)
    result = TaskWorkflow(db).update(principal, task, body.model_dump(exclude_unset=True))
    if result is not None:
        background_tasks.add_task(
            deliver_notifications,
            plan_task_event(
                result.record, principal.user_id, "task_status_changed",
                f"Task status changed from {result.from_status} to {result.to_status}",
            ),
        )
    return project(principal, EntityKind.TASK, task)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    task = _readable_task(db, principal, task_id)
    TaskWorkflow(db).delete(principal, task)
    return {"deleted": True, "id": task_id}


@router.get("/{task_id}/attachments")
async def list_task_attachments(
    task_id: str,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    task = _readable_task(db, principal, task_id)
    return project_documents(visible_documents(db, principal, EntityKind.TASK, task))


@router.post("/{task_id}/attachments", status_code=201)
async def attach_task_documents(
    task_id: str,
    body: AttachDocumentsRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    task = _readable_task(db, principal, task_id)
    documents = DocumentWorkflow(db).attach(
        principal, EntityKind.TASK, task, [item.model_dump() for item in body.documents], body.is_public,
    )
    background_tasks.add_task(
        deliver_notifications,
        plan_attachment("task", task, principal.user_id, len(documents), documents[0].is_public),
    )
    return project_documents(documents)
