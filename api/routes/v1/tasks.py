"""
api/routes/v1/tasks.py -- Task and comment REST endpoints.

Routes:
  GET    /api/v1/tasks                    -- list tasks in the caller's scope (filter, sort, page)
  POST   /api/v1/tasks                    -- create a task owned by the caller
  GET    /api/v1/tasks/stats              -- counters over the caller's scope
  GET    /api/v1/tasks/{id}               -- one task
  PUT    /api/v1/tasks/{id}               -- replace editable fields
  DELETE /api/v1/tasks/{id}               -- delete (creator, Manager or Admin)
  POST   /api/v1/tasks/{id}/complete      -- mark completed
  GET    /api/v1/tasks/{id}/comments      -- comments of a visible task
  POST   /api/v1/tasks/{id}/comments      -- comment on a visible task
  DELETE /api/v1/tasks/comments/{id}      -- delete a comment (author, Manager or Admin)

Every per-task route follows the same sequence: load the task with no scope,
ask auth.access.authorize_task(), and only then read or write. A task outside
the caller's scope answers 404 exactly like a missing one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.errors import http_error
from api.models import (
    CommentCreate,
    CommentResponse,
    MessageResponse,
    TaskCreate,
    TaskResponse,
    TaskStatsResponse,
    TaskUpdate,
)
from auth.access import TaskOperation, authorize_comment_delete, authorize_task, scope
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.store import UserStore
from core.db import to_iso
from tasks.models import TaskComment, TaskFilter, TaskItem, TaskPriority, TaskStatus
from tasks.store import TaskStore

logger = logging.getLogger("taskmanager.api")

router = APIRouter()


def _authorized_task(request: Request, principal: Principal, task_id: int, operation: TaskOperation) -> TaskItem:
    store: TaskStore = request.app.state.task_store
    decision = authorize_task(principal, store.get_task(task_id), operation)
    if not decision.ok:
        raise http_error(decision)
    return decision.value


def _check_assignee(request: Request, assigned_to: Optional[int]) -> None:
    if assigned_to is None:
        return
    users: UserStore = request.app.state.user_store
    assignee = users.get_by_id(assigned_to)
    if assignee is None or not assignee.is_active:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_assignee", "message": "Assigned user not found."},
        )


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    category_id: Optional[int] = None,
    assigned_to: Optional[int] = None,
    due_from: Optional[datetime] = None,
    due_to: Optional[datetime] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    sort_by: str = Query(default="created_at", pattern="^(title|priority|status|due_date|created_at)$"),
    descending: bool = True,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
) -> list[TaskResponse]:
    """List tasks visible to the caller. A User sees only tasks they created or are assigned to.

    due_from / due_to bound the due date inclusively; tasks without one drop out.
    """
    store: TaskStore = request.app.state.task_store
    criteria = TaskFilter(
        status=status,
        priority=priority,
        category_id=category_id,
        assigned_to=assigned_to,
        due_from=to_iso(due_from) if due_from else None,
        due_to=to_iso(due_to) if due_to else None,
        search=search,
        sort_by=sort_by,
        descending=descending,
        page=page,
        page_size=page_size,
    )
    return [TaskResponse.from_task(t) for t in store.list_tasks(scope(principal), criteria)]


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request, body: TaskCreate, principal: Principal = Depends(get_current_principal)
) -> TaskResponse:
    """Create a task. created_by is always the caller, whatever the body says."""
    _check_assignee(request, body.assigned_to)
    store: TaskStore = request.app.state.task_store
    task_id = store.create_task(body.to_task(created_by=principal.user_id))
    logger.info("User %d created task %d", principal.user_id, task_id)
    return TaskResponse.from_task(store.get_task(task_id))


@router.get("/tasks/stats", response_model=TaskStatsResponse)
def task_stats(request: Request, principal: Principal = Depends(get_current_principal)) -> TaskStatsResponse:
    store: TaskStore = request.app.state.task_store
    return TaskStatsResponse(**store.get_stats(scope(principal)))


# ---------------------------------------------------------------------------
# Single-task endpoints
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(request: Request, task_id: int, principal: Principal = Depends(get_current_principal)) -> TaskResponse:
    return TaskResponse.from_task(_authorized_task(request, principal, task_id, TaskOperation.READ))


@router.put("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    task = _authorized_task(request, principal, task_id, TaskOperation.UPDATE)
    _check_assignee(request, body.assigned_to)
    store: TaskStore = request.app.state.task_store
    store.update_task(task, **body.to_fields())
    return TaskResponse.from_task(store.get_task(task_id))


@router.delete("/tasks/{task_id}", response_model=MessageResponse)
def delete_task(
    request: Request, task_id: int, principal: Principal = Depends(get_current_principal)
) -> MessageResponse:
    """Delete a task and its comments. An assignee who did not create the task gets 404."""
    _authorized_task(request, principal, task_id, TaskOperation.DELETE)
    store: TaskStore = request.app.state.task_store
    store.delete_task(task_id)
    logger.info("User %d deleted task %d", principal.user_id, task_id)
    return MessageResponse(message="Task deleted.")


@router.post("/tasks/{task_id}/complete", response_model=TaskResponse)
def complete_task(
    request: Request, task_id: int, principal: Principal = Depends(get_current_principal)
) -> TaskResponse:
    _authorized_task(request, principal, task_id, TaskOperation.COMPLETE)
    store: TaskStore = request.app.state.task_store
    store.complete_task(task_id)
    return TaskResponse.from_task(store.get_task(task_id))


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/comments", response_model=list[CommentResponse])
def list_comments(
    request: Request, task_id: int, principal: Principal = Depends(get_current_principal)
) -> list[CommentResponse]:
    _authorized_task(request, principal, task_id, TaskOperation.READ)
    store: TaskStore = request.app.state.task_store
    return [CommentResponse.from_comment(c) for c in store.list_comments(task_id)]


@router.post("/tasks/{task_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    request: Request,
    task_id: int,
    body: CommentCreate,
    principal: Principal = Depends(get_current_principal),
) -> CommentResponse:
    _authorized_task(request, principal, task_id, TaskOperation.COMMENT)
    store: TaskStore = request.app.state.task_store
    comment_id = store.add_comment(TaskComment(task_id=task_id, user_id=principal.user_id, content=body.content))
    return CommentResponse.from_comment(store.get_comment(comment_id))


@router.delete("/tasks/comments/{comment_id}", response_model=MessageResponse)
def delete_comment(
    request: Request, comment_id: int, principal: Principal = Depends(get_current_principal)
) -> MessageResponse:
    store: TaskStore = request.app.state.task_store
    decision = authorize_comment_delete(principal, store.get_comment(comment_id))
    if not decision.ok:
        raise http_error(decision)
    store.delete_comment(comment_id)
    return MessageResponse(message="Comment deleted.")
