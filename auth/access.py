"""
auth/access.py -- Access Control Evaluator.

Pure functions over (principal, resource, operation). No I/O, no side
effects: callers load the resource, ask for a decision, and only then mutate.

Data scope:
  Admin and Manager act on every task. A User acts only on tasks they created
  or are assigned to, and may delete only tasks they created. scope() is the
  single place that encodes this; list filtering and per-task checks both go
  through it.

Existence hiding:
  For tasks, "does not exist" and "exists but not yours" both yield
  NOT_FOUND_OR_FORBIDDEN. authorize_task() therefore accepts None for a
  missing task and answers exactly as it would for a forbidden one.

Administrative rules:
  Category create -> Manager or Admin; category delete -> Admin; read -> any.
  Only an Admin changes another user's role or activation, and never their
  own (checked before any mutation).

Layer rule: no imports from api/. tasks.models is pure data and may be
imported here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import Table, or_
from sqlalchemy.sql.elements import ColumnElement

from auth.models import Principal, Role
from core.result import Err, ErrorKind, Ok, Result
from tasks.models import TaskComment, TaskItem

_NOT_FOUND = "Task not found."


class TaskOperation(str, Enum):
    READ = "read"
    UPDATE = "update"
    COMPLETE = "complete"
    DELETE = "delete"
    COMMENT = "comment"


class CategoryOperation(str, Enum):
    READ = "read"
    CREATE = "create"
    DELETE = "delete"


# ---------------------------------------------------------------------------
# Task scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskScope:
    """Which tasks a principal may see.

    owner_id None means unrestricted. Usable as a Python predicate over
    TaskItem and as a SQL where-clause over the tasks table, so in-memory and
    database filtering cannot drift apart.
    """

    owner_id: Optional[int] = None

    @property
    def unrestricted(self) -> bool:
        return self.owner_id is None

    def __call__(self, task: TaskItem) -> bool:
        if self.owner_id is None:
            return True
        return task.created_by == self.owner_id or task.assigned_to == self.owner_id

    def clause(self, table: Table) -> Optional[ColumnElement]:
        """WHERE fragment for a table with created_by / assigned_to columns, or None."""
        if self.owner_id is None:
            return None
        return or_(table.c.created_by == self.owner_id, table.c.assigned_to == self.owner_id)


def scope(principal: Principal) -> TaskScope:
    if principal.role in (Role.ADMIN, Role.MANAGER):
        return TaskScope()
    return TaskScope(owner_id=principal.user_id)


def filter_tasks(principal: Principal, tasks: list[TaskItem]) -> list[TaskItem]:
    visible = scope(principal)
    return [t for t in tasks if visible(t)]


# ---------------------------------------------------------------------------
# Task decisions
# ---------------------------------------------------------------------------


def authorize_task(principal: Principal, task: TaskItem | None, operation: TaskOperation) -> Result[TaskItem]:
    """Decide whether principal may perform operation on task.

    Returns Ok(task) when permitted, Err(NOT_FOUND_OR_FORBIDDEN) when the task
    is missing or not permitted.
    """
    if task is None:
        return Err(ErrorKind.NOT_FOUND_OR_FORBIDDEN, _NOT_FOUND)
    if operation == TaskOperation.DELETE:
        permitted = principal.is_privileged or task.created_by == principal.user_id
    else:
        permitted = scope(principal)(task)
    if not permitted:
        return Err(ErrorKind.NOT_FOUND_OR_FORBIDDEN, _NOT_FOUND)
    return Ok(task)


def authorize_comment_delete(principal: Principal, comment: TaskComment | None) -> Result[TaskComment]:
    """The comment's author, or any Admin/Manager, may delete it."""
    if comment is None:
        return Err(ErrorKind.NOT_FOUND_OR_FORBIDDEN, "Comment not found.")
    if principal.is_privileged or comment.user_id == principal.user_id:
        return Ok(comment)
    return Err(ErrorKind.NOT_FOUND_OR_FORBIDDEN, "Comment not found.")


# ---------------------------------------------------------------------------
# Category decisions
# ---------------------------------------------------------------------------

_CATEGORY_ROLES: dict[CategoryOperation, frozenset[Role]] = {
    CategoryOperation.READ: frozenset(Role),
    CategoryOperation.CREATE: frozenset({Role.MANAGER, Role.ADMIN}),
    CategoryOperation.DELETE: frozenset({Role.ADMIN}),
}


def authorize_category(principal: Principal, operation: CategoryOperation) -> Result[None]:
    if principal.role in _CATEGORY_ROLES[operation]:
        return Ok(None)
    return Err(ErrorKind.FORBIDDEN, "Insufficient role.")


# ---------------------------------------------------------------------------
# User record decisions
# ---------------------------------------------------------------------------


def authorize_user_admin(principal: Principal, target_user_id: int) -> Result[None]:
    """Role changes and (de)activation: Admin only, never on oneself."""
    if principal.role != Role.ADMIN:
        return Err(ErrorKind.FORBIDDEN, "Admin access required.")
    if principal.user_id == target_user_id:
        return Err(ErrorKind.SELF_MODIFICATION_DENIED, "You cannot modify your own role or activation.")
    return Ok(None)


def can_view_user(principal: Principal, target_user_id: int) -> bool:
    """Admin/Manager view any user record; a User only their own."""
    return principal.is_privileged or principal.user_id == target_user_id
