"""
tasks/models.py -- Domain dataclasses for tasks, comments and categories.

These are pure data containers with zero logic. Permission decisions live in
auth/access.py; persistence lives in tasks/store.py.

id is None before a record is written to the database.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class TaskPriority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class TaskStatus(IntEnum):
    PENDING = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4


@dataclass
class TaskItem:
    """A unit of work.

    created_by is set once from the creating principal and never changes.
    assigned_to is optional; an assignee may read, update and complete the
    task but not delete it.
    """

    title: str
    created_by: int
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[str] = None  # ISO 8601
    assigned_to: Optional[int] = None
    category_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None
    # Display-only, filled by joins on read
    created_by_name: str = ""
    assigned_to_name: Optional[str] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None


@dataclass
class TaskComment:
    task_id: int
    user_id: int
    content: str
    id: Optional[int] = None
    created_at: str = ""
    user_name: str = ""


@dataclass
class Category:
    """A label for grouping tasks. Deleting a category only clears is_active."""

    name: str
    description: Optional[str] = None
    color: str = "#007bff"
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""
    task_count: int = 0


@dataclass
class TaskFilter:
    """Listing criteria. All filters are optional and combine with AND."""

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category_id: Optional[int] = None
    assigned_to: Optional[int] = None
    due_from: Optional[str] = None
    due_to: Optional[str] = None
    search: Optional[str] = None
    sort_by: str = "created_at"  # "title" | "priority" | "status" | "due_date" | "created_at"
    descending: bool = True
    page: int = 1
    page_size: int = 10
