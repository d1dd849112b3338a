"""
tasks/store.py -- SQLAlchemy Core persistence for tasks, comments and categories.

Pattern: Repository + Data Mapper (same as auth/store.py). TaskStore is the
repository; the _row_to_* functions map rows into tasks/models.py dataclasses.

The store never decides permissions. Listing and statistics take a TaskScope
from auth.access.scope(); single-task writes are only called by routes after
auth.access.authorize_task() returned Ok. A User-role principal therefore can
never reach a row outside their scope through this class.

TaskStore shares the auth Engine: task rows join the users table for display
names (created_by_name / assigned_to_name).

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    column,
    delete,
    func,
    or_,
    select,
    table,
)
from sqlalchemy.engine import Engine

from auth.access import TaskScope
from core.db import now_iso, to_iso
from tasks.models import Category, TaskComment, TaskFilter, TaskItem, TaskPriority, TaskStatus

logger = logging.getLogger("taskmanager.tasks")

# Seeded on first start when the categories table is empty.
DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("Development", "Development work", "#28a745"),
    ("Bug Fix", "Bug fixes", "#dc3545"),
    ("Documentation", "Documentation tasks", "#17a2b8"),
    ("Testing", "Testing tasks", "#ffc107"),
    ("Meeting", "Meetings and discussions", "#6c757d"),
]

# Tasks due within this window (and not completed) count as "due soon".
_DUE_SOON = timedelta(days=2)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", String(500)),
    Column("color", String(7), nullable=False, server_default="#007bff"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("priority", Integer, nullable=False, server_default=str(int(TaskPriority.MEDIUM))),
    Column("status", Integer, nullable=False, server_default=str(int(TaskStatus.PENDING))),
    Column("due_date", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("completed_at", String(32)),
    Column("updated_at", String(32)),
    Column("created_by", Integer, nullable=False, index=True),
    Column("assigned_to", Integer, index=True),
    Column("category_id", Integer),
)

_comments = Table(
    "task_comments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("content", String(1000), nullable=False),
    Column("created_at", String(32), nullable=False),
)

# Lightweight view of the users table owned by auth/store.py. Only the columns
# needed for display-name joins.
_users = table("users", column("id"), column("name"))
_creator = _users.alias("creator")
_assignee = _users.alias("assignee")

_SORT_COLUMNS = {
    "title": _tasks.c.title,
    "priority": _tasks.c.priority,
    "status": _tasks.c.status,
    "due_date": _tasks.c.due_date,
    "created_at": _tasks.c.created_at,
}

# Fields update_task() copies from the caller.
_EDITABLE_FIELDS = ("title", "description", "priority", "status", "due_date", "assigned_to", "category_id")


def _task_select():
    return select(
        _tasks,
        _creator.c.name.label("created_by_name"),
        _assignee.c.name.label("assigned_to_name"),
        _categories.c.name.label("category_name"),
        _categories.c.color.label("category_color"),
    ).select_from(
        _tasks.outerjoin(_creator, _creator.c.id == _tasks.c.created_by)
        .outerjoin(_assignee, _assignee.c.id == _tasks.c.assigned_to)
        .outerjoin(_categories, _categories.c.id == _tasks.c.category_id)
    )


def _scoped(query, visible: TaskScope):
    clause = visible.clause(_tasks)
    return query if clause is None else query.where(clause)


class TaskStore:
    """Repository for TaskItem, TaskComment and Category.

    Usage:
        store = TaskStore(user_store.engine)
        task_id = store.create_task(TaskItem(title="Write docs", created_by=user_id))
        tasks = store.list_tasks(scope(principal), TaskFilter(status=TaskStatus.PENDING))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def seed_default_categories(self) -> int:
        """Insert DEFAULT_CATEGORIES if no category exists yet. Returns rows inserted."""
        with self.engine.begin() as conn:
            existing = conn.execute(select(func.count()).select_from(_categories)).scalar() or 0
            if existing:
                return 0
            stamp = now_iso()
            conn.execute(
                _categories.insert(),
                [
                    {"name": name, "description": desc, "color": color, "is_active": 1, "created_at": stamp}
                    for name, desc, color in DEFAULT_CATEGORIES
                ],
            )
        logger.info("Seeded %d default categories", len(DEFAULT_CATEGORIES))
        return len(DEFAULT_CATEGORIES)

    def list_categories(self) -> list[Category]:
        """Active categories ordered by name, each with its task count."""
        task_count = (
            select(func.count()).select_from(_tasks).where(_tasks.c.category_id == _categories.c.id).scalar_subquery()
        )
        query = (
            select(_categories, task_count.label("task_count"))
            .where(_categories.c.is_active == 1)
            .order_by(_categories.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_category(r) for r in rows]

    def get_category(self, category_id: int) -> Optional[Category]:
        with self.engine.connect() as conn:
            row = conn.execute(_categories.select().where(_categories.c.id == category_id)).fetchone()
        return _row_to_category(row) if row is not None else None

    def create_category(self, category: Category) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _categories.insert().values(
                    name=category.name,
                    description=category.description,
                    color=category.color,
                    is_active=1,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def deactivate_category(self, category_id: int) -> bool:
        """Soft delete. Tasks keep their category_id. False if not found."""
        with self.engine.begin() as conn:
            result = conn.execute(_categories.update().where(_categories.c.id == category_id).values(is_active=0))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: TaskItem) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    title=task.title,
                    description=task.description,
                    priority=int(task.priority),
                    status=int(TaskStatus.PENDING),
                    due_date=task.due_date,
                    created_at=now_iso(),
                    created_by=task.created_by,
                    assigned_to=task.assigned_to,
                    category_id=task.category_id,
                )
            )
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int) -> Optional[TaskItem]:
        """Fetch a task by id with no scope applied. Pass the result to authorize_task()."""
        with self.engine.connect() as conn:
            row = conn.execute(_task_select().where(_tasks.c.id == task_id)).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, visible: TaskScope, criteria: TaskFilter | None = None) -> list[TaskItem]:
        """Return one page of tasks inside visible, filtered and sorted by criteria."""
        criteria = criteria or TaskFilter()
        query = _scoped(_task_select(), visible)

        if criteria.status is not None:
            query = query.where(_tasks.c.status == int(criteria.status))
        if criteria.priority is not None:
            query = query.where(_tasks.c.priority == int(criteria.priority))
        if criteria.category_id is not None:
            query = query.where(_tasks.c.category_id == criteria.category_id)
        if criteria.assigned_to is not None:
            query = query.where(_tasks.c.assigned_to == criteria.assigned_to)
        if criteria.due_from:
            query = query.where(_tasks.c.due_date >= criteria.due_from)
        if criteria.due_to:
            query = query.where(_tasks.c.due_date <= criteria.due_to)
        if criteria.search:
            term = f"%{criteria.search.lower()}%"
            query = query.where(
                or_(func.lower(_tasks.c.title).like(term), func.lower(_tasks.c.description).like(term))
            )

        sort_column = _SORT_COLUMNS.get(criteria.sort_by.lower(), _tasks.c.created_at)
        order = sort_column.desc() if criteria.descending else sort_column.asc()
        page = max(criteria.page, 1)
        query = query.order_by(order, _tasks.c.id).offset((page - 1) * criteria.page_size).limit(criteria.page_size)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task(self, current: TaskItem, **fields) -> bool:
        """Overwrite the editable fields of an authorized task.

        completed_at follows status: set when the task moves into COMPLETED,
        cleared when it moves out, untouched otherwise.
        """
        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown task fields: {unknown!r}")
        now = now_iso()
        values = dict(fields)
        for key in ("priority", "status"):
            if values.get(key) is not None:
                values[key] = int(values[key])
        new_status = fields.get("status")
        if new_status is not None:
            if current.status != TaskStatus.COMPLETED and new_status == TaskStatus.COMPLETED:
                values["completed_at"] = now
            elif current.status == TaskStatus.COMPLETED and new_status != TaskStatus.COMPLETED:
                values["completed_at"] = None
        values["updated_at"] = now
        with self.engine.begin() as conn:
            result = conn.execute(_tasks.update().where(_tasks.c.id == current.id).values(**values))
        return result.rowcount > 0

    def complete_task(self, task_id: int) -> bool:
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _tasks.update()
                .where(_tasks.c.id == task_id)
                .values(status=int(TaskStatus.COMPLETED), completed_at=now, updated_at=now)
            )
        return result.rowcount > 0

    def delete_task(self, task_id: int) -> bool:
        """Hard delete a task and its comments in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(delete(_comments).where(_comments.c.task_id == task_id))
            result = conn.execute(delete(_tasks).where(_tasks.c.id == task_id))
        return result.rowcount > 0

    def get_stats(self, visible: TaskScope) -> dict:
        """Dashboard counters over the tasks inside visible."""
        now = datetime.now(timezone.utc)
        now_s = to_iso(now)
        soon_s = to_iso(now + _DUE_SOON)
        open_ = _tasks.c.status != int(TaskStatus.COMPLETED)
        base = visible.clause(_tasks)

        with self.engine.connect() as conn:

            def count(*conditions) -> int:
                where = [c for c in (base, *conditions) if c is not None]
                query = select(func.count()).select_from(_tasks)
                if where:
                    query = query.where(and_(*where))
                return conn.execute(query).scalar() or 0

            stats = {
                "total_tasks": count(),
                "pending_tasks": count(_tasks.c.status == int(TaskStatus.PENDING)),
                "in_progress_tasks": count(_tasks.c.status == int(TaskStatus.IN_PROGRESS)),
                "completed_tasks": count(_tasks.c.status == int(TaskStatus.COMPLETED)),
                "overdue_tasks": count(_tasks.c.due_date.is_not(None), _tasks.c.due_date < now_s, open_),
                "due_soon_tasks": count(_tasks.c.due_date.is_not(None), _tasks.c.due_date <= soon_s, open_),
                "high_priority_tasks": count(_tasks.c.priority == int(TaskPriority.HIGH), open_),
                "critical_priority_tasks": count(_tasks.c.priority == int(TaskPriority.CRITICAL), open_),
            }
        total = stats["total_tasks"]
        stats["completion_rate"] = (stats["completed_tasks"] / total * 100) if total else 0.0
        return stats

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_comments(self, task_id: int) -> list[TaskComment]:
        """Comments of a task, oldest first. Callers authorize the task first."""
        query = (
            select(_comments, _users.c.name.label("user_name"))
            .select_from(_comments.outerjoin(_users, _users.c.id == _comments.c.user_id))
            .where(_comments.c.task_id == task_id)
            .order_by(_comments.c.created_at, _comments.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_comment(r) for r in rows]

    def add_comment(self, comment: TaskComment) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _comments.insert().values(
                    task_id=comment.task_id,
                    user_id=comment.user_id,
                    content=comment.content,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_comment(self, comment_id: int) -> Optional[TaskComment]:
        query = (
            select(_comments, _users.c.name.label("user_name"))
            .select_from(_comments.outerjoin(_users, _users.c.id == _comments.c.user_id))
            .where(_comments.c.id == comment_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_comment(row) if row is not None else None

    def delete_comment(self, comment_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(delete(_comments).where(_comments.c.id == comment_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_task(row) -> TaskItem:
    return TaskItem(
        id=row.id,
        title=row.title,
        description=row.description or "",
        priority=TaskPriority(row.priority),
        status=TaskStatus(row.status),
        due_date=row.due_date,
        created_at=row.created_at,
        completed_at=row.completed_at,
        updated_at=row.updated_at,
        created_by=row.created_by,
        assigned_to=row.assigned_to,
        category_id=row.category_id,
        created_by_name=row.created_by_name or "",
        assigned_to_name=row.assigned_to_name,
        category_name=row.category_name,
        category_color=row.category_color,
    )


def _row_to_comment(row) -> TaskComment:
    return TaskComment(
        id=row.id,
        task_id=row.task_id,
        user_id=row.user_id,
        content=row.content,
        created_at=row.created_at,
        user_name=row.user_name or "",
    )


def _row_to_category(row) -> Category:
    # task_count is only present on rows from list_categories()
    task_count = getattr(row, "task_count", 0) or 0
    return Category(
        id=row.id,
        name=row.name,
        description=row.description,
        color=row.color,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        task_count=task_count,
    )
