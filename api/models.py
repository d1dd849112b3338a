"""
API request and response models for the TaskManager REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
tasks/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)

from auth.models import AuthResult, Role, User, UserSummary
from auth.tokens import PASSWORD_MAX_BYTES, password_too_long
from core.db import to_iso
from tasks.models import Category, TaskComment, TaskItem, TaskPriority, TaskStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PASSWORD_SPECIALS = "@$!%*?&#+-=_"
_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


def check_password_policy(value: str) -> str:
    """At least one lowercase, one uppercase, one digit and one special character.

    Also caps the UTF-8 length at what bcrypt hashes without truncation.
    """
    if password_too_long(value):
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain a lowercase letter.")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain an uppercase letter.")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain a digit.")
    if not any(ch in PASSWORD_SPECIALS for ch in value):
        raise ValueError(f"Password must contain one of {PASSWORD_SPECIALS}.")
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_iso(value) if value is not None else None


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


# Only identifying fields are trimmed. Passwords are compared byte for byte.
TrimmedEmail = Annotated[EmailStr, BeforeValidator(_strip)]
DisplayName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: TrimmedEmail
    password: str = Field(min_length=1, max_length=128)
    remember_me: bool = False


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    The password policy mirrors the account form: minimum length 6 plus the
    character classes enforced by check_password_policy().
    """

    name: DisplayName
    email: TrimmedEmail
    password: str = Field(min_length=6, max_length=128)
    confirm_password: str = Field(max_length=128)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh. access_token may be expired."""

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=6, max_length=128)
    confirm_new_password: str = Field(max_length=128)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_new_password:
            raise ValueError("Passwords do not match.")
        return self


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    created_at: str
    last_login: Optional[str] = None
    is_active: Optional[bool] = None

    @classmethod
    def from_summary(cls, summary: UserSummary) -> "UserResponse":
        return cls(
            id=summary.id,
            name=summary.name,
            email=summary.email,
            role=summary.role,
            created_at=summary.created_at,
            last_login=summary.last_login,
        )

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role.value,
            created_at=user.created_at,
            last_login=user.last_login,
            is_active=user.is_active,
        )


class AuthResponse(BaseModel):
    """Response for login, register and refresh -- success and failure alike.

    On failure only success=false and message are filled; tokens and user are
    omitted.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None
    user: Optional[UserResponse] = None

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            success=result.success,
            message=result.message,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
            user=UserResponse.from_summary(result.user) if result.user else None,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ValidateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    user_id: Optional[int] = None
    role: Optional[str] = None


class EmailCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    taken: bool


class SessionResponse(BaseModel):
    """One live refresh-token row. The token string itself is never returned."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    expires_at: str
    current: bool


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class RoleUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}/role."""

    role: Role


class UserStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    total_admins: int
    total_managers: int
    total_regular_users: int
    users_last_week: int
    users_last_month: int


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    """Request body for POST /api/v1/tasks. created_by comes from the token."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None
    category_id: Optional[int] = None

    def to_task(self, created_by: int) -> TaskItem:
        return TaskItem(
            title=self.title,
            description=self.description,
            priority=self.priority,
            due_date=_iso(self.due_date),
            assigned_to=self.assigned_to,
            category_id=self.category_id,
            created_by=created_by,
        )


class TaskUpdate(BaseModel):
    """Request body for PUT /api/v1/tasks/{id} -- full replacement of editable fields."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None
    category_id: Optional[int] = None

    def to_fields(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": _iso(self.due_date),
            "assigned_to": self.assigned_to,
            "category_id": self.category_id,
        }


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str
    priority: int
    priority_name: str
    status: int
    status_name: str
    due_date: Optional[str]
    created_at: str
    completed_at: Optional[str]
    updated_at: Optional[str]
    created_by: int
    created_by_name: str
    assigned_to: Optional[int]
    assigned_to_name: Optional[str]
    category_id: Optional[int]
    category_name: Optional[str]
    category_color: Optional[str]

    @classmethod
    def from_task(cls, task: TaskItem) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            priority=int(task.priority),
            priority_name=task.priority.name.title(),
            status=int(task.status),
            status_name=task.status.name.replace("_", " ").title(),
            due_date=task.due_date,
            created_at=task.created_at,
            completed_at=task.completed_at,
            updated_at=task.updated_at,
            created_by=task.created_by,
            created_by_name=task.created_by_name,
            assigned_to=task.assigned_to,
            assigned_to_name=task.assigned_to_name,
            category_id=task.category_id,
            category_name=task.category_name,
            category_color=task.category_color,
        )


class TaskStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    overdue_tasks: int
    due_soon_tasks: int
    high_priority_tasks: int
    critical_priority_tasks: int
    completion_rate: float


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    task_id: int
    user_id: int
    user_name: str
    content: str
    created_at: str

    @classmethod
    def from_comment(cls, comment: TaskComment) -> "CommentResponse":
        return cls(
            id=comment.id,
            task_id=comment.task_id,
            user_id=comment.user_id,
            user_name=comment.user_name,
            content=comment.content,
            created_at=comment.created_at,
        )


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default="#007bff", pattern=_COLOR_PATTERN)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    color: str
    is_active: bool
    created_at: str
    task_count: int

    @classmethod
    def from_category(cls, category: Category) -> "CategoryResponse":
        return cls(
            id=category.id,
            name=category.name,
            description=category.description,
            color=category.color,
            is_active=category.is_active,
            created_at=category.created_at,
            task_count=category.task_count,
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
