"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in tasks/models.py -- dataclasses own domain shape; stores and the session
manager do the work.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.result import ErrorKind


class Role(str, Enum):
    """User roles. Not a hierarchy for data scope: Manager and Admin both see
    every task, only Admin manages users and deletes categories."""

    USER = "User"
    MANAGER = "Manager"
    ADMIN = "Admin"


@dataclass
class User:
    """A registered identity.

    Users are never physically deleted. Deactivation clears is_active, which
    blocks login and refresh while preserving task ownership history.

    id is None before the record is written to the database.
    """

    name: str
    email: str  # unique, matched exactly as stored
    hashed_password: str
    role: Role = Role.USER
    id: Optional[int] = None
    is_active: bool = True
    created_at: str = ""  # ISO 8601, set by store on insert
    last_login: Optional[str] = None  # ISO 8601


@dataclass
class RefreshToken:
    """One ledger row backing a session lineage.

    token is the opaque refresh string handed to the client. jti is the id of
    the access token minted alongside it; a refresh is only honoured when both
    match. Revocation is one-way: is_revoked never goes back to False.
    """

    token: str
    jti: str
    user_id: int
    expires_at: str  # ISO 8601
    id: Optional[int] = None
    created_at: str = ""
    is_used: bool = False
    is_revoked: bool = False
    revoked_at: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, rebuilt from a validated access token on
    every request. Never persisted."""

    user_id: int
    role: Role
    jti: str

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.MANAGER)


@dataclass(frozen=True)
class IssuedAccessToken:
    token: str
    jti: str
    expires_at: str  # ISO 8601


@dataclass
class UserSummary:
    """Public view of a User. Never carries the password hash."""

    id: int
    name: str
    email: str
    role: str
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role.value,
            created_at=user.created_at,
            last_login=user.last_login,
        )


@dataclass
class AuthResult:
    """Outcome of login, register and refresh.

    On failure only success, message and error are set.
    """

    success: bool
    message: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None
    user: Optional[UserSummary] = None
    error: Optional[ErrorKind] = None

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "AuthResult":
        return cls(success=False, message=message, error=kind)
