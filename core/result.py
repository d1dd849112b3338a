"""
core/result.py -- Explicit success/failure values for the auth and access layers.

Authentication and authorization failures are expected outcomes, not faults.
They travel as Err values so callers branch on them explicitly instead of
catching exceptions. Infrastructure failures (SQLAlchemyError) are the only
thing raised by the stores, and the Session Manager folds those into
Err(ErrorKind.INTERNAL) at its boundary.

Usage:
    result = validate_access_token(token)
    if not result.ok:
        return unauthorized(result.kind)
    principal = result.value

Layer rule: core/ is the kernel. No imports from api/, auth/ or tasks/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_TAKEN = "email_taken"
    PASSWORD_TOO_LONG = "password_too_long"
    INVALID_TOKEN = "invalid_token"  # bad signature or malformed
    EXPIRED_TOKEN = "expired_token"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"  # absent or revoked
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    FORBIDDEN = "forbidden"
    # Tasks deliberately merge "does not exist" and "exists but not yours"
    # so the response never leaks existence.
    NOT_FOUND_OR_FORBIDDEN = "not_found_or_forbidden"
    SELF_MODIFICATION_DENIED = "self_modification_denied"
    INTERNAL = "internal_error"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """A typed failure.

    message is safe to show to the caller. reason is an optional
    machine-readable refinement (e.g. "invalid_signature" vs "malformed" for
    INVALID_TOKEN) meant for logs and tests, never for leaking store details.
    """

    kind: ErrorKind
    message: str = ""
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
