"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an "Authorization: Bearer <access token>" header.
The token is validated by auth.tokens.validate_access_token() and rebuilt into
a Principal; the user behind it must still exist and be active.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_roles() wraps get_current_principal() and raises
HTTP 403 when the role does not match.

Layer rule: no imports from api/ or tasks/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import HTTPException, Request

from auth.models import Principal, Role
from auth.tokens import validate_access_token

logger = logging.getLogger("taskmanager.auth")


def bearer_token(request: Request) -> str | None:
    """Return the raw token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_principal(request: Request) -> Principal | None:
    """Attempt to authenticate the request via its Bearer token.

    Returns the Principal on success, None on any failure. Never raises --
    callers that need a hard 401 should use get_current_principal().
    """
    token = bearer_token(request)
    if not token:
        return None

    validated = validate_access_token(token)
    if not validated.ok:
        logger.debug("Bearer token rejected: %s", validated.reason or validated.kind.value)
        return None

    principal = validated.value
    user = request.app.state.user_store.get_by_id(principal.user_id)
    if user is None or not user.is_active:
        return None
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits only the given roles (401 first, then 403)."""
    allowed = frozenset(roles)

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if principal.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role."},
            )
        return principal

    return dependency
