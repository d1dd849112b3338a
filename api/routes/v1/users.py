"""
api/routes/v1/users.py -- User record administration.

Routes:
  GET    /api/v1/users              -- list active users (a User sees only themselves)
  GET    /api/v1/users/stats        -- user counters (Manager/Admin)
  GET    /api/v1/users/{id}         -- one user (a User may only fetch themselves)
  PUT    /api/v1/users/{id}/role    -- change role (Admin, never self)
  DELETE /api/v1/users/{id}         -- deactivate (Admin, never self)
  POST   /api/v1/users/{id}/activate -- reactivate (Admin, never self)

Users are never physically deleted. Deactivation and revocation of every
refresh token of the target happen in one transaction, so a deactivated user
can neither log in nor refresh an existing session.

Every mutation asks auth.access.authorize_user_admin() BEFORE touching the
store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request

from api.errors import http_error, not_found
from api.models import MessageResponse, RoleUpdate, UserResponse, UserStatsResponse
from auth.access import authorize_user_admin, can_view_user
from auth.dependencies import get_current_principal, require_roles
from auth.ledger import TokenLedger
from auth.models import Principal, Role
from auth.store import UserStore
from core.db import to_iso
from core.result import Err, ErrorKind

logger = logging.getLogger("taskmanager.api")

router = APIRouter()

_require_staff = require_roles(Role.ADMIN, Role.MANAGER)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, principal: Principal = Depends(get_current_principal)) -> list[UserResponse]:
    store: UserStore = request.app.state.user_store
    only_id = None if principal.is_privileged else principal.user_id
    return [UserResponse.from_user(u) for u in store.list_users(active_only=True, only_id=only_id)]


@router.get("/users/stats", response_model=UserStatsResponse)
def user_stats(request: Request, principal: Principal = Depends(_require_staff)) -> UserStatsResponse:
    store: UserStore = request.app.state.user_store
    now = datetime.now(timezone.utc)
    stats = store.get_stats(since_week=to_iso(now - timedelta(days=7)), since_month=to_iso(now - timedelta(days=30)))
    return UserStatsResponse(**stats)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, principal: Principal = Depends(get_current_principal)) -> UserResponse:
    if not can_view_user(principal, user_id):
        raise http_error(Err(ErrorKind.FORBIDDEN, "You may only view your own account."))
    store: UserStore = request.app.state.user_store
    user = store.get_by_id(user_id)
    if user is None or not user.is_active:
        raise not_found("User not found.")
    return UserResponse.from_user(user)


@router.put("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    principal: Principal = Depends(get_current_principal),
) -> UserResponse:
    """Change another user's role.

    The new role takes effect in access tokens minted from the next login or
    refresh; tokens already issued keep their role claim until they expire.
    """
    decision = authorize_user_admin(principal, user_id)
    if not decision.ok:
        raise http_error(decision)
    store: UserStore = request.app.state.user_store
    target = store.get_by_id(user_id)
    if target is None or not target.is_active:
        raise not_found("User not found.")
    store.update_user(user_id, role=body.role)
    logger.info("User %d changed role of user %d to %s", principal.user_id, user_id, body.role.value)
    target.role = body.role
    return UserResponse.from_user(target)


@router.delete("/users/{user_id}", response_model=MessageResponse)
def deactivate_user(
    request: Request, user_id: int, principal: Principal = Depends(get_current_principal)
) -> MessageResponse:
    decision = authorize_user_admin(principal, user_id)
    if not decision.ok:
        raise http_error(decision)
    store: UserStore = request.app.state.user_store
    ledger: TokenLedger = request.app.state.ledger
    if store.get_by_id(user_id) is None:
        raise not_found("User not found.")
    with store.engine.begin() as conn:
        store.update_user(user_id, conn=conn, is_active=False)
        revoked = ledger.revoke_all_for_user(user_id, conn=conn)
    logger.info("User %d deactivated user %d (%d session(s) revoked)", principal.user_id, user_id, revoked)
    return MessageResponse(message="User deactivated.")


@router.post("/users/{user_id}/activate", response_model=MessageResponse)
def activate_user(
    request: Request, user_id: int, principal: Principal = Depends(get_current_principal)
) -> MessageResponse:
    decision = authorize_user_admin(principal, user_id)
    if not decision.ok:
        raise http_error(decision)
    store: UserStore = request.app.state.user_store
    if not store.update_user(user_id, is_active=True):
        raise not_found("User not found.")
    logger.info("User %d activated user %d", principal.user_id, user_id)
    return MessageResponse(message="User activated.")
