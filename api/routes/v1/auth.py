"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/login              -- password login; returns an access/refresh pair
  POST /api/v1/auth/register           -- self-service User account + first pair
  POST /api/v1/auth/refresh            -- rotate a pair (access token may be expired)
  POST /api/v1/auth/logout             -- revoke the session bound to the caller's jti
  POST /api/v1/auth/revoke-all         -- revoke every session of the caller
  POST /api/v1/auth/change-password    -- new hash + revoke every session
  GET  /api/v1/auth/me                 -- current user info (requires auth)
  GET  /api/v1/auth/validate           -- is the presented Bearer token usable?
  GET  /api/v1/auth/check-email/{email} -- is an email already registered?
  GET  /api/v1/auth/sessions           -- caller's live refresh sessions

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit). There is no
    account lockout: repeated failures keep returning the same 401.
  Unknown email, inactive account and wrong password share one message.
  Cache-Control: no-store on every response that carries tokens.
  Refresh tokens are never echoed back by /sessions.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import EmailStr

from api.errors import status_for
from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    EmailCheckResponse,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    UserResponse,
    ValidateResponse,
)
from auth.dependencies import get_current_principal, try_get_principal
from auth.models import AuthResult, Principal
from auth.session import SessionManager
from core.config import get_settings
from core.result import ErrorKind

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:            public, rate-limited
# - POST /api/v1/auth/register:         public (disabled by SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/refresh:          public -- the pair itself is the credential
# - GET  /api/v1/auth/validate:         public -- reports on the presented token
# - GET  /api/v1/auth/check-email/...:  public, rate-limited
# - everything else:                    requires auth (get_current_principal)
router = APIRouter()


def _token_response(result: AuthResult, failure_status: int) -> JSONResponse:
    """Serialize an AuthResult. Failures keep the AuthResponse shape."""
    if result.success:
        status = 200
    elif result.error == ErrorKind.INTERNAL:
        status = status_for(ErrorKind.INTERNAL)
    else:
        status = failure_status
    resp = JSONResponse(
        status_code=status,
        content=AuthResponse.from_result(result).model_dump(exclude_none=not result.success),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a new session.

    remember_me is accepted for client compatibility; the refresh lifetime is
    always Settings.refresh_token_expire_days.
    """
    sessions: SessionManager = request.app.state.sessions
    result = sessions.login(body.email, body.password)
    return _token_response(result, failure_status=401)


@router.post("/auth/register", response_model=AuthResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a User-role account. A taken email is reported with 400."""
    if not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    sessions: SessionManager = request.app.state.sessions
    result = sessions.register(body.name, body.email, body.password)
    return _token_response(result, failure_status=400)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange an access/refresh pair for a new one. Each pair works once."""
    sessions: SessionManager = request.app.state.sessions
    result = sessions.refresh(body.access_token, body.refresh_token)
    return _token_response(result, failure_status=401)


@router.get("/auth/validate", response_model=ValidateResponse)
def validate(request: Request) -> ValidateResponse:
    principal = try_get_principal(request)
    if principal is None:
        return ValidateResponse(valid=False)
    return ValidateResponse(valid=True, user_id=principal.user_id, role=principal.role.value)


@limiter.limit(_settings.login_rate_limit)
@router.get("/auth/check-email/{email}", response_model=EmailCheckResponse)
def check_email(request: Request, email: EmailStr) -> EmailCheckResponse:
    """Report whether an address is registered, normalised the same way register stores it."""
    sessions: SessionManager = request.app.state.sessions
    return EmailCheckResponse(email=email, taken=sessions.is_email_taken(email))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    """Revoke only the session the caller's access token belongs to.

    The access token itself stays valid until it expires; it can no longer be
    refreshed.
    """
    sessions: SessionManager = request.app.state.sessions
    if not sessions.logout(principal.user_id, jti=principal.jti):
        raise HTTPException(status_code=500, detail={"code": "internal_error", "message": "Logout failed."})
    return MessageResponse(message="Logged out.")


@router.post("/auth/revoke-all", response_model=MessageResponse)
def revoke_all(request: Request, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    sessions: SessionManager = request.app.state.sessions
    if not sessions.revoke_all(principal.user_id):
        raise HTTPException(status_code=500, detail={"code": "internal_error", "message": "Revocation failed."})
    return MessageResponse(message="All sessions revoked.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Change the caller's password. Every refresh token of the caller is revoked."""
    sessions: SessionManager = request.app.state.sessions
    if not sessions.change_password(principal.user_id, body.current_password, body.new_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "password_change_failed", "message": "Current password is incorrect."},
        )
    return MessageResponse(message="Password changed. Please sign in again.")


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    sessions: SessionManager = request.app.state.sessions
    user = sessions.get_user(principal.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "Authentication required."})
    return UserResponse.from_user(user)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, principal: Principal = Depends(get_current_principal)) -> list[SessionResponse]:
    """Live (unrevoked, unexpired) sessions of the caller, newest first."""
    sessions: SessionManager = request.app.state.sessions
    rows = sessions.ledger.list_for_user(principal.user_id, active_only=True)
    return [
        SessionResponse(id=r.id, created_at=r.created_at, expires_at=r.expires_at, current=r.jti == principal.jti)
        for r in rows
    ]
