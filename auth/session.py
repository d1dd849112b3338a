"""
auth/session.py -- Session Manager: login, registration, refresh, logout, password change.

Orchestrates the Credential Store (UserStore), the Token Issuer (auth.tokens)
and the Token Ledger. Every public method returns an explicit outcome
(AuthResult or bool); authentication failures are values, never exceptions.

Session lineage:
    issued --refresh()--> rotated (old row consumed, new row issued)
    issued --logout()/change_password()--> revoked
    issued --time--> expired (enforced at refresh time, rows are not deleted)

Atomicity:
  login()           last_login stamp + new ledger row     -- one transaction
  register()        user insert + new ledger row          -- one transaction
  refresh()         consume old row + new ledger row      -- one transaction
  change_password() new hash + revoke every ledger row    -- one transaction

Error policy:
  SQLAlchemyError is caught here and only here. It is logged with the stack
  trace and surfaced as ErrorKind.INTERNAL with a generic message, so store
  details never reach the caller.

Lockout: none. Repeated bad passwords keep returning INVALID_CREDENTIALS with
the same message; brute-force throttling lives in the HTTP layer (slowapi).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.ledger import TokenLedger
from auth.models import AuthResult, IssuedAccessToken, Role, User, UserSummary
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    PasswordTooLongError,
    generate_refresh_token,
    hash_password,
    validate_expired_access_token,
    verify_password,
)
from core.config import get_settings
from core.db import now_iso, parse_iso, to_iso
from core.result import ErrorKind

logger = logging.getLogger("taskmanager.auth")

_settings = get_settings()

MSG_LOGIN_OK = "Login successful."
MSG_REGISTER_OK = "User registered successfully."
MSG_REFRESH_OK = "Token refreshed successfully."
MSG_INVALID_CREDENTIALS = "Invalid email or password."
MSG_EMAIL_TAKEN = "This email is already in use."
MSG_PASSWORD_TOO_LONG = "Password is too long."
MSG_INVALID_TOKEN = "Invalid token."
MSG_INVALID_REFRESH = "Invalid refresh token."
MSG_REFRESH_EXPIRED = "Refresh token expired."
MSG_INTERNAL = "Internal server error."


def _internal() -> AuthResult:
    return AuthResult.failure(ErrorKind.INTERNAL, MSG_INTERNAL)


class SessionManager:
    """Issues, rotates and revokes access/refresh token pairs.

    users and ledger must share one Engine; the manager opens transactions on
    users.engine and hands the connection to both stores.
    """

    def __init__(self, users: UserStore, ledger: TokenLedger) -> None:
        if users.engine is not ledger.engine:
            raise ValueError("UserStore and TokenLedger must share one engine")
        self.users = users
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refresh_expiry(self) -> str:
        return to_iso(datetime.now(timezone.utc) + timedelta(days=_settings.refresh_token_expire_days))

    def _issue_pair(self, user: User, conn) -> tuple[IssuedAccessToken, str]:
        """Mint an access/refresh pair and record the refresh row on conn."""
        access = create_access_token(user)
        refresh = generate_refresh_token()
        self.ledger.record(refresh, access.jti, user.id, self._refresh_expiry(), conn=conn)
        return access, refresh

    @staticmethod
    def _success(user: User, access: IssuedAccessToken, refresh: str, message: str) -> AuthResult:
        return AuthResult(
            success=True,
            message=message,
            access_token=access.token,
            refresh_token=refresh,
            expires_at=access.expires_at,
            user=UserSummary.from_user(user),
        )

    # ------------------------------------------------------------------
    # Login / registration
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate an active user and open a new session.

        Unknown email, inactive account and wrong password all give the same
        INVALID_CREDENTIALS result and message.
        """
        try:
            user = authenticate_user(self.users, email, password)
            if user is None:
                logger.info("Login rejected: invalid credentials")
                return AuthResult.failure(ErrorKind.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS)
            with self.users.engine.begin() as conn:
                user.last_login = self.users.update_last_login(user.id, conn=conn)
                access, refresh = self._issue_pair(user, conn)
        except SQLAlchemyError:
            logger.exception("Login failed with a store error")
            return _internal()
        logger.info("User %d logged in", user.id)
        return self._success(user, access, refresh, MSG_LOGIN_OK)

    def register(self, name: str, email: str, password: str) -> AuthResult:
        """Create a User-role account and open its first session.

        Unlike login, a taken email is reported explicitly.
        """
        try:
            if self.users.email_exists(email):
                return AuthResult.failure(ErrorKind.EMAIL_TAKEN, MSG_EMAIL_TAKEN)
            user = User(
                name=name,
                email=email,
                hashed_password=hash_password(password),
                role=Role.USER,
                is_active=True,
                created_at=now_iso(),
            )
            with self.users.engine.begin() as conn:
                user.id = self.users.create_user(user, conn=conn)
                access, refresh = self._issue_pair(user, conn)
        except IntegrityError:
            # A concurrent registration took the email between the pre-check
            # and the insert. The whole transaction was rolled back.
            logger.info("Registration lost a race on an existing email")
            return AuthResult.failure(ErrorKind.EMAIL_TAKEN, MSG_EMAIL_TAKEN)
        except PasswordTooLongError:
            return AuthResult.failure(ErrorKind.PASSWORD_TOO_LONG, MSG_PASSWORD_TOO_LONG)
        except SQLAlchemyError:
            logger.exception("Registration failed with a store error")
            return _internal()
        logger.info("User %d registered", user.id)
        return self._success(user, access, refresh, MSG_REGISTER_OK)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def refresh(self, access_token: str, refresh_token: str) -> AuthResult:
        """Exchange a (possibly expired) access token and its refresh token for a new pair.

        The old row is consumed in the same transaction that records the new
        one. Presenting the old pair again afterwards fails with
        INVALID_REFRESH_TOKEN because its row is revoked.
        """
        validated = validate_expired_access_token(access_token)
        if not validated.ok:
            logger.info("Refresh rejected: access token %s", validated.reason or validated.kind.value)
            return AuthResult.failure(ErrorKind.INVALID_TOKEN, MSG_INVALID_TOKEN)
        principal = validated.value

        try:
            with self.users.engine.begin() as conn:
                row = self.ledger.find_active(refresh_token, principal.jti, conn=conn)
                if row is None or row.user_id != principal.user_id:
                    logger.info("Refresh rejected: no live ledger row for jti %s", principal.jti)
                    return AuthResult.failure(ErrorKind.INVALID_REFRESH_TOKEN, MSG_INVALID_REFRESH)
                if parse_iso(row.expires_at) < datetime.now(timezone.utc):
                    return AuthResult.failure(ErrorKind.REFRESH_TOKEN_EXPIRED, MSG_REFRESH_EXPIRED)
                user = self.users.get_by_id(row.user_id, conn=conn)
                if user is None or not user.is_active:
                    logger.info("Refresh rejected: user %d is inactive", row.user_id)
                    return AuthResult.failure(ErrorKind.INVALID_REFRESH_TOKEN, MSG_INVALID_REFRESH)
                if not self.ledger.consume(row, conn=conn):
                    logger.warning("Refresh token of user %d was consumed concurrently", row.user_id)
                    return AuthResult.failure(ErrorKind.INVALID_REFRESH_TOKEN, MSG_INVALID_REFRESH)
                access, new_refresh = self._issue_pair(user, conn)
        except SQLAlchemyError:
            if self._rotation_lost(refresh_token, principal.jti):
                logger.warning("Refresh for jti %s lost a concurrent rotation", principal.jti)
                return AuthResult.failure(ErrorKind.INVALID_REFRESH_TOKEN, MSG_INVALID_REFRESH)
            logger.exception("Refresh failed with a store error")
            return _internal()
        logger.info("Session of user %d rotated", user.id)
        return self._success(user, access, new_refresh, MSG_REFRESH_OK)

    def _rotation_lost(self, refresh_token: str, jti: str) -> bool:
        """After a failed rotation, True if the row is no longer live.

        SQLite reports a concurrent writer as a busy/locked error rather than
        a zero rowcount; if the row has since been revoked, the other request
        won and this one is a plain invalid refresh.
        """
        try:
            return self.ledger.find_active(refresh_token, jti) is None
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def logout(self, user_id: int, jti: str | None = None) -> bool:
        """Revoke the session bound to jti, or every session of the user when jti is None.

        Idempotent: revoking nothing is still a success. False only when the
        store itself failed.
        """
        try:
            revoked = self.ledger.revoke_all_for_user(user_id, jti=jti)
        except SQLAlchemyError:
            logger.exception("Logout failed with a store error")
            return False
        logger.info("Revoked %d session(s) of user %d", revoked, user_id)
        return True

    def revoke_all(self, user_id: int) -> bool:
        return self.logout(user_id, jti=None)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> bool:
        """Replace the password hash and revoke every refresh token of the user.

        Returns False when the user is missing or inactive, when the current
        password does not verify, when the new password is too long to hash,
        or when the store fails.
        """
        try:
            user = self.users.get_by_id(user_id)
            if user is None or not user.is_active:
                return False
            if not verify_password(current_password, user.hashed_password):
                logger.info("Password change rejected for user %d: wrong current password", user_id)
                return False
            with self.users.engine.begin() as conn:
                self.users.update_user(user_id, conn=conn, hashed_password=hash_password(new_password))
                revoked = self.ledger.revoke_all_for_user(user_id, conn=conn)
        except SQLAlchemyError:
            logger.exception("Password change failed with a store error")
            return False
        except PasswordTooLongError:
            logger.info("Password change rejected for user %d: new password too long", user_id)
            return False
        logger.info("Password changed for user %d; %d session(s) revoked", user_id, revoked)
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User | None:
        """Active user by id; inactive users are reported as absent."""
        user = self.users.get_by_id(user_id)
        return user if user is not None and user.is_active else None

    def is_email_taken(self, email: str) -> bool:
        return self.users.email_exists(email)


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


def seed_admin(store: UserStore, email: str, password: str, name: str = "Administrator") -> int | None:
    """Create an Admin account unless the email is already registered.

    Used by the API lifespan (SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD) and the
    create-admin CLI command. Returns the new user id, or None when nothing
    was created.
    """
    if not email or not password or store.email_exists(email):
        return None
    user = User(
        name=name,
        email=email,
        hashed_password=hash_password(password),
        role=Role.ADMIN,
        created_at=now_iso(),
    )
    user_id = store.create_user(user)
    logger.info("Admin user %d created", user_id)
    return user_id
