"""
auth/tokens.py -- Token Issuer: access tokens, refresh tokens, password hashing.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry sub (user id), name, email, role, a fresh jti, iat and exp.
       Validation returns Ok(Principal) or Err -- the request boundary turns
       any Err into a 401, never a 500.

  Expired-token validation: the refresh flow needs the jti of an access token
       that has usually already expired. validate_expired_access_token() skips
       ONLY the exp check; signature and claim structure are still enforced, so
       a forged token can never be exchanged for a new pair.

  Refresh tokens: secrets.token_urlsafe(64) -- 512 bits of entropy and no
       embedded user data. The string is meaningless outside the ledger.

  Passwords: bcrypt via the bcrypt package directly. bcrypt only reads the
       first 72 bytes of its input, so hash_password() refuses anything longer
       with PasswordTooLongError instead of hashing a truncated secret. The
       _DUMMY_HASH constant enables timing equalization in authenticate_user()
       so response time does not reveal whether an email is registered.

Stateless: nothing here performs I/O except authenticate_user(), which reads
through the UserStore it is handed.

Layer rule: no imports from api/ or tasks/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import IssuedAccessToken, Principal, Role, User
from core.config import get_settings
from core.db import to_iso
from core.result import Err, ErrorKind, Ok, Result

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("taskmanager.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("sub", "role", "jti")

PASSWORD_MAX_BYTES = 72


class PasswordTooLongError(ValueError):
    """The password is longer than bcrypt can hash without truncation."""


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > PASSWORD_MAX_BYTES


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises PasswordTooLongError above PASSWORD_MAX_BYTES of UTF-8. The request
    models reject such passwords first; this guards every other caller.
    """
    if password_too_long(plain):
        raise PasswordTooLongError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    checkpw compares in constant time. A corrupt stored hash makes bcrypt raise
    ValueError; that is a failed verification, not a crash. A password that
    could never have been hashed cannot match.
    """
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email does not exist.
_DUMMY_HASH: str = hash_password("taskmanager_timing_dummy")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_jti() -> str:
    """Return a fresh unique token identifier."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Issuing
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_minutes: int = 0, now: datetime | None = None) -> IssuedAccessToken:
    """Encode a signed JWT for the given user.

    Args:
        user:           A persisted User (id must be set).
        expire_minutes: Token lifetime. If 0 (default), uses
                        Settings.access_token_expire_minutes.
        now:            Issue time. Defaults to the current UTC time; tests
                        pass a past instant to mint already-expired tokens.

    Returns the token together with its jti and expiry so the caller can bind
    the jti to a ledger row without decoding the token again.
    """
    issued_at = now or _utcnow()
    duration = expire_minutes if expire_minutes > 0 else _settings.access_token_expire_minutes
    expires_at = issued_at + timedelta(minutes=duration)
    jti = generate_jti()
    payload = {
        "sub": str(user.id),
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "jti": jti,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)
    return IssuedAccessToken(token=token, jti=jti, expires_at=to_iso(expires_at))


def generate_refresh_token() -> str:
    """Return an opaque, URL-safe refresh token with 512 bits of entropy."""
    return secrets.token_urlsafe(64)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_access_token(token: str) -> Result[Principal]:
    """Validate signature, structure and expiry. Used at the request boundary."""
    return _validate(token, verify_exp=True)


def validate_expired_access_token(token: str) -> Result[Principal]:
    """Validate signature and structure but NOT expiry. Refresh flow only."""
    return _validate(token, verify_exp=False)


def _validate(token: str, verify_exp: bool) -> Result[Principal]:
    # Structural check first so a garbage string is reported as malformed
    # rather than as a signature failure.
    try:
        jwt.get_unverified_claims(token)
    except JWTError:
        return Err(ErrorKind.INVALID_TOKEN, "Invalid token.", reason="malformed")

    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": verify_exp},
        )
    except ExpiredSignatureError:
        return Err(ErrorKind.EXPIRED_TOKEN, "Token expired.")
    except JWTClaimsError:
        return Err(ErrorKind.INVALID_TOKEN, "Invalid token.", reason="malformed")
    except JWTError:
        return Err(ErrorKind.INVALID_TOKEN, "Invalid token.", reason="invalid_signature")

    if any(not payload.get(claim) for claim in _REQUIRED_CLAIMS):
        return Err(ErrorKind.INVALID_TOKEN, "Invalid token.", reason="malformed")
    try:
        principal = Principal(user_id=int(payload["sub"]), role=Role(payload["role"]), jti=str(payload["jti"]))
    except ValueError:
        return Err(ErrorKind.INVALID_TOKEN, "Invalid token.", reason="malformed")
    return Ok(principal)


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Inactive users are treated exactly like unknown ones. Returns the User on
    success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or not user.is_active:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
