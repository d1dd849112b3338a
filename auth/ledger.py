"""
auth/ledger.py -- Token Ledger: persisted refresh-token rows and their revocation state.

Every issued refresh token is one row bound to the jti of the access token
minted with it. A row is usable only while is_revoked is 0 and expires_at is
in the future. Expired rows are not deleted on expiry: validity is decided at
lookup time, and purge_expired() is a separate housekeeping step that only
removes rows that are both expired and revoked.

State per row:
    issued (is_revoked=0) --consume()--> used + revoked   (rotation)
    issued (is_revoked=0) --revoke()---> revoked          (logout, password change)
There is no transition back to is_revoked=0.

Concurrency:
  consume() is a conditional UPDATE ... WHERE is_revoked = 0. When two refresh
  requests race on the same row, the database serializes the two UPDATEs and
  exactly one sees rowcount == 1. The loser gets False and reports an invalid
  refresh token instead of minting a second lineage.

Uniqueness:
  token is UNIQUE (512-bit random, a collision is an infrastructure fault).
  jti is indexed but NOT unique -- single-active-row-per-jti is maintained by
  the session manager, not by a storage constraint.

Absence is never an error here: lookups return None and callers decide what
that means. SQLAlchemyError propagates unchanged.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, and_, delete, select
from sqlalchemy.engine import Connection, Engine

from auth.models import RefreshToken
from core.db import connection_scope, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, unique=True),
    Column("jti", String(64), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Index("ix_refresh_tokens_jti", "jti"),
    Index("ix_refresh_tokens_user_revoked", "user_id", "is_revoked"),
)


class TokenLedger:
    """Repository for RefreshToken rows.

    Shares the Engine of the UserStore so both can write in one transaction:

        ledger = TokenLedger(user_store.engine)
        with ledger.engine.begin() as conn:
            user_store.update_last_login(user.id, conn=conn)
            ledger.record(token, jti, user.id, expires_at, conn=conn)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        token: str,
        jti: str,
        user_id: int,
        expires_at: str,
        conn: Connection | None = None,
    ) -> RefreshToken:
        """Persist a new, unused, non-revoked row and return it."""
        created_at = now_iso()
        with connection_scope(self.engine, conn) as c:
            result = c.execute(
                _refresh_tokens.insert().values(
                    token=token,
                    jti=jti,
                    user_id=user_id,
                    created_at=created_at,
                    expires_at=expires_at,
                    is_used=0,
                    is_revoked=0,
                )
            )
            row_id = result.inserted_primary_key[0]
        return RefreshToken(
            id=row_id,
            token=token,
            jti=jti,
            user_id=user_id,
            created_at=created_at,
            expires_at=expires_at,
        )

    def revoke(self, row: RefreshToken, conn: Connection | None = None) -> bool:
        """Revoke one row. Idempotent: an already-revoked row is left untouched
        (its original revoked_at is kept) and the call still reports success."""
        if row.is_revoked:
            return True
        stamp = now_iso()
        with connection_scope(self.engine, conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where(and_(_refresh_tokens.c.id == row.id, _refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1, revoked_at=stamp)
            )
        if result.rowcount > 0:
            row.is_revoked = True
            row.revoked_at = stamp
        return True

    def consume(self, row: RefreshToken, conn: Connection | None = None) -> bool:
        """Mark a row used and revoked as part of a rotation.

        Returns True only if this call flipped the row. False means another
        request consumed or revoked it first.
        """
        stamp = now_iso()
        with connection_scope(self.engine, conn) as c:
            result = c.execute(
                _refresh_tokens.update()
                .where(
                    and_(
                        _refresh_tokens.c.id == row.id,
                        _refresh_tokens.c.is_used == 0,
                        _refresh_tokens.c.is_revoked == 0,
                    )
                )
                .values(is_used=1, is_revoked=1, revoked_at=stamp)
            )
        if result.rowcount != 1:
            return False
        row.is_used = True
        row.is_revoked = True
        row.revoked_at = stamp
        return True

    def revoke_all_for_user(self, user_id: int, jti: str | None = None, conn: Connection | None = None) -> int:
        """Revoke every live row of a user, or only the rows bound to jti.

        Returns the number of rows revoked. Zero is a success: there was
        nothing left to revoke.
        """
        conditions = [_refresh_tokens.c.user_id == user_id, _refresh_tokens.c.is_revoked == 0]
        if jti:
            conditions.append(_refresh_tokens.c.jti == jti)
        with connection_scope(self.engine, conn) as c:
            result = c.execute(
                _refresh_tokens.update().where(and_(*conditions)).values(is_revoked=1, revoked_at=now_iso())
            )
        return result.rowcount

    def purge_expired(self, before: str | None = None) -> int:
        """Delete rows that are both revoked and expired before the given instant.

        Live rows are never touched, even when expired, so an expired refresh
        still reports "expired" rather than "invalid".
        """
        cutoff = before or now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(_refresh_tokens).where(
                    and_(_refresh_tokens.c.is_revoked == 1, _refresh_tokens.c.expires_at < cutoff)
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_active(self, token: str, jti: str, conn: Connection | None = None) -> RefreshToken | None:
        """Return the non-revoked row matching BOTH the refresh string and jti.

        Expiry is not checked here; the caller distinguishes "expired" from
        "absent or revoked".
        """
        with connection_scope(self.engine, conn) as c:
            row = c.execute(
                select(_refresh_tokens).where(
                    and_(
                        _refresh_tokens.c.token == token,
                        _refresh_tokens.c.jti == jti,
                        _refresh_tokens.c.is_revoked == 0,
                    )
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get(self, row_id: int) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_refresh_tokens).where(_refresh_tokens.c.id == row_id)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_user(self, user_id: int, active_only: bool = False) -> list[RefreshToken]:
        """Return a user's rows, newest first. active_only drops revoked and expired rows."""
        query = select(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
        if active_only:
            query = query.where(
                and_(_refresh_tokens.c.is_revoked == 0, _refresh_tokens.c.expires_at > now_iso())
            )
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_refresh_tokens.c.id.desc())).fetchall()
        return [_row_to_refresh_token(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token=row.token,
        jti=row.jti,
        user_id=row.user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        is_used=bool(row.is_used),
        is_revoked=bool(row.is_revoked),
        revoked_at=row.revoked_at,
    )
