"""
auth/store.py -- Credential Store: SQLAlchemy Core persistence for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and session code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Email uniqueness is enforced by a UNIQUE constraint and matched exactly as
  stored (case-sensitive). create_user() raises IntegrityError on a duplicate,
  which covers the race between two concurrent registrations that both passed
  the email_exists() pre-check.

Transactions:
  Every write accepts an optional open Connection. Without one the write runs
  in its own transaction; with one it joins the caller's transaction (used by
  SessionManager to keep a user write and a ledger write atomic).

Users are never deleted: deactivation is the is_active flag.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import Role, User
from core.db import connection_scope, make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(200), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# Fields update_user() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = {"name", "role", "is_active", "hashed_password"}


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///taskmanager.db")
        user_id = store.create_user(User(name="Ana", email="ana@example.com", hashed_password=...))
        user = store.get_by_email("ana@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if db_url is None:
                raise ValueError("UserStore needs a db_url or an engine")
            engine = make_engine(db_url)
        self.engine: Engine = engine
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int, conn: Connection | None = None) -> User | None:
        """Look up a user by primary key regardless of is_active. None if not found."""
        with connection_scope(self.engine, conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        """True if any user, active or not, holds this exact email."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users).where(_users.c.email == email)).scalar()
        return (result or 0) > 0

    def list_users(self, active_only: bool = True, only_id: int | None = None) -> list[User]:
        """Return users ordered by name.

        only_id restricts the listing to a single user; the users route uses it
        for User-role callers, who may only see themselves.
        """
        query = _users.select()
        if active_only:
            query = query.where(_users.c.is_active == 1)
        if only_id is not None:
            query = query.where(_users.c.id == only_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_users.c.name)).fetchall()
        return [_row_to_user(r) for r in rows]

    def get_stats(self, since_week: str, since_month: str) -> dict[str, int]:
        """Counts for the user statistics panel.

        since_week / since_month are ISO timestamps; users created at or after
        them are counted as recent.
        """
        active = _users.c.is_active == 1
        with self.engine.connect() as conn:

            def count(*conditions) -> int:
                return conn.execute(select(func.count()).select_from(_users).where(*conditions)).scalar() or 0

            return {
                "total_users": count(active),
                "total_admins": count(active, _users.c.role == Role.ADMIN.value),
                "total_managers": count(active, _users.c.role == Role.MANAGER.value),
                "total_regular_users": count(active, _users.c.role == Role.USER.value),
                "users_last_week": count(_users.c.created_at >= since_week),
                "users_last_month": count(_users.c.created_at >= since_month),
            }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with connection_scope(self.engine, conn) as c:
            result = c.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role.value,
                    is_active=1 if user.is_active else 0,
                    created_at=user.created_at or now_iso(),
                    last_login=user.last_login,
                )
            )
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, conn: Connection | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, role, is_active, hashed_password. role may be a
        Role or its string value; is_active is converted to 0/1.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if isinstance(fields.get("role"), Role):
            fields["role"] = fields["role"].value
        with connection_scope(self.engine, conn) as c:
            result = c.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: int, when: str | None = None, conn: Connection | None = None) -> str:
        """Stamp last_login and return the timestamp written."""
        stamp = when or now_iso()
        with connection_scope(self.engine, conn) as c:
            c.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
        return stamp

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
