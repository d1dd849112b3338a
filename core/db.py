"""
core/db.py -- Engine construction and connection scoping shared by all stores.

One Engine per database. UserStore, TokenLedger and TaskStore all sit on the
same engine so the Session Manager can compose writes from several stores into
a single transaction (see connection_scope).

SQLite specifics:
  check_same_thread=False -- FastAPI runs sync routes in a thread pool.
  WAL journal mode -- readers proceed while a writer commits. Set per
      connection because SQLite PRAGMAs are not inherited across the pool.

Layer rule: core/ is the kernel. No imports from api/, auth/ or tasks/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine for db_url with the SQLite tweaks applied when relevant."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def connection_scope(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    """Yield conn if the caller already holds one, else a fresh transaction.

    When conn is given the caller owns the transaction: nothing is committed
    here, and an exception propagates to the caller's engine.begin() block
    which rolls everything back. Otherwise engine.begin() commits on success
    and rolls back on error.
    """
    if conn is not None:
        yield conn
        return
    with engine.begin() as own:
        yield own


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO 8601, so stored timestamps also sort correctly as strings."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp written by this service. Naive values are UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
