"""
core/db.py -- SQLAlchemy engine construction shared by every store.

Every store gets its engine from make_engine() so connection behaviour is the
same everywhere:

  * Bounded waits. SQLite gets a busy timeout (connect_args["timeout"]) so a
    locked database surfaces as an OperationalError instead of hanging;
    server databases get a pool checkout timeout and a connect timeout.
  * SQLite runs in WAL mode so readers are not blocked by a writer.
  * check_same_thread=False because FastAPI runs sync handlers in a thread pool.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout_seconds: int = 10) -> Engine:
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
        )
        event.listen(engine, "connect", _set_wal_mode)
        return engine
    return create_engine(
        db_url,
        pool_timeout=timeout_seconds,
        pool_pre_ping=True,
        connect_args={"connect_timeout": timeout_seconds},
    )
