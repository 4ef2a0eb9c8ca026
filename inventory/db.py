"""
inventory/db.py -- Engine construction and error translation shared by the
inventory store and the audit trail.

Both stores use SQLAlchemy Core against any SQLAlchemy URL. SQLite gets two
per-connection tweaks (WAL journal mode and check_same_thread=False); every
other backend is used as configured.

storage_errors() is the single place where SQLAlchemy exceptions become
core.errors.StorageError. The original exception is always chained so the
cause survives in tracebacks and logs.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import StorageError

logger = logging.getLogger("etracker.inventory")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # The API serves requests from a thread pool, so one SQLite
        # connection may be used by more than one thread.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def storage_errors(component: str, action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into StorageError.

    Usage:
        with storage_errors("inventory", "search"), self.engine.connect() as conn:
            ...
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("%s %s failed: %s", component, action, exc)
        raise StorageError(f"{component} {action} failed") from exc
