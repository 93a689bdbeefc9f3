"""Engine and session for release-phase scripts that run without building the Flask app."""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.bizadmin.db import normalize_database_url


def script_engine(db_url: str) -> Engine:
    url = normalize_database_url(db_url)
    engine = create_engine(url, future=True, pool_pre_ping=True)
    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One transaction on a throwaway engine: committed on success, rolled back on error."""
    engine = script_engine(db_url)
    try:
        with Session(engine, autoflush=False, expire_on_commit=False) as s, s.begin():
            yield s
    finally:
        engine.dispose()
