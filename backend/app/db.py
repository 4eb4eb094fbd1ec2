# backend/app/db.py
"""
Engine, session factory and declarative base.

The API process and one or more worker processes share the database. On
SQLite that means WAL journaling and a busy timeout, so a progress write from
the worker waits for an API transaction instead of failing with
"database is locked".
"""

from __future__ import annotations

import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

DB_URL = os.getenv("DATABASE_URL", "sqlite:///./demo.db")
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "15000"))

if os.getenv("SOLARDD_DEBUG_ENV") == "1":
    print("[db] Using DATABASE_URL:", DB_URL, flush=True)

_is_sqlite = DB_URL.startswith("sqlite")

engine = create_engine(
    DB_URL,
    echo=False,
    pool_pre_ping=not _is_sqlite,
    # FastAPI runs sync routes on a threadpool
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)


if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record) -> None:
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=True)


class Base(DeclarativeBase):
    pass


def init_db() -> None:
    """Create missing tables. Idempotent; no migrations."""
    from backend.app import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)


def get_db():
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
