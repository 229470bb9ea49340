"""
Database Session Management
===========================

One lazily built engine per DATABASE_URL. SQLite (file or in-memory) serves
development and tests; PostgreSQL or any other SQLAlchemy URL in production.

Workflow transitions write the status change, the timeline event and the
audit row on one session, so a session is the unit of atomicity here.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./dev.db"

_engine = None
_engine_url = None

# Rows stay loaded after commit: handlers project them into responses afterwards
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _current_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": os.environ.get("SQL_ECHO", "false").lower() == "true"}

    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # every session must see the same in-memory database
            options["poolclass"] = StaticPool
        return options

    options.update(
        poolclass=QueuePool,
        pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={"connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT", "5"))},
    )
    return options


def _sqlite_pragmas(dbapi_connection, connection_record):
    # cascade deletes of cases/tasks rely on enforced foreign keys
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine():
    """Engine for the current DATABASE_URL, rebuilt when the URL changes"""
    global _engine, _engine_url
    database_url = _current_database_url()
    if _engine is not None and _engine_url == database_url:
        return _engine

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(database_url, **_engine_options(database_url))
    if database_url.startswith("sqlite"):
        event.listen(_engine, "connect", _sqlite_pragmas)
    _engine_url = database_url
    SessionLocal.configure(bind=_engine)
    logger.debug(f"Database engine bound to {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def reset_engine():
    """Forget the engine so the next use re-reads DATABASE_URL (tests)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Create every table that does not exist yet"""
    Base.metadata.create_all(bind=get_engine())


def drop_db():
    """Drop all tables (tests only)"""
    Base.metadata.drop_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session. Handlers commit explicitly; anything left
    uncommitted is rolled back on close.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Session for work outside a request (notification delivery, seeding).
    Commits on success, rolls back and re-raises on failure.

        with get_db_session() as db:
            db.add(notification)
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
