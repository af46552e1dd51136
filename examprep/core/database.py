"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management for the application database
  (subscriptions)
- Engine construction for the read-only practice task database
- Table definitions for both
"""
import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from examprep.core.config import settings


# Application tables (read/write)
metadata = MetaData()

# Practice task tables (owned by the task store, read-only here)
tasks_metadata = MetaData()

# Connection pooling configuration (ignored for SQLite)
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 1800

# Global engine and session factory for the application database
_engine: Optional[Engine] = None
_SessionLocal = None


def is_sqlite_url(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def sqlite_file_path(url: str) -> Optional[str]:
    """Return the on-disk path of a SQLite URL (None for in-memory)."""
    database = make_url(url).database
    if not database or database == ":memory:":
        return None
    return database


def build_engine(url: str) -> Engine:
    """Create an engine with pooling defaults suited to the backend."""
    if is_sqlite_url(url):
        # Route handlers hop threads via run_in_threadpool
        return create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    return create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,
    )


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize the application engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL
    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    path = sqlite_file_path(url) if is_sqlite_url(url) else None
    if path:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(url)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_engine() -> Engine:
    """Get the current application engine."""
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create application tables (idempotent)."""
    metadata.create_all(bind=get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# Subscriptions (one row per user; the engine reads, callers write)
user_subscriptions = Table(
    'user_subscriptions',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('plan', String(20), nullable=False, server_default='free'),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('auto_renewal', Boolean, nullable=False, server_default='0'),
    Column('started_at', DateTime(timezone=True), nullable=True),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('cancellation_reason', Text, nullable=True),
    Column('updated_at', DateTime(timezone=True), nullable=True),
    Index('idx_user_subscriptions_status_expires', 'status', 'expires_at'),
)


# Practice task catalog
subjects = Table(
    'subjects',
    tasks_metadata,
    Column('id', Integer, primary_key=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
)

topics = Table(
    'topics',
    tasks_metadata,
    Column('id', Integer, primary_key=True),
    Column('subject_id', Integer, ForeignKey('subjects.id'), nullable=False),
    Column('name', String(300), nullable=False),
    Column('order_index', Integer, nullable=True),
)

tasks = Table(
    'tasks',
    tasks_metadata,
    Column('id', Integer, primary_key=True),
    Column('subject_id', Integer, ForeignKey('subjects.id'), nullable=True),
    Column('topic_id', Integer, ForeignKey('topics.id'), nullable=True),
    Column('difficulty_level', Integer, nullable=False, server_default='1'),
    Column('question_text', Text, nullable=False),
    Column('correct_answer', Text, nullable=True),
    Column('explanation', Text, nullable=True),
    Column('solution_steps', Text, nullable=True),
    Index('idx_tasks_topic', 'topic_id'),
    Index('idx_tasks_subject', 'subject_id'),
)
