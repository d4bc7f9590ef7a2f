"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (SQLite for local/test runs)
- Table definitions for users, usage events, processed webhook events and consents
"""
from typing import Optional, Generator
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Text, Index, UniqueConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite gets a thread-tolerant connection (FastAPI runs sync handlers in a
    threadpool); everything else gets a QueuePool.
    """
    if not database_url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: str) -> Engine:
    """
    Initialize the process-wide SQLAlchemy engine and session factory.

    Args:
        database_url: Database URL from Settings.DATABASE_URL
    """
    global _engine, _SessionLocal

    _engine = build_engine(database_url)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )
    return _engine


def get_engine() -> Engine:
    """Get the current SQLAlchemy engine."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory."""
    if _SessionLocal is None:
        raise RuntimeError("Database engine not initialized; call init_engine() first")
    return _SessionLocal


@contextmanager
def get_db_session(session_factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on any exception.

    Usage:
        with get_db_session(factory) as session:
            session.execute(...)
    """
    SessionLocal = session_factory or get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def check_connection(session_factory: Optional[sessionmaker] = None) -> bool:
    """
    Check if database connection is available.

    Args:
        session_factory: Factory to check; defaults to the process-wide one

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with get_db_session(session_factory) as session:
            session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, RuntimeError):
        return False


# Users: identity is the verified email (lower-cased)
users = Table(
    'users',
    metadata,
    Column('id', String(320), primary_key=True),
    Column('email', String(320), nullable=False),
    Column('plan', String(20), nullable=False, server_default='free'),
    Column('billing_customer_id', String(100), nullable=True, unique=True),
    Column('billing_subscription_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_users_billing_customer_id', 'billing_customer_id'),
)

# Usage events: append-only, one row per successful generation
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(320), nullable=False),
    Column('kind', String(20), nullable=False),  # blog | movie
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Monthly window query: (user_id, created_at)
    Index('idx_usage_events_user_created', 'user_id', 'created_at'),
)

# Processed webhook events: the idempotency boundary
processed_events = Table(
    'processed_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(255), nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('source_created_at', DateTime(timezone=True), nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('event_id', name='uq_processed_events_event_id'),
    Index('idx_processed_events_received_at', 'received_at'),
)

# Consent evidence: write-only audit trail
consents = Table(
    'consents',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(320), nullable=False, index=True),
    Column('kind', String(50), nullable=False),
    Column('version', String(50), nullable=False),
    Column('accepted_at', DateTime(timezone=True), nullable=False),
    Column('client_address', String(64), nullable=True),
    Column('user_agent', Text, nullable=True),
)
