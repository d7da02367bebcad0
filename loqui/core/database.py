"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for tenants, metered records and scheduled deliveries
"""
from datetime import datetime, timezone
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, JSON, Text, Index, UniqueConstraint, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from loqui.core.config import settings


logger = logging.getLogger("loqui")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    if url.startswith("sqlite"):
        # Usage counters fan out over worker threads
        _engine = create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    else:
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back everything on any exception.

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


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read from the store (SQLite drops tzinfo) to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Tenants (accounts). Owned by the identity/account store; this service reads them.
tenants = Table(
    'tenants',
    metadata,
    Column('tenant_id', String(100), primary_key=True),
    Column('plan', String(50), nullable=False, server_default='free'),
    # Set once at signup, never changed by upgrade/downgrade
    Column('cycle_anchor_at', DateTime(timezone=True), nullable=True),
    Column('beta_expires_at', DateTime(timezone=True), nullable=True),
    Column('grace_expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_tenants_plan', 'plan'),
)

# Transcript analyses (metered: analyses per cycle)
transcripts = Table(
    'transcripts',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('tenant_id', String(100), nullable=False),
    Column('title', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_transcripts_tenant_created', 'tenant_id', 'created_at'),
)

# Scheduled deliveries (metered: scheduled posts per cycle)
scheduled_posts = Table(
    'scheduled_posts',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('tenant_id', String(100), nullable=False),
    Column('transcript_id', String(36), nullable=True, index=True),
    Column('channel', String(50), nullable=False),
    Column('provider', String(50), nullable=True),
    Column('title', Text, nullable=True),
    Column('content', Text, nullable=False),
    Column('scheduled_at', DateTime(timezone=True), nullable=False),
    Column('status', String(20), nullable=False, server_default='Scheduled'),
    Column('meta', JSON, nullable=True),
    Column('external_id', String(255), nullable=True),
    Column('last_error', Text, nullable=True),
    Column('published_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    # Usage counting pattern: (tenant_id, created_at)
    Index('idx_scheduled_posts_tenant_created', 'tenant_id', 'created_at'),
    # Sweep pattern: due rows by status
    Index('idx_scheduled_posts_status_scheduled', 'status', 'scheduled_at'),
)

# Email automations (metered: standing count, not cycle-scoped)
email_automations = Table(
    'email_automations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('tenant_id', String(100), nullable=False, index=True),
    Column('provider', String(50), nullable=False),
    Column('name', Text, nullable=False),
    Column('trigger_type', String(50), nullable=False, server_default='tag_applied'),
    Column('trigger_value', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
)

# Provider connections
connected_accounts = Table(
    'connected_accounts',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('tenant_id', String(100), nullable=False),
    Column('provider', String(50), nullable=False),
    Column('provider_user_id', String(255), nullable=True),
    Column('access_token', Text, nullable=True),
    Column('refresh_token', Text, nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('scopes', JSON, nullable=True),
    Column('profile', JSON, nullable=True),
    Column('status', String(20), nullable=False, server_default='connected'),
    Column('last_sync_at', DateTime(timezone=True), nullable=True),
    Column('metadata', JSON, nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('tenant_id', 'provider', name='uq_connected_accounts_tenant_provider'),
)

# Provider audit log (append-only)
integration_events = Table(
    'integration_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('tenant_id', String(100), nullable=False),
    Column('provider', String(50), nullable=False),
    Column('event_type', String(50), nullable=False),
    Column('status', String(20), nullable=False),
    Column('payload', JSON, nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_integration_events_tenant_provider', 'tenant_id', 'provider'),
)
