"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite with serialized writers)
- Table definitions for competitions, entries, usage counters and purchases
"""
import logging
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
from sqlalchemy import create_engine, event, false, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Numeric, Float, Index, ForeignKey, UniqueConstraint, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from writeclub.core.config import settings

logger = logging.getLogger("writeclub.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour
SQLITE_BUSY_TIMEOUT = 30  # seconds a writer waits for the database lock

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


def _configure_sqlite(engine) -> None:
    """Make SQLite transactions start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, which lets two writers read
    the same snapshot and then fail to upgrade their locks. Taking the write
    lock up front serializes writers, matching row-lock behaviour on Postgres.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


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
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            echo=False,
        )
        _configure_sqlite(_engine)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
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

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on clean exit, rolls back on any exception.
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
    """Attach UTC to naive datetimes read back from the store (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Users table
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('tier', String(50), nullable=False, server_default='free'),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Per-user monthly usage counters (one row per user, lazily rolled to the current month)
usage_counters = Table(
    'usage_counters',
    metadata,
    Column('user_id', String(100), ForeignKey('app_users.user_id'), primary_key=True),
    Column('month_key', String(7), nullable=False),  # YYYY-MM
    Column('stories_created', Integer, nullable=False, server_default='0'),
    Column('assessment_uploads', Integer, nullable=False, server_default='0'),
    Column('competition_entries', Integer, nullable=False, server_default='0'),
    Column('total_assessment_attempts', Integer, nullable=False, server_default='0'),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Index for the monthly sweep: (month_key) != current
    Index('idx_usage_counters_month_key', 'month_key'),
)

# Purchases emitted by the payment collaborator (read-only for limit calculation)
purchases = Table(
    'purchases',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('purchase_type', String(50), nullable=False),
    Column('amount', Numeric(10, 2), nullable=False),
    Column('purchase_date', DateTime(timezone=True), nullable=False),
    Column('stories_added', Integer, nullable=True),
    Column('assessments_added', Integer, nullable=True),
    Column('attempts_added', Integer, nullable=True),
    Column('entries_added', Integer, nullable=True),
    Column('external_ref', String(255), nullable=True, unique=True),  # payment reference, dedupes redelivery
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Composite index for in-month lookups: (user_id, purchase_date)
    Index('idx_purchases_user_date', 'user_id', 'purchase_date'),
)

# Stories (only the fields the competition core needs)
stories = Table(
    'stories',
    metadata,
    Column('story_id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('word_count', Integer, nullable=False),
    Column('assessment_status', String(20), nullable=False, server_default='none'),
    Column('assessment_score', Float, nullable=True),
    Column('assessment_attempts', Integer, nullable=False, server_default='0'),
    Column('assessment_error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_stories_user_created', 'user_id', 'created_at'),
)

# Monthly competitions
competitions = Table(
    'competitions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('month', String(20), nullable=False),  # English month name
    Column('year', Integer, nullable=False),
    Column('phase', String(30), nullable=False, server_default='submission'),
    Column('is_active', Boolean, nullable=False, server_default=false()),
    Column('is_archived', Boolean, nullable=False, server_default=false()),
    Column('submission_start', DateTime(timezone=True), nullable=False),
    Column('submission_end', DateTime(timezone=True), nullable=False),
    Column('judging_start', DateTime(timezone=True), nullable=False),
    Column('judging_end', DateTime(timezone=True), nullable=False),
    Column('results_date', DateTime(timezone=True), nullable=False),
    Column('judging_criteria', JSON, nullable=False),
    Column('total_submissions', Integer, nullable=False, server_default='0'),
    Column('total_participants', Integer, nullable=False, server_default='0'),
    Column('winners', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Unique constraint: one competition per calendar month
    UniqueConstraint('month', 'year', name='uq_competitions_month_year'),
    # At most one active competition
    Index(
        'uq_competitions_single_active',
        'is_active',
        unique=True,
        postgresql_where=text('is_active'),
        sqlite_where=text('is_active'),
    ),
    Index('idx_competitions_phase', 'phase'),
)

# Competition entries
competition_entries = Table(
    'competition_entries',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('competition_id', String(36), ForeignKey('competitions.id'), nullable=False),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('story_id', String(100), ForeignKey('stories.story_id'), nullable=False),
    Column('word_count', Integer, nullable=False),
    Column('submitted_at', DateTime(timezone=True), nullable=False),
    Column('score', Float, nullable=True),
    Column('rank', Integer, nullable=True),
    Column('is_winner', Boolean, nullable=False, server_default=false()),
    # Unique constraint: a story enters a competition once
    UniqueConstraint('competition_id', 'story_id', name='uq_competition_entries_competition_story'),
    # Composite index for the participant-membership check
    Index('idx_competition_entries_competition_user', 'competition_id', 'user_id'),
    Index('idx_competition_entries_story', 'story_id'),
)
