"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions for accounts, checkout sessions and the partner registry
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Float, Index, ForeignKey
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from sharewizard.core.config import settings


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

    if url.startswith("sqlite"):
        # SQLite manages its own pool; connections are shared across to_thread workers
        _engine = create_engine(url, connect_args={"check_same_thread": False}, echo=False)
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
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


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(func.now().select())
        return True
    except Exception:
        logging.getLogger(__name__).warning("[database] connection check failed", exc_info=True)
        return False


# Account record: usage counter + trial state (one row per account)
accounts = Table(
    'accounts',
    metadata,
    Column('account_id', String(128), primary_key=True),
    Column('plan_type', String(32), nullable=False, server_default='free'),
    Column('requests_used', Integer, nullable=False, server_default='0'),
    Column('requests_limit', Integer, nullable=True),
    Column('has_used_trial', Boolean, nullable=False, server_default='0'),
    Column('trial_pending', Boolean, nullable=False, server_default='0'),
    Column('trial_end_date', DateTime(timezone=True), nullable=True),
    Column('selected_plan', String(32), nullable=True),
    Column('selected_cycle', String(16), nullable=True),
    Column('reset_date', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=True),
)

# Checkout session sub-records (filled in asynchronously by the gateway integration)
checkout_sessions = Table(
    'checkout_sessions',
    metadata,
    Column('session_id', String(64), primary_key=True),
    Column('account_id', String(128), ForeignKey('accounts.account_id'), nullable=False),
    Column('payload', JSON, nullable=False),
    Column('url', Text, nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_checkout_sessions_account', 'account_id'),
)

# Partner registry (read-only to this service)
partners = Table(
    'partners',
    metadata,
    Column('partner_id', String(128), primary_key=True),
    Column('display_name', String(255), nullable=False),
    Column('email', String(255), nullable=False),
    Column('company_name', String(255), nullable=True),
    Column('active', Boolean, nullable=False, server_default='1'),
    Column('commission_rate', Float, nullable=False, server_default='0'),
)

partner_codes = Table(
    'partner_codes',
    metadata,
    Column('code', String(64), primary_key=True),
    Column('partner_id', String(128), ForeignKey('partners.partner_id'), nullable=False),
    Column('active', Boolean, nullable=False, server_default='1'),
    Column('uses', Integer, nullable=False, server_default='0'),
    Column('max_uses', Integer, nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Index('idx_partner_codes_partner', 'partner_id'),
)
