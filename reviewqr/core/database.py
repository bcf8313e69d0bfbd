"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- QueuePool sizing for Postgres, a busy timeout for SQLite
- Test database support
- Table definitions for every persisted entity
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Date, Boolean, Float, JSON, Text, Index, ForeignKey, UniqueConstraint
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from reviewqr.core.config import settings


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Seconds a SQLite writer waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 30

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
        # Development/test database; the dialect picks its own pool
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
            echo=False,
        )
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


def dispose_engine() -> None:
    """Close pooled connections and forget the engine (tests, shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


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

    Commits on clean exit, rolls back on any exception.

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


def dialect_name(session: Session) -> str:
    return session.get_bind().dialect.name


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


# Businesses (tenants)
businesses = Table(
    'businesses',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('owner_id', String(128), nullable=False),
    Column('name', String(200), nullable=False),
    Column('business_type', String(100), nullable=True),
    Column('industry', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_businesses_owner_id', 'owner_id'),
)

# Customers who leave reviews (not platform accounts)
customers = Table(
    'customers',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('name', String(200), nullable=False),
    Column('email', String(320), nullable=True),
    Column('phone', String(50), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_customers_business_id', 'business_id'),
)

# Subscriptions (1:1 with business, superseded in place)
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False, unique=True),
    Column('plan_id', String(20), nullable=False),
    Column('plan_name', String(100), nullable=False),
    Column('price', Float, nullable=False, server_default='0'),
    Column('status', String(20), nullable=False),  # PENDING, ACTIVE, CANCELLED, EXPIRED
    Column('payment_reference', String(200), nullable=True),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_subscriptions_status_end', 'status', 'end_date'),
)

# Usage ledger: one row per (business, calendar month, feature)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('month', Date, nullable=False),  # first day of the calendar month (UTC)
    Column('feature_type', String(100), nullable=False),
    Column('count', Integer, nullable=False, server_default='0'),
    Column('last_used_at', DateTime(timezone=True), nullable=False),
    Column('details', JSON, nullable=True),
    UniqueConstraint('business_id', 'month', 'feature_type', name='uq_usage_records_business_month_feature'),
)

# QR codes
qr_codes = Table(
    'qr_codes',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('title', String(200), nullable=False),
    Column('target_url', Text, nullable=False),
    Column('image_data_url', Text, nullable=False),
    Column('background_color', String(9), nullable=False),
    Column('foreground_color', String(9), nullable=False),
    Column('size', Integer, nullable=False),
    Column('error_correction', String(1), nullable=False),
    Column('logo_url', Text, nullable=True),
    Column('scans_count', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_qr_codes_business_id', 'business_id'),
)

# QR scan events (append-only)
qr_scans = Table(
    'qr_scans',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('qr_code_id', String(36), ForeignKey('qr_codes.id', ondelete='CASCADE'), nullable=False),
    Column('ip_address', String(64), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('location', JSON, nullable=True),
    Column('scanned_at', DateTime(timezone=True), nullable=False),
    Index('idx_qr_scans_code_scanned', 'qr_code_id', 'scanned_at'),
)

# Review-form templates; at most one active per business
form_templates = Table(
    'form_templates',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('fields', JSON, nullable=False),
    Column('settings', JSON, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Index('idx_form_templates_business_active', 'business_id', 'is_active'),
)

# Reviews
reviews = Table(
    'reviews',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('customer_id', String(36), ForeignKey('customers.id'), nullable=False),
    Column('rating', Integer, nullable=False),
    Column('feedback', Text, nullable=False),
    Column('generated_review', Text, nullable=True),
    Column('status', String(20), nullable=False, server_default='PENDING'),
    Column('form_data', JSON, nullable=True),
    Column('is_flagged', Boolean, nullable=False, server_default='0'),
    Column('moderated_by', String(128), nullable=True),
    Column('moderated_at', DateTime(timezone=True), nullable=True),
    Column('moderator_notes', Text, nullable=True),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Index('idx_reviews_business_created', 'business_id', 'created_at'),
    Index('idx_reviews_status', 'status'),
)

# AI generations; the current one per review has superseded_at IS NULL
ai_generations = Table(
    'ai_generations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('review_id', String(36), ForeignKey('reviews.id'), nullable=False),
    Column('original_text', Text, nullable=False),
    Column('enhanced_text', Text, nullable=False),
    Column('confidence', Float, nullable=False),
    Column('sentiment', String(20), nullable=False),
    Column('keywords', JSON, nullable=False),
    Column('strategy', String(20), nullable=False),
    Column('status', String(20), nullable=False, server_default='PENDING'),
    Column('rejection_note', Text, nullable=True),
    Column('approved_by', String(128), nullable=True),
    Column('approved_at', DateTime(timezone=True), nullable=True),
    Column('generated_at', DateTime(timezone=True), nullable=False),
    Column('superseded_at', DateTime(timezone=True), nullable=True),
    Index('idx_ai_generations_review', 'review_id', 'superseded_at'),
)

# AI usage analytics (cost/latency tracking per call)
ai_usage_events = Table(
    'ai_usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('business_id', String(36), nullable=True),
    Column('operation', String(50), nullable=False),
    Column('tokens_used', Integer, nullable=False, server_default='0'),
    Column('response_time_ms', Integer, nullable=False, server_default='0'),
    Column('success', Boolean, nullable=False),
    Column('strategy', String(20), nullable=True),
    Column('error_message', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_ai_usage_events_business_created', 'business_id', 'created_at'),
)
