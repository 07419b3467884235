# pyright: reportMissingTypeStubs=false
"""
Database configuration and session management.

This module sets up SQLAlchemy database connection, session management,
and provides dependency injection for database sessions in FastAPI routes.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from fastapi import HTTPException
from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from core.config import DATABASE_URL
from core.constants import DB_POOL_RECYCLE_SECONDS
from core.exceptions import ClinicWorkflowError

logger = logging.getLogger(__name__)

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=DB_POOL_RECYCLE_SECONDS,
    echo=False,
    future=True,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Don't expire objects after commit
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


@event.listens_for(Base, "before_insert", propagate=True)  # type: ignore
def receive_before_insert(mapper, connection, target):  # type: ignore
    """Set created_at and updated_at on insert using the clinic timezone."""
    # Import here to avoid circular import
    from utils.datetime_utils import clinic_now
    now = clinic_now()
    for column_name in ("created_at", "updated_at"):
        if column_name in mapper.columns and getattr(target, column_name, None) is None:
            setattr(target, column_name, now)


@event.listens_for(Base, "before_update", propagate=True)  # type: ignore
def receive_before_update(mapper, connection, target):  # type: ignore
    """Set updated_at on update using the clinic timezone."""
    from utils.datetime_utils import clinic_now
    if "updated_at" in mapper.columns:
        setattr(target, "updated_at", clinic_now())


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency to provide database sessions.

    Yields a database session that is automatically closed after the request.
    Handles cleanup even if an exception occurs during request processing.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.exception(f"Database error: {e}")
        db.rollback()
        raise
    except (HTTPException, ClinicWorkflowError):
        # Expected business outcomes, not errors worth logging here
        db.rollback()
        raise
    except Exception as e:
        logger.exception(f"Unexpected error in database session: {e}")
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside of FastAPI dependency injection.

    Useful for scripts and maintenance tasks that need manual session management.

    Yields:
        Session: SQLAlchemy database session

    Example:
        ```python
        with get_db_context() as db:
            billing = BillingService.get_billing(db, caller, billing_id)
        ```
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except ClinicWorkflowError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.exception(f"Database transaction failed: {e}")
        raise
    finally:
        db.close()


def create_tables() -> None:
    """
    Create all database tables defined in SQLAlchemy models.

    Note:
        In production, prefer using Alembic migrations instead of this function.
    """
    # Import models so every table is registered on Base.metadata
    import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.exception(f"Failed to create database tables: {e}")
        raise
