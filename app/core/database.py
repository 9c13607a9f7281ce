"""
Database Configuration
SQLAlchemy engine and session management.
Supports both SQLite (local dev) and PostgreSQL (production).
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)

is_sqlite = settings.DATABASE_URL.startswith("sqlite")

if is_sqlite:
    # Worker tasks and request handlers share the file from different threads
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Short-lived session for code outside a request (lifespan, RQ tasks, health)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the generation_jobs table if it does not exist."""
    from app.models import GenerationJob  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        # Read-only filesystem or tables managed elsewhere
        logger.warning(f"Could not create database tables: {e}")
        logger.info("Continuing with existing database...")
