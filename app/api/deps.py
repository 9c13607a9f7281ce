"""
API Dependencies
Common dependencies for FastAPI routes (database sessions, services).
"""

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.services.generation import GenerationService
from app.workers.queue import get_job_dispatcher


def get_db() -> Generator:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_dispatcher():
    return get_job_dispatcher()


def get_generation_service(
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
) -> GenerationService:
    return GenerationService(db, dispatcher)
