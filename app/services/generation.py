"""
Generation Service
Entry points used by the API: submit a generation, submit a regeneration,
read a job's status.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import AccessDenied, NotFound
from app.schemas.job import JobStatusResponse
from app.services.admission import Admission, AdmissionController
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


class GenerationService:
    """Facade over admission and the Job Store for one request session."""

    def __init__(self, db: Session, dispatcher, **limits):
        self.store = JobStore(db)
        self.admission = AdmissionController(self.store, dispatcher, **limits)

    def submit_generation(
        self,
        user_id: str,
        prompt: str,
        style: str,
        size: str,
        upload_id: Optional[str] = None,
    ) -> Admission:
        return self.admission.admit(user_id, prompt, style, size, upload_id=upload_id)

    def submit_regeneration(
        self,
        user_id: str,
        original_job_id: str,
        prompt_delta: Optional[str] = None,
        lock_seed: bool = False,
    ) -> Admission:
        return self.admission.admit_regeneration(
            user_id,
            original_job_id,
            prompt_delta=prompt_delta,
            lock_seed=lock_seed,
        )

    def get_status(self, job_id: str, user_id: Optional[str] = None) -> JobStatusResponse:
        """
        Current view of a job, read straight from the Job Store.

        When `user_id` is given the job must belong to that user.
        """
        job = self.store.get(job_id)
        if job is None:
            raise NotFound(f"Job not found: {job_id}")
        if user_id is not None and job.user_id != user_id:
            raise AccessDenied("Access denied")
        return JobStatusResponse.from_job(job)


__all__ = ["GenerationService"]
