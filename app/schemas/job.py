"""
Job Schemas
Pydantic models for job status responses.
"""

from typing import Optional
from pydantic import BaseModel

from app.models.job import JobState


class JobStatusResponse(BaseModel):
    """
    Polling view of a generation job.

    Result fields are only set for `success`, error fields only for
    `failed` and `cancelled`.
    """
    success: bool = True
    job_id: str
    state: JobState
    progress: int
    url: Optional[str] = None
    seed: Optional[int] = None
    model: Optional[str] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @classmethod
    def from_job(cls, job) -> "JobStatusResponse":
        state = JobState(job.state)
        response = cls(job_id=job.id, state=state, progress=job.progress)
        if state == JobState.SUCCESS:
            response.url = job.result_url
            response.seed = job.seed
            response.model = job.model
            response.duration_ms = job.generation_time_ms
        elif state in (JobState.FAILED, JobState.CANCELLED):
            response.error = job.error or "Unknown error"
            response.error_code = job.error_code
        return response


class ErrorResponse(BaseModel):
    """Body returned for typed failures."""
    success: bool = False
    error: str
    error_code: str
