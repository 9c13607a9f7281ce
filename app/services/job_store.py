"""
Job Store
Repository over the generation_jobs table. Single source of truth for
job state; status queries read it directly.

Every state-changing write is a conditional UPDATE so that the
pending -> running claim happens once, progress never moves backwards
and terminal rows are never written again.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import DuplicatePrompt
from app.models.job import ACTIVE_STATES, GenerationJob, JobState, Progress, utcnow

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    return f"gen_{uuid.uuid4().hex[:12]}"


class JobStore:
    """Read/write contract for generation jobs, bound to one session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[GenerationJob]:
        job = self.db.get(GenerationJob, job_id)
        if job is not None:
            self.db.refresh(job)
        return job

    def find_by_prompt_hash(self, prompt_hash: str, state: JobState = JobState.SUCCESS) -> Optional[GenerationJob]:
        """Find a job with this prompt hash in the given state (successful by default)."""
        stmt = (
            select(GenerationJob)
            .where(GenerationJob.prompt_hash == prompt_hash, GenerationJob.state == state.value)
            .order_by(GenerationJob.created_at.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def count_by_user_since(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count(GenerationJob.id)).where(
            GenerationJob.user_id == user_id,
            GenerationJob.created_at >= since,
        )
        return self.db.execute(stmt).scalar_one()

    def count_active_by_user(self, user_id: str) -> int:
        stmt = select(func.count(GenerationJob.id)).where(
            GenerationJob.user_id == user_id,
            GenerationJob.state.in_(ACTIVE_STATES),
        )
        return self.db.execute(stmt).scalar_one()

    def list_ids_by_state(self, state: JobState, limit: int = 500) -> List[str]:
        stmt = (
            select(GenerationJob.id)
            .where(GenerationJob.state == state.value)
            .order_by(GenerationJob.created_at.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: str,
        prompt: str,
        prompt_hash: str,
        style: str,
        size: str,
        upload_id: Optional[str] = None,
        seed: Optional[int] = None,
        lock_seed: bool = False,
        parent_job_id: Optional[str] = None,
    ) -> GenerationJob:
        """Insert a new pending job and return it."""
        job = GenerationJob(
            id=new_job_id(),
            user_id=user_id,
            upload_id=upload_id,
            parent_job_id=parent_job_id,
            prompt=prompt,
            prompt_hash=prompt_hash,
            style=style,
            size=size,
            seed=seed,
            lock_seed=lock_seed,
            state=JobState.PENDING.value,
            progress=Progress.QUEUED,
            created_at=utcnow(),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def update(self, job_id: str, *, from_states=None, **fields: Any) -> bool:
        """
        Conditionally update a job.

        Only rows whose state is in `from_states` are touched (non-terminal
        states by default). Returns True if a row changed.
        """
        allowed = [s.value if isinstance(s, JobState) else s for s in (from_states or ACTIVE_STATES)]
        stmt = (
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.state.in_(allowed))
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def claim(self, job_id: str) -> bool:
        """Atomically move a job from pending to running. False if already claimed."""
        claimed = self.update(
            job_id,
            from_states=[JobState.PENDING],
            state=JobState.RUNNING.value,
            progress=Progress.PREPROCESS,
            started_at=utcnow(),
        )
        if claimed:
            logger.info(f"[JobStore] {job_id}: pending -> running")
        return claimed

    def advance_progress(self, job_id: str, progress: int) -> bool:
        """Move progress forward on a running job; never backwards, never to 100."""
        if progress >= Progress.DONE:
            raise ValueError("Progress 100 is only reached through mark_success")
        stmt = (
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,
                GenerationJob.state == JobState.RUNNING.value,
                GenerationJob.progress <= progress,
            )
            .values(progress=progress)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def mark_success(
        self,
        job_id: str,
        result_url: str,
        result_image_b64: Optional[str],
        model: Optional[str],
        generation_time_ms: Optional[int],
        seed: Optional[int],
    ) -> bool:
        """
        Record a successful result.

        Raises:
            DuplicatePrompt: another job already succeeded with the same prompt hash
        """
        try:
            changed = self.update(
                job_id,
                from_states=[JobState.RUNNING],
                state=JobState.SUCCESS.value,
                progress=Progress.DONE,
                finished_at=utcnow(),
                result_url=result_url,
                result_image_b64=result_image_b64,
                model=model,
                generation_time_ms=generation_time_ms,
                seed=seed,
                error=None,
                error_code=None,
            )
        except IntegrityError:
            self.db.rollback()
            job = self.db.get(GenerationJob, job_id)
            existing = self.find_by_prompt_hash(job.prompt_hash) if job else None
            existing_id = existing.id if existing else None
            raise DuplicatePrompt(
                f"An identical prompt already succeeded as job {existing_id}",
                existing_job_id=existing_id,
            )
        if changed:
            logger.info(f"[JobStore] {job_id}: running -> success")
        return changed

    def mark_failed(self, job_id: str, error: str, error_code: str) -> bool:
        changed = self._finish(job_id, JobState.FAILED, error, error_code)
        if changed:
            logger.info(f"[JobStore] {job_id}: -> failed ({error_code})")
        return changed

    def mark_cancelled(self, job_id: str, error: str, error_code: str) -> bool:
        changed = self._finish(job_id, JobState.CANCELLED, error, error_code)
        if changed:
            logger.info(f"[JobStore] {job_id}: -> cancelled")
        return changed

    def _finish(self, job_id: str, state: JobState, error: str, error_code: str) -> bool:
        fields: Dict[str, Any] = {
            "state": state.value,
            "finished_at": utcnow(),
            "error": error,
            "error_code": error_code,
            "result_url": None,
            "result_image_b64": None,
            "model": None,
            "generation_time_ms": None,
        }
        return self.update(job_id, **fields)
