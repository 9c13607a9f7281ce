"""
Job Processor
Drives one generation job through its lifecycle:

    pending -> running -> success | failed      (cancelled is also terminal)

Progress checkpoints: 10 claimed, 20 provider call, 90 provider done,
95 persisting result, 100 success.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import ErrorCodes, JobCancelled, classify_error
from app.models.job import JobState, Progress
from app.services.job_store import JobStore
from app.services.providers.base import GenerationProvider, GenerationRequest
from app.workers.base import CancellationToken

logger = logging.getLogger(__name__)


class JobProcessor:
    """Runs generation jobs; every write goes through a JobStore transition."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: GenerationProvider,
        storage,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.storage = storage

    @classmethod
    def from_settings(cls) -> "JobProcessor":
        """Build a processor from the configured provider and storage backend."""
        from app.core.database import SessionLocal
        from app.services.providers import get_generation_provider
        from app.services.storage import ResultStorage

        return cls(SessionLocal, get_generation_provider(), ResultStorage())

    async def process(self, job_id: str, token: Optional[CancellationToken] = None) -> bool:
        """
        Process a single job.

        Returns True if this call claimed the job, False if the job was
        missing or already claimed elsewhere (no-op).
        """
        token = token or CancellationToken()
        db = self.session_factory()
        store = JobStore(db)

        try:
            if not store.claim(job_id):
                logger.info(f"[Processor] {job_id}: not pending, skipping")
                return False

            try:
                await self._run(store, job_id, token)
            except JobCancelled as e:
                db.rollback()
                store.mark_cancelled(job_id, e.message, e.code)
            except asyncio.CancelledError:
                # Worker task cancelled mid-run; record it before unwinding
                db.rollback()
                store.mark_cancelled(job_id, "Worker stopped before the job finished", ErrorCodes.CANCELLED)
                raise
            except Exception as e:
                db.rollback()
                message, code = classify_error(e)
                logger.error(f"[Processor] {job_id} failed ({code}): {message}")
                store.mark_failed(job_id, message, code)
            return True

        finally:
            db.close()

    def recover_interrupted(self) -> List[str]:
        """
        Cancel jobs left `running` by a worker pool that is no longer alive.

        Only safe when this process is the sole runner of jobs (local dispatch).
        """
        db = self.session_factory()
        try:
            store = JobStore(db)
            recovered = [
                job_id for job_id in store.list_ids_by_state(JobState.RUNNING)
                if store.mark_cancelled(job_id, "Interrupted by worker restart", ErrorCodes.CANCELLED)
            ]
        finally:
            db.close()
        if recovered:
            logger.warning(f"[Processor] Cancelled {len(recovered)} interrupted job(s): {recovered}")
        return recovered

    async def _run(self, store: JobStore, job_id: str, token: CancellationToken):
        job = store.get(job_id)

        token.raise_if_cancelled()
        store.advance_progress(job_id, Progress.PROVIDER_CALL_START)
        logger.info(f"[Processor] {job_id}: calling provider {self.provider.name}")

        result = await self.provider.generate(
            GenerationRequest(prompt=job.prompt, style=job.style, size=job.size, seed=job.seed),
            token,
        )

        token.raise_if_cancelled()
        store.advance_progress(job_id, Progress.PROVIDER_CALL_END)

        token.raise_if_cancelled()
        store.advance_progress(job_id, Progress.UPLOAD)
        url = await self.storage.store(job_id, result.image_b64)

        token.raise_if_cancelled()
        store.mark_success(
            job_id,
            result_url=url,
            result_image_b64=result.image_b64,
            model=result.model,
            generation_time_ms=result.duration_ms,
            seed=result.seed,
        )
        logger.info(f"[Processor] {job_id}: completed in {result.duration_ms}ms -> {url}")


__all__ = ["JobProcessor"]
