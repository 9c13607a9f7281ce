"""
Admission Controller
Decides whether a generation request becomes a job.

Order of checks for a new request:
  1. per-user rate limit over a sliding window
  2. per-user cap on active (pending/running) jobs
  3. prompt/style/size validation and prompt assembly (safety filter)
  4. dedup against a successful job with the same prompt hash
  5. dispatcher capacity
  6. create the pending row and hand it to the dispatcher

Nothing is persisted when a check fails. Counters are derived from the
Job Store, never kept in memory.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.core.config import settings
from app.core.errors import (
    AccessDenied,
    InvalidPrompt,
    InvalidState,
    NotFound,
    QueueFull,
    RateLimitExceeded,
    SafetyViolation,
    TooManyActiveJobs,
)
from app.models.job import JobState, utcnow
from app.services.content_safety import check_content
from app.services.job_store import JobStore
from app.services.prompt_assembly import (
    apply_delta,
    assemble_prompt,
    prompt_hash,
    require_valid_request,
    validate_prompt,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admission:
    """Outcome of a successful admission."""
    job_id: str
    deduplicated: bool = False


class AdmissionController:
    """Admits generation and regeneration requests against one JobStore."""

    def __init__(
        self,
        store: JobStore,
        dispatcher,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
        max_active_jobs: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.max_requests = max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        self.window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        self.max_active_jobs = max_active_jobs or settings.MAX_ACTIVE_JOBS_PER_USER
        self.clock = clock

    def admit(
        self,
        user_id: str,
        prompt: str,
        style: str,
        size: str,
        upload_id: Optional[str] = None,
    ) -> Admission:
        """Admit a new generation request, or raise a typed admission error."""
        self._check_limits(user_id)

        require_valid_request(prompt, style, size)
        final_prompt = assemble_prompt(prompt, style)

        return self._create(
            user_id=user_id,
            prompt=final_prompt,
            style=style,
            size=size,
            upload_id=upload_id,
        )

    def admit_regeneration(
        self,
        user_id: str,
        original_job_id: str,
        prompt_delta: Optional[str] = None,
        lock_seed: bool = False,
    ) -> Admission:
        """
        Admit a regeneration of a successful job.

        The new prompt is the original's assembled prompt with the delta
        applied; style, size and upload are inherited and the seed is
        pinned when `lock_seed` is set.
        """
        original = self.store.get(original_job_id)
        if original is None:
            raise NotFound(f"Original job not found: {original_job_id}")
        if original.user_id != user_id:
            raise AccessDenied("Access denied")
        if original.state != JobState.SUCCESS.value:
            raise InvalidState(f"Can only regenerate successful jobs (job is {original.state})")

        self._check_limits(user_id)

        new_prompt = apply_delta(original.prompt, prompt_delta)
        validation = validate_prompt(new_prompt)
        if not validation.valid:
            raise InvalidPrompt(validation.reason)
        safety = check_content(new_prompt)
        if not safety.safe:
            raise SafetyViolation(f"Content contains restricted term: {safety.reason}", term=safety.reason)

        return self._create(
            user_id=user_id,
            prompt=new_prompt,
            style=original.style,
            size=original.size,
            upload_id=original.upload_id,
            seed=original.seed if lock_seed else None,
            lock_seed=lock_seed,
            parent_job_id=original.id,
        )

    def _check_limits(self, user_id: str):
        window_start = self.clock() - timedelta(seconds=self.window_seconds)
        recent = self.store.count_by_user_since(user_id, window_start)
        if recent >= self.max_requests:
            logger.info(f"[Admission] Rate limit hit for {user_id} ({recent}/{self.max_requests})")
            raise RateLimitExceeded(
                f"Rate limit exceeded: {self.max_requests} requests per {self.window_seconds}s",
                retry_after=self.window_seconds,
            )

        active = self.store.count_active_by_user(user_id)
        if active >= self.max_active_jobs:
            logger.info(f"[Admission] Active job cap hit for {user_id} ({active}/{self.max_active_jobs})")
            raise TooManyActiveJobs(
                f"Too many active jobs (max {self.max_active_jobs})",
                active_count=active,
            )

    def _create(self, user_id: str, prompt: str, style: str, size: str, **fields) -> Admission:
        digest = prompt_hash(prompt)

        existing = self.store.find_by_prompt_hash(digest)
        if existing is not None:
            logger.info(f"[Admission] Dedup hit for {user_id}: {existing.id}")
            return Admission(job_id=existing.id, deduplicated=True)

        if not self.dispatcher.can_accept():
            raise QueueFull("Generation queue is full, try again shortly")

        job = self.store.create(
            user_id=user_id,
            prompt=prompt,
            prompt_hash=digest,
            style=style,
            size=size,
            **fields,
        )
        logger.info(f"[Admission] Created job {job.id} for {user_id}")

        try:
            self.dispatcher.dispatch(job.id)
        except QueueFull as e:
            # Lost the race for the last slot; fail the row so it does not count as active
            self.store.mark_failed(job.id, e.message, e.code)
            raise

        return Admission(job_id=job.id)


__all__ = ["Admission", "AdmissionController"]
