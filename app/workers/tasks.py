"""
RQ Task Definitions
Defines the task functions that are executed by RQ workers.
"""

import asyncio
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    return asyncio.run(coro)


def run_generation_task(generation_job_id: str) -> Dict[str, Any]:
    """
    RQ task for one generation job.

    Failures are recorded on the job row by the processor, so the task
    itself only fails on infrastructure errors. There is no RQ-level retry.
    """
    from app.core.database import session_scope
    from app.services.job_store import JobStore
    from app.workers.processor import JobProcessor

    logger.info(f"[Task] Starting image generation: {generation_job_id}")

    processor = JobProcessor.from_settings()
    claimed = _run_async(processor.process(generation_job_id))

    with session_scope() as db:
        job = JobStore(db).get(generation_job_id)
        state = job.state if job else "missing"

    logger.info(f"[Task] Finished {generation_job_id}: {state}")
    return {
        "job_id": generation_job_id,
        "claimed": claimed,
        "state": state,
    }


__all__ = ["run_generation_task"]
