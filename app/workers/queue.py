"""
Job Dispatch
Hands admitted job ids to something that will run them.

- LocalJobDispatcher: bounded asyncio.Queue drained by a fixed pool of
  worker tasks inside the API process.
- RQJobDispatcher: RQ queue on Redis, drained by `scripts/run_workers.py`.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

from rq import Queue
from rq.job import Job

from app.core.config import settings
from app.core.errors import QueueFull
from app.core.redis import get_redis, Queues
from app.models.job import utcnow
from app.workers.base import CancellationToken

logger = logging.getLogger(__name__)


class JobDispatcher(Protocol):
    """Where admitted jobs are sent for processing."""

    def can_accept(self) -> bool:
        ...

    def dispatch(self, job_id: str) -> None:
        ...


class LocalJobDispatcher:
    """
    In-process worker pool.

    At most `concurrency` jobs run at once regardless of how many users
    submit; the backlog is bounded by `queue_size`.
    """

    def __init__(
        self,
        processor=None,
        concurrency: Optional[int] = None,
        queue_size: Optional[int] = None,
        shutdown_grace_seconds: Optional[float] = None,
    ):
        self._processor = processor
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.queue_size = queue_size or settings.WORKER_QUEUE_SIZE
        self.shutdown_grace_seconds = (
            shutdown_grace_seconds if shutdown_grace_seconds is not None
            else settings.WORKER_SHUTDOWN_GRACE_SECONDS
        )
        self.token = CancellationToken()
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def processor(self):
        """Lazy processor so the provider is only built once workers run."""
        if self._processor is None:
            from app.workers.processor import JobProcessor
            self._processor = JobProcessor.from_settings()
        return self._processor

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self, pending_job_ids: Optional[List[str]] = None):
        """
        Spawn the worker tasks and re-dispatch jobs left pending by an earlier process.

        Rows still `running` belonged to workers of an earlier process and are
        cancelled first so they stop counting as active.
        """
        if self.running:
            return
        self.processor.recover_interrupted()
        self.token = CancellationToken()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"generation-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"[Dispatcher] Started {self.concurrency} local workers (queue size {self.queue_size})")

        for job_id in pending_job_ids or []:
            try:
                self.dispatch(job_id)
            except QueueFull:
                logger.warning(f"[Dispatcher] Queue full while resuming, {job_id} stays pending")
                break

    async def stop(self):
        """Cancel in-flight runs, give them a grace period, then stop the workers."""
        if not self.running:
            return
        self.token.cancel("Worker shutting down")

        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"[Dispatcher] Jobs still running after {self.shutdown_grace_seconds}s grace")
        # Idle workers are blocked on queue.get() and only exit when cancelled
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers = []
        self._queue = None
        logger.info("[Dispatcher] Local workers stopped")

    def can_accept(self) -> bool:
        return self._queue is not None and not self._queue.full()

    def dispatch(self, job_id: str) -> None:
        if self._queue is None:
            raise QueueFull("Job dispatcher is not running")
        try:
            self._queue.put_nowait(job_id)
        except asyncio.QueueFull:
            raise QueueFull(f"Job queue is full ({self.queue_size} waiting)")
        logger.debug(f"[Dispatcher] Queued {job_id} ({self._queue.qsize()} waiting)")

    async def join(self):
        """Wait until every dispatched job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, index: int):
        while True:
            job_id = await self._queue.get()
            try:
                if self.token.cancelled:
                    # Shutting down: leave the row pending for the next start()
                    continue
                await self.processor.process(job_id, self.token)
            except Exception as e:
                logger.exception(f"[Worker {index}] Unhandled error processing {job_id}: {e}")
            finally:
                self._queue.task_done()


class RQJobDispatcher:
    """Dispatches jobs to the Redis `generation` queue."""

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.WORKER_QUEUE_SIZE
        self._queue: Optional[Queue] = None

    @property
    def queue(self) -> Queue:
        """Lazy Redis connection."""
        if self._queue is None:
            self._queue = Queue(
                name=Queues.GENERATION,
                connection=get_redis(),
                default_timeout=settings.JOB_TIMEOUT_GENERATION
            )
        return self._queue

    async def start(self, pending_job_ids: Optional[List[str]] = None):
        # RQ jobs outlive the API process; pending rows are already queued
        return None

    async def stop(self):
        return None

    def can_accept(self) -> bool:
        return len(self.queue) < self.queue_size

    def dispatch(self, job_id: str) -> Job:
        from app.workers.tasks import run_generation_task

        job = self.queue.enqueue_call(
            func=run_generation_task,
            kwargs={"generation_job_id": job_id},
            job_id=job_id,
            timeout=settings.JOB_TIMEOUT_GENERATION,
            meta={
                "type": "image_generation",
                "created_at": utcnow().isoformat()
            }
        )
        logger.info(f"[Dispatcher] Enqueued generation job: {job_id}")
        return job


# Singleton instance
_dispatcher = None


def get_job_dispatcher():
    """Get the configured dispatcher (JOB_DISPATCHER = local | rq)."""
    global _dispatcher
    if _dispatcher is None:
        kind = settings.JOB_DISPATCHER.lower()
        if kind == "rq":
            _dispatcher = RQJobDispatcher()
        elif kind == "local":
            _dispatcher = LocalJobDispatcher()
        else:
            raise ValueError(f"Unknown job dispatcher: {settings.JOB_DISPATCHER}")
    return _dispatcher


__all__ = [
    "JobDispatcher",
    "LocalJobDispatcher",
    "RQJobDispatcher",
    "get_job_dispatcher",
]
