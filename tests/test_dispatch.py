import asyncio
from contextlib import contextmanager

import pytest

from app.core.config import settings
from app.core.errors import ErrorCodes, QueueFull
from app.models.job import JobState
from app.services.admission import AdmissionController
from app.services.providers import get_generation_provider
from app.workers.processor import JobProcessor
from app.workers.queue import LocalJobDispatcher, RQJobDispatcher, get_job_dispatcher
from app.workers.tasks import run_generation_task

from conftest import FakeProvider, FakeStorage, RecordingDispatcher


@pytest.mark.anyio
async def test_dispatched_jobs_are_processed(session_factory, store, make_job):
    jobs = [make_job(prompt=p) for p in ("a cat", "a dog", "a bird")]
    processor = JobProcessor(session_factory, FakeProvider(), FakeStorage())
    dispatcher = LocalJobDispatcher(processor, concurrency=2, queue_size=10, shutdown_grace_seconds=1)

    await dispatcher.start()
    for job in jobs:
        dispatcher.dispatch(job.id)
    await dispatcher.join()
    await dispatcher.stop()

    assert all(store.get(job.id).state == JobState.SUCCESS.value for job in jobs)


@pytest.mark.anyio
async def test_start_resumes_pending_jobs(session_factory, store, make_job):
    job = make_job()
    dispatcher = LocalJobDispatcher(
        JobProcessor(session_factory, FakeProvider(), FakeStorage()),
        concurrency=1,
        queue_size=10,
        shutdown_grace_seconds=1,
    )

    await dispatcher.start(store.list_ids_by_state(JobState.PENDING))
    await dispatcher.join()
    await dispatcher.stop()

    assert store.get(job.id).state == JobState.SUCCESS.value


@pytest.mark.anyio
async def test_full_queue_raises_queue_full(session_factory):
    release = asyncio.Event()

    async def hook(request, token):
        await release.wait()

    dispatcher = LocalJobDispatcher(
        JobProcessor(session_factory, FakeProvider(hook=hook), FakeStorage()),
        concurrency=1,
        queue_size=1,
        shutdown_grace_seconds=1,
    )
    await dispatcher.start()

    dispatcher.dispatch("gen_a")
    assert dispatcher.can_accept() is False
    with pytest.raises(QueueFull):
        dispatcher.dispatch("gen_b")

    release.set()
    await dispatcher.stop()


def test_dispatch_before_start_is_rejected():
    dispatcher = LocalJobDispatcher(processor=object(), concurrency=1, queue_size=1)

    assert dispatcher.can_accept() is False
    with pytest.raises(QueueFull):
        dispatcher.dispatch("gen_a")


@pytest.mark.anyio
async def test_stop_cancels_in_flight_job(session_factory, store, make_job):
    job = make_job()
    started = asyncio.Event()

    async def hook(request, token):
        started.set()
        while True:
            await token.sleep(0.01)

    dispatcher = LocalJobDispatcher(
        JobProcessor(session_factory, FakeProvider(hook=hook), FakeStorage()),
        concurrency=1,
        queue_size=10,
        shutdown_grace_seconds=2,
    )
    await dispatcher.start()
    dispatcher.dispatch(job.id)
    await started.wait()

    await dispatcher.stop()

    cancelled = store.get(job.id)
    assert cancelled.state == JobState.CANCELLED.value
    assert cancelled.error_code == ErrorCodes.CANCELLED
    assert dispatcher.running is False


@pytest.mark.anyio
async def test_stop_past_grace_period_frees_active_slots(session_factory, store, make_job):
    jobs = [make_job(prompt=p) for p in ("a cat", "a dog", "a bird")]

    async def hook(request, token):
        # Never checks the token, like a single long provider call
        await asyncio.sleep(3600)

    provider = FakeProvider(hook=hook)
    dispatcher = LocalJobDispatcher(
        JobProcessor(session_factory, provider, FakeStorage()),
        concurrency=3,
        queue_size=10,
        shutdown_grace_seconds=0.2,
    )
    await dispatcher.start()
    for job in jobs:
        dispatcher.dispatch(job.id)
    while len(provider.requests) < 3:
        await asyncio.sleep(0.01)

    await dispatcher.stop()

    assert [store.get(job.id).state for job in jobs] == [JobState.CANCELLED.value] * 3
    assert store.count_active_by_user("user-1") == 0
    admission = AdmissionController(store, RecordingDispatcher(), max_active_jobs=3).admit(
        "user-1", "a fox", "ghibli", "1024x1024"
    )
    assert admission.deduplicated is False


@pytest.mark.anyio
async def test_start_cancels_jobs_left_running(session_factory, store, make_job):
    stale = make_job(prompt="a cat")
    assert store.claim(stale.id) is True
    pending = make_job(prompt="a dog")
    dispatcher = LocalJobDispatcher(
        JobProcessor(session_factory, FakeProvider(), FakeStorage()),
        concurrency=1,
        queue_size=10,
        shutdown_grace_seconds=1,
    )

    await dispatcher.start(store.list_ids_by_state(JobState.PENDING))
    await dispatcher.join()
    await dispatcher.stop()

    interrupted = store.get(stale.id)
    assert interrupted.state == JobState.CANCELLED.value
    assert interrupted.error_code == ErrorCodes.CANCELLED
    assert store.get(pending.id).state == JobState.SUCCESS.value


class FakeRQQueue:
    def __init__(self, length: int = 0):
        self.length = length
        self.calls = []

    def __len__(self):
        return self.length

    def enqueue_call(self, **kwargs):
        self.calls.append(kwargs)
        return kwargs["job_id"]


def test_rq_dispatch_enqueues_task_by_job_id():
    dispatcher = RQJobDispatcher(queue_size=5)
    dispatcher._queue = FakeRQQueue()

    assert dispatcher.can_accept() is True
    dispatcher.dispatch("gen_abc")

    [call] = dispatcher._queue.calls
    assert call["func"] is run_generation_task
    assert call["kwargs"] == {"generation_job_id": "gen_abc"}
    assert call["job_id"] == "gen_abc"
    assert call["timeout"] == settings.JOB_TIMEOUT_GENERATION
    assert "retry" not in call
    assert call["meta"]["type"] == "image_generation"


def test_rq_dispatcher_refuses_when_queue_is_full():
    dispatcher = RQJobDispatcher(queue_size=2)
    dispatcher._queue = FakeRQQueue(length=2)

    assert dispatcher.can_accept() is False


def test_run_generation_task_finishes_pending_job(monkeypatch, session_factory, store, make_job):
    job = make_job()
    processor = JobProcessor(session_factory, FakeProvider(), FakeStorage())

    @contextmanager
    def test_session_scope():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(JobProcessor, "from_settings", classmethod(lambda cls: processor))
    monkeypatch.setattr("app.core.database.session_scope", test_session_scope)

    result = run_generation_task(job.id)

    assert result == {"job_id": job.id, "claimed": True, "state": JobState.SUCCESS.value}
    assert store.get(job.id).state == JobState.SUCCESS.value


@pytest.mark.parametrize("kind, expected", [("local", LocalJobDispatcher), ("rq", RQJobDispatcher)])
def test_get_job_dispatcher_selects_by_setting(monkeypatch, kind, expected):
    monkeypatch.setattr("app.workers.queue._dispatcher", None)
    monkeypatch.setattr("app.workers.queue.settings.JOB_DISPATCHER", kind)

    assert isinstance(get_job_dispatcher(), expected)


def test_get_job_dispatcher_rejects_unknown_kind(monkeypatch):
    monkeypatch.setattr("app.workers.queue._dispatcher", None)
    monkeypatch.setattr("app.workers.queue.settings.JOB_DISPATCHER", "celery")

    with pytest.raises(ValueError):
        get_job_dispatcher()


def test_get_generation_provider_rejects_unknown_name():
    with pytest.raises(ValueError):
        get_generation_provider("dalle")
