import base64
import sys
from pathlib import Path
from typing import List, Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT_DIR))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import generate
from app.api.deps import get_db, get_dispatcher
from app.core.database import Base
from app.core.error_handlers import register_error_handlers
from app.services.job_store import JobStore
from app.services.prompt_assembly import assemble_prompt, prompt_hash
from app.services.providers.base import GenerationRequest, GenerationResult
from app.workers.base import CancellationToken

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake-image-bytes").decode("utf-8")


class FakeProvider:
    """Provider double: returns a canned result or raises `error`."""

    name = "fake"

    def __init__(self, error: Optional[Exception] = None, seed: int = 4242, hook=None):
        self.error = error
        self.seed = seed
        self.hook = hook
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest, token: Optional[CancellationToken] = None) -> GenerationResult:
        self.requests.append(request)
        if self.hook is not None:
            await self.hook(request, token)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            image_b64=PNG_B64,
            seed=request.seed if request.seed is not None else self.seed,
            model="fake-model",
            duration_ms=1234,
        )


class FakeStorage:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.stored = {}

    async def store(self, job_id: str, payload_b64: str) -> str:
        if self.error is not None:
            raise self.error
        self.stored[job_id] = payload_b64
        return f"/files/outputs/jobs/{job_id}/result.png"


class RecordingDispatcher:
    """Collects dispatched job ids instead of running them."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.dispatched: List[str] = []

    def can_accept(self) -> bool:
        return self.accept

    def dispatch(self, job_id: str) -> None:
        self.dispatched.append(job_id)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db):
    return JobStore(db)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def make_job(store):
    """Insert a job directly, optionally forcing its state and result fields."""

    def _make_job(user_id="user-1", prompt="a cat in a garden", style="ghibli", size="1024x1024", **fields):
        final_prompt = assemble_prompt(prompt, style)
        job = store.create(
            user_id=user_id,
            prompt=final_prompt,
            prompt_hash=prompt_hash(final_prompt),
            style=style,
            size=size,
            upload_id=fields.pop("upload_id", None),
            seed=fields.pop("seed", None),
        )
        if fields:
            for key, value in fields.items():
                setattr(job, key, value)
            store.db.commit()
            store.db.refresh(job)
        return job

    return _make_job


@pytest.fixture()
def client(session_factory, dispatcher):
    app = FastAPI()
    app.include_router(generate.router, prefix="/api/v1", tags=["Image Generation"])
    register_error_handlers(app)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    return TestClient(app)
