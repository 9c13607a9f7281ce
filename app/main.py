"""
Stylize Jobs API - Asynchronous Image Generation Pipeline
FastAPI Backend Entry Point
"""

import io
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from app.core.config import settings
from app.core.database import init_db, session_scope
from app.core.error_handlers import register_error_handlers
from app.api import generate
from app.models.job import JobState
from app.services.job_store import JobStore
from app.workers.queue import get_job_dispatcher

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def _pending_job_ids():
    with session_scope() as db:
        return JobStore(db).list_ids_by_state(JobState.PENDING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME}...")
    init_db()

    dispatcher = get_job_dispatcher()
    await dispatcher.start(_pending_job_ids())
    yield
    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await dispatcher.stop()


app = FastAPI(
    title=settings.APP_NAME,
    description="Asynchronous style-transfer generation jobs with polling and regeneration",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(generate.router, prefix="/api/v1", tags=["Image Generation"])


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for monitoring.
    Returns detailed status of critical services.
    """
    status = {
        "status": "healthy",
        "version": "0.1.0",
        "environment": {
            "storage": "gcs" if settings.USE_GCS else ("local" if settings.USE_LOCAL_STORAGE else "s3"),
            "database": "sqlite" if settings.DATABASE_URL.startswith("sqlite") else "postgres",
            "dispatcher": settings.JOB_DISPATCHER,
            "provider": settings.GENERATION_PROVIDER,
        },
        "services": {}
    }

    # Check database connection
    try:
        from sqlalchemy import text
        with session_scope() as db:
            db.execute(text("SELECT 1"))
        status["services"]["database"] = "ok"
    except Exception as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"

    # Check Redis connection (only used by the RQ dispatcher)
    if settings.JOB_DISPATCHER == "rq":
        from app.core.redis import redis_health_check
        redis_status = redis_health_check()
        if redis_status.get("connected"):
            status["services"]["redis"] = "ok"
            status["services"]["redis_version"] = redis_status.get("redis_version")
        else:
            status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
            status["status"] = "degraded"

    # Check storage availability
    try:
        if settings.USE_GCS:
            from google.cloud import storage
            client = storage.Client(project=settings.GCP_PROJECT_ID)
            client.bucket(settings.GCS_BUCKET_OUTPUTS).exists()
        elif settings.USE_LOCAL_STORAGE:
            import os
            if not os.path.isdir(settings.LOCAL_STORAGE_PATH):
                raise FileNotFoundError(settings.LOCAL_STORAGE_PATH)
        status["services"]["storage"] = "ok"
    except Exception as e:
        status["services"]["storage"] = f"error: {str(e)}"
        status["status"] = "degraded"

    return status


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """
    Serve stored results (images) from storage.
    This proxies files from GCS/S3/local storage to the frontend.
    """
    from app.services.storage import ResultStorage

    try:
        storage = ResultStorage()
        file_bytes = await storage.get_file(file_path)
    except Exception as e:
        raise HTTPException(status_code=404, detail=f"File not found: {str(e)}")

    content_type = "image/png" if file_path.endswith(".png") else "application/octet-stream"
    return StreamingResponse(
        io.BytesIO(file_bytes),
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=3600"}
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"{settings.APP_NAME}",
        "docs": "/docs",
        "health": "/health",
    }
