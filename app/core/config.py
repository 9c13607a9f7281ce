"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Stylize Jobs API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./stylize.db"

    # Redis (only needed when JOB_DISPATCHER=rq)
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Admission limits
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    MAX_ACTIVE_JOBS_PER_USER: int = 3

    # Generation provider: "banana" (submit + poll) or "gemini" (single call)
    GENERATION_PROVIDER: str = "banana"

    # Banana serverless inference
    BANANA_API_KEY: str = ""
    BANANA_BASE_URL: str = "https://api.banana.dev"
    BANANA_MODEL_KEY: str = ""
    BANANA_MODEL_NAME: str = "stable-diffusion-xl"
    BANANA_INFERENCE_STEPS: int = 20
    BANANA_GUIDANCE_SCALE: float = 7.5
    PROVIDER_POLL_INTERVAL: float = 2.0  # Seconds between status checks
    PROVIDER_MAX_POLL_ATTEMPTS: int = 30  # ~60s total with the default interval
    PROVIDER_REQUEST_TIMEOUT: float = 30.0

    # Image Generation (Gemini 2.5 Flash - Nano Banana)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash-image"
    GEMINI_MAX_ATTEMPTS: int = 3
    GENERATION_TIMEOUT_SECONDS: int = 60

    # Dispatch: "local" (in-process worker pool) or "rq" (Redis queue + scripts/run_workers.py)
    JOB_DISPATCHER: str = "local"
    WORKER_CONCURRENCY: int = 2  # Max concurrent provider calls in the local pool
    WORKER_QUEUE_SIZE: int = 100
    WORKER_SHUTDOWN_GRACE_SECONDS: float = 5.0
    JOB_TIMEOUT_GENERATION: int = 120

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage (for Cloud Run deployment)
    USE_GCS: bool = False
    GCS_BUCKET_OUTPUTS: str = "stylize-outputs"
    GCP_PROJECT_ID: str = ""

    @field_validator('GEMINI_API_KEY', 'BANANA_API_KEY', 'BANANA_MODEL_KEY', mode='before')
    @classmethod
    def strip_api_keys(cls, v):
        """Strip whitespace and newlines from API keys loaded from secrets."""
        if isinstance(v, str):
            return v.strip()
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
