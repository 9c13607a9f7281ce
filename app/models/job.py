"""
Generation Job Model
Database model for style-transfer generation jobs.
"""

import enum
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text, text

from app.core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobState(str, enum.Enum):
    """Lifecycle states of a generation job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.SUCCESS, JobState.FAILED, JobState.CANCELLED})
ACTIVE_STATES = (JobState.PENDING.value, JobState.RUNNING.value)


class Progress:
    """Fixed progress checkpoints."""
    QUEUED = 0
    PREPROCESS = 10
    PROVIDER_CALL_START = 20
    PROVIDER_CALL_END = 90
    UPLOAD = 95
    DONE = 100


class GenerationJob(Base):
    """Generation job model."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True)  # gen_xxxx format
    user_id = Column(String, nullable=False, index=True)
    upload_id = Column(String, nullable=True)
    parent_job_id = Column(String, nullable=True)  # Source job of a regeneration

    # Request
    prompt = Column(Text, nullable=False)  # Fully assembled prompt
    prompt_hash = Column(String(64), nullable=False, index=True)
    style = Column(String, nullable=False)
    size = Column(String, nullable=False)
    seed = Column(Integer, nullable=True)
    lock_seed = Column(Boolean, nullable=False, default=False)

    # Status: pending, running, success, failed, cancelled
    state = Column(String, nullable=False, default=JobState.PENDING.value, index=True)
    progress = Column(Integer, nullable=False, default=Progress.QUEUED)

    # Result (success only)
    result_url = Column(String, nullable=True)
    result_image_b64 = Column(Text, nullable=True)
    model = Column(String, nullable=True)
    generation_time_ms = Column(Integer, nullable=True)

    # Error (failed / cancelled only)
    error = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # Only one successful job per prompt hash; failed and active rows may repeat it.
        Index(
            "uq_generation_jobs_prompt_hash_success",
            "prompt_hash",
            unique=True,
            sqlite_where=text("state = 'success'"),
            postgresql_where=text("state = 'success'"),
        ),
        Index("ix_generation_jobs_user_state", "user_id", "state"),
    )

    def __repr__(self) -> str:
        return f"<GenerationJob {self.id} state={self.state} progress={self.progress}>"
