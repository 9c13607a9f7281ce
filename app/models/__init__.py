# Database models package
from app.models.job import GenerationJob, JobState, Progress, TERMINAL_STATES, ACTIVE_STATES

__all__ = [
    "GenerationJob",
    "JobState",
    "Progress",
    "TERMINAL_STATES",
    "ACTIVE_STATES",
]
