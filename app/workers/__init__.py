# Workers package - job processing, dispatch and RQ tasks
#
# processor.py  JobProcessor state machine
# queue.py      LocalJobDispatcher (in-process pool) / RQJobDispatcher
# tasks.py      RQ entrypoint

from app.workers.base import (
    RetryableError,
    CancellationToken,
    with_retry,
)

__all__ = [
    "RetryableError",
    "CancellationToken",
    "with_retry",
]
