"""
Base Worker Utilities
Retry logic and cooperative cancellation shared by the job processor and
the provider adapters.
"""

import asyncio
import logging
import threading
from functools import wraps
from typing import Callable, Optional, TypeVar

from app.core.errors import JobCancelled

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryableError(Exception):
    """Transient failure in a worker step (e.g., storage hiccup); retried by `with_retry`."""


class CancellationToken:
    """
    Cooperative cancellation flag for a job run.

    Thread-safe so the same token can be cancelled from a shutdown hook
    while a worker checks it from its own event loop.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Job cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise JobCancelled(self.reason or "Job cancelled")

    async def sleep(self, seconds: float):
        """Sleep, then fail fast if the token was cancelled meanwhile."""
        self.raise_if_cancelled()
        if seconds > 0:
            await asyncio.sleep(seconds)
        self.raise_if_cancelled()


def with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    exponential_backoff: bool = True,
    retryable_exceptions: tuple = (RetryableError, TimeoutError, ConnectionError)
):
    """
    Decorator to add retry logic to async worker steps.

    Args:
        max_retries: Maximum number of retry attempts
        retry_delay: Base delay between retries (seconds)
        exponential_backoff: Whether to use exponential backoff
        retryable_exceptions: Tuple of exception types that should trigger retry
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = retry_delay * (2 ** attempt if exponential_backoff else 1)
                        logger.warning(
                            f"[Retry {attempt + 1}/{max_retries}] {func.__name__} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"[Failed] {func.__name__} exhausted all {max_retries} retries: {e}"
                        )

            raise last_exception

        return wrapper

    return decorator


__all__ = [
    "RetryableError",
    "CancellationToken",
    "with_retry",
]
