"""
Error Taxonomy
Typed failures raised by the generation pipeline.

Admission-time errors are raised to the caller and nothing is persisted.
Processing-time errors are classified into an error code and recorded on
the job row; they never reach the original caller.
"""

from typing import Optional, Tuple


class ErrorCodes:
    """Machine error codes stored on job rows and returned by the API."""
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_PROMPT = "INVALID_PROMPT"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"
    SAFETY_VIOLATION = "SAFETY_VIOLATION"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    QUEUE_FULL = "QUEUE_FULL"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    DUPLICATE_PROMPT = "DUPLICATE_PROMPT"
    NOT_FOUND = "NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    INVALID_STATE = "INVALID_STATE"
    CANCELLED = "CANCELLED"


class GenerationError(Exception):
    """Base exception for pipeline errors."""

    code: str = ErrorCodes.SERVER_ERROR
    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidPrompt(GenerationError):
    """Prompt, style or size failed validation."""
    code = ErrorCodes.INVALID_PROMPT
    status_code = 400


class SafetyViolation(GenerationError):
    """Prompt matched the content deny-list."""
    code = ErrorCodes.SAFETY_VIOLATION
    status_code = 400

    def __init__(self, message: str, term: Optional[str] = None):
        super().__init__(message)
        self.term = term


class RateLimitExceeded(GenerationError):
    code = ErrorCodes.RATE_LIMIT
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class TooManyActiveJobs(GenerationError):
    code = ErrorCodes.QUOTA_EXCEEDED
    status_code = 429

    def __init__(self, message: str, active_count: int):
        super().__init__(message)
        self.active_count = active_count


class QueueFull(GenerationError):
    """The dispatcher has no room for another job."""
    code = ErrorCodes.QUEUE_FULL
    status_code = 503


class ProviderError(GenerationError):
    """
    The generation provider reported a business-logic failure.

    `code` carries the sub-classification derived from the provider's
    message and status (RATE_LIMIT, INVALID_PROMPT, SERVER_ERROR, TIMEOUT).
    """
    status_code = 502

    def __init__(self, message: str, code: str = ErrorCodes.SERVER_ERROR, provider_status: Optional[int] = None):
        super().__init__(message, code=code)
        self.provider_status = provider_status


class ProviderTimeout(GenerationError):
    """The provider never reached a terminal state within the poll ceiling."""
    code = ErrorCodes.TIMEOUT
    status_code = 504


class StorageError(GenerationError):
    code = ErrorCodes.UPLOAD_ERROR
    status_code = 502


class DuplicatePrompt(GenerationError):
    """Another job already succeeded with the same prompt hash."""
    code = ErrorCodes.DUPLICATE_PROMPT
    status_code = 409

    def __init__(self, message: str, existing_job_id: Optional[str] = None):
        super().__init__(message)
        self.existing_job_id = existing_job_id


class NotFound(GenerationError):
    code = ErrorCodes.NOT_FOUND
    status_code = 404


class AccessDenied(GenerationError):
    code = ErrorCodes.ACCESS_DENIED
    status_code = 403


class InvalidState(GenerationError):
    code = ErrorCodes.INVALID_STATE
    status_code = 409


class JobCancelled(GenerationError):
    code = ErrorCodes.CANCELLED
    status_code = 409


def classify_error(exc: BaseException) -> Tuple[str, str]:
    """
    Turn an exception raised while processing a job into (message, code).

    Typed pipeline errors keep their own code; anything else is reported
    as a generic server error with the exception text as message.
    """
    if isinstance(exc, GenerationError):
        return exc.message, exc.code
    message = str(exc) or exc.__class__.__name__
    return message, ErrorCodes.SERVER_ERROR


__all__ = [
    "ErrorCodes",
    "GenerationError",
    "InvalidPrompt",
    "SafetyViolation",
    "RateLimitExceeded",
    "TooManyActiveJobs",
    "QueueFull",
    "ProviderError",
    "ProviderTimeout",
    "StorageError",
    "DuplicatePrompt",
    "NotFound",
    "AccessDenied",
    "InvalidState",
    "JobCancelled",
    "classify_error",
]
