"""
Generation Provider Contract
Uniform request/result shapes and error mapping for image-generation
backends.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from app.core.errors import ErrorCodes
from app.workers.base import CancellationToken


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    style: str
    size: str
    seed: Optional[int] = None


@dataclass(frozen=True)
class GenerationResult:
    image_b64: str
    seed: Optional[int]
    model: str
    duration_ms: int


class GenerationProvider(Protocol):
    """Anything that can turn a GenerationRequest into a GenerationResult."""

    name: str

    async def generate(self, request: GenerationRequest, token: Optional[CancellationToken] = None) -> GenerationResult:
        """Run one generation to a terminal outcome or raise a pipeline error."""
        ...


_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "quota", "resource exhausted")
_INVALID_INPUT_MARKERS = ("invalid prompt", "prompt too long", "invalid input", "invalid argument")
_SERVER_MARKERS = ("server error", "internal error", "internal server")
_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline exceeded")


def map_provider_error(message: Optional[str], status_code: Optional[int] = None) -> str:
    """
    Classify a provider failure into RATE_LIMIT, INVALID_PROMPT,
    SERVER_ERROR or TIMEOUT from its message text and status code.
    Unrecognised failures are SERVER_ERROR.
    """
    text = (message or "").lower()
    status = _coerce_status(status_code)

    if status == 429 or any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return ErrorCodes.RATE_LIMIT

    if status == 400 or any(marker in text for marker in _INVALID_INPUT_MARKERS):
        return ErrorCodes.INVALID_PROMPT

    if status in (408, 504) or any(marker in text for marker in _TIMEOUT_MARKERS):
        return ErrorCodes.TIMEOUT

    if (status is not None and status >= 500) or any(marker in text for marker in _SERVER_MARKERS):
        return ErrorCodes.SERVER_ERROR

    return ErrorCodes.SERVER_ERROR


def _coerce_status(status_code) -> Optional[int]:
    if status_code is None:
        return None
    try:
        return int(status_code)
    except (TypeError, ValueError):
        return None
