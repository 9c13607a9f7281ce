"""
Error Handlers
Render pipeline errors as JSON bodies with their HTTP status.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import GenerationError, RateLimitExceeded

logger = logging.getLogger(__name__)


async def generation_error_handler(request: Request, exc: GenerationError):
    headers = {}
    if isinstance(exc, RateLimitExceeded):
        headers["Retry-After"] = str(exc.retry_after)

    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "error_code": exc.code},
        headers=headers,
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(GenerationError, generation_error_handler)
