"""
Gemini "Nano Banana" Provider
Uses native Gemini image generation models (gemini-2.5-flash-image).
Documentation: https://ai.google.dev/gemini-api/docs/image-generation

Unlike Banana there is no call id to poll: one request returns the image,
so the attempt ceiling bounds retries of that single call instead.
"""

import asyncio
import base64
import logging
import random
import time
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.core.config import settings
from app.core.errors import ErrorCodes, ProviderError, ProviderTimeout
from app.services.prompt_assembly import NEGATIVE_PROMPT
from app.services.providers.base import GenerationRequest, GenerationResult, map_provider_error
from app.workers.base import CancellationToken

logger = logging.getLogger(__name__)

RETRYABLE_CODES = (ErrorCodes.RATE_LIMIT, ErrorCodes.SERVER_ERROR)


class GeminiImageProvider:
    """Image generation through the google-genai async client."""

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        retry_delay: float = 2.0,
        client: Optional[genai.Client] = None,
    ):
        api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        if client is None and not api_key:
            raise ValueError("Gemini API key not configured")
        self.client = client or genai.Client(api_key=api_key)
        self.model_name = model_name or settings.GEMINI_MODEL
        self.max_attempts = max_attempts or settings.GEMINI_MAX_ATTEMPTS
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS
        self.retry_delay = retry_delay
        logger.info(f"[Gemini] Initialized with model: {self.model_name}")

    def _config(self, request: GenerationRequest) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            seed=request.seed,
        )

    def _contents(self, request: GenerationRequest) -> str:
        return f"{request.prompt}\n\nAvoid: {NEGATIVE_PROMPT}. Output size: {request.size}."

    async def generate(self, request: GenerationRequest, token: Optional[CancellationToken] = None) -> GenerationResult:
        token = token or CancellationToken()
        seed = request.seed if request.seed is not None else random.randint(0, 999999)
        request = GenerationRequest(prompt=request.prompt, style=request.style, size=request.size, seed=seed)
        started = time.monotonic()

        for attempt in range(1, self.max_attempts + 1):
            token.raise_if_cancelled()
            logger.info(f"[Gemini] Generation attempt {attempt}/{self.max_attempts}")

            try:
                response = await asyncio.wait_for(
                    self.client.aio.models.generate_content(
                        model=self.model_name,
                        contents=self._contents(request),
                        config=self._config(request),
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                raise ProviderTimeout(f"Gemini did not respond within {self.timeout_seconds}s")
            except genai_errors.APIError as e:
                code = map_provider_error(e.message or str(e), e.code)
                if code in RETRYABLE_CODES and attempt < self.max_attempts:
                    delay = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(f"[Gemini] Attempt {attempt} failed ({code}): {e}. Retrying in {delay:.1f}s...")
                    await token.sleep(delay)
                    continue
                raise ProviderError(f"Gemini Image Generation Failed: {e}", code=code, provider_status=e.code)

            image_bytes = _extract_image(response)
            return GenerationResult(
                image_b64=base64.b64encode(image_bytes).decode("utf-8"),
                seed=seed,
                model=self.model_name,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        raise ProviderError("Failed to generate image after all retry attempts", code=ErrorCodes.SERVER_ERROR)


def _extract_image(response) -> bytes:
    """Pull the first inline image out of a generate_content response."""
    candidates = getattr(response, "candidates", None) or []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        for part in (getattr(content, "parts", None) or []):
            if part.inline_data is not None and part.inline_data.data:
                return part.inline_data.data

    finish_reason = candidates[0].finish_reason if candidates else "Unknown"
    raise ProviderError(
        f"No image generated. Finish Reason: {finish_reason}",
        code=ErrorCodes.INVALID_PROMPT if "SAFETY" in str(finish_reason) else ErrorCodes.SERVER_ERROR,
    )
