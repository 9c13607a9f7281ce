"""
Banana Provider
Serverless Stable Diffusion inference over Banana's start/check protocol:
submit a call, receive a call id, then poll until the call finishes.
"""

import logging
import random
import time
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import ErrorCodes, ProviderError, ProviderTimeout
from app.services.prompt_assembly import NEGATIVE_PROMPT, parse_size
from app.services.providers.base import GenerationRequest, GenerationResult, map_provider_error
from app.workers.base import CancellationToken

logger = logging.getLogger(__name__)

# Poll responses with these statuses are treated like network blips.
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class BananaProvider:
    """Banana start/check client with bounded polling."""

    name = "banana"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model_name: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        request_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.BANANA_API_KEY
        self.model_key = model_key if model_key is not None else settings.BANANA_MODEL_KEY
        self.base_url = (base_url or settings.BANANA_BASE_URL).rstrip("/")
        self.model_name = model_name or settings.BANANA_MODEL_NAME
        self.poll_interval = settings.PROVIDER_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_poll_attempts = max_poll_attempts or settings.PROVIDER_MAX_POLL_ATTEMPTS
        self.request_timeout = request_timeout or settings.PROVIDER_REQUEST_TIMEOUT
        self._transport = transport

        if not self.api_key or not self.model_key:
            raise ValueError("Banana API credentials not configured")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.request_timeout,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
        )

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        width, height = parse_size(request.size)
        return {
            "modelKey": self.model_key,
            "inputs": {
                "prompt": request.prompt,
                "negative_prompt": NEGATIVE_PROMPT,
                "width": width,
                "height": height,
                "num_inference_steps": settings.BANANA_INFERENCE_STEPS,
                "guidance_scale": settings.BANANA_GUIDANCE_SCALE,
                "seed": request.seed if request.seed is not None else -1,  # -1 for random seed
            },
        }

    async def generate(self, request: GenerationRequest, token: Optional[CancellationToken] = None) -> GenerationResult:
        token = token or CancellationToken()
        started = time.monotonic()

        async with self._client() as client:
            start_body = await self._submit(client, request)

            # Some deployments answer synchronously.
            if start_body.get("finished"):
                return self._parse_result(start_body, request, started)

            call_id = start_body.get("id") or start_body.get("callID")
            if not call_id:
                raise ProviderError("Provider did not return a call id", code=ErrorCodes.SERVER_ERROR)

            logger.info(f"[Banana] Submitted call {call_id} (size={request.size}, seed={request.seed})")
            return await self._poll_for_completion(client, call_id, request, token, started)

    async def _submit(self, client: httpx.AsyncClient, request: GenerationRequest) -> Dict[str, Any]:
        try:
            response = await client.post(f"{self.base_url}/start/v4", json=self._build_payload(request))
        except httpx.TimeoutException as e:
            raise ProviderError(f"Provider request timeout: {e}", code=ErrorCodes.TIMEOUT)
        except httpx.TransportError as e:
            raise ProviderError(f"Provider unreachable: {e}", code=ErrorCodes.SERVER_ERROR)

        if response.is_error:
            detail = _error_detail(response)
            raise ProviderError(
                f"Banana API error: {response.status_code} - {detail}",
                code=map_provider_error(detail, response.status_code),
                provider_status=response.status_code,
            )
        return _json_body(response)

    async def _poll_for_completion(
        self,
        client: httpx.AsyncClient,
        call_id: str,
        request: GenerationRequest,
        token: CancellationToken,
        started: float,
    ) -> GenerationResult:
        last_error: Optional[str] = None

        for attempt in range(1, self.max_poll_attempts + 1):
            token.raise_if_cancelled()

            try:
                response = await client.post(f"{self.base_url}/check/v4", json={"id": call_id})
            except httpx.TransportError as e:
                last_error = f"{e.__class__.__name__}: {e}"
                logger.warning(f"[Banana] Poll {attempt}/{self.max_poll_attempts} for {call_id} failed: {last_error}")
                await token.sleep(self.poll_interval)
                continue

            if response.status_code in TRANSIENT_STATUS_CODES:
                last_error = f"Polling error: {response.status_code}"
                logger.warning(f"[Banana] Poll {attempt}/{self.max_poll_attempts} for {call_id}: {last_error}")
                await token.sleep(self.poll_interval)
                continue

            if response.is_error:
                detail = _error_detail(response)
                raise ProviderError(
                    f"Polling error: {response.status_code} - {detail}",
                    code=map_provider_error(detail, response.status_code),
                    provider_status=response.status_code,
                )

            body = _json_body(response)
            if body.get("finished"):
                return self._parse_result(body, request, started)

            await token.sleep(self.poll_interval)

        message = "Generation timeout - exceeded maximum polling attempts"
        if last_error:
            message += f" (last error: {last_error})"
        raise ProviderTimeout(message)

    def _parse_result(self, body: Dict[str, Any], request: GenerationRequest, started: float) -> GenerationResult:
        if body.get("success") is False:
            message = body.get("message") or body.get("error") or "Banana generation failed"
            raise ProviderError(message, code=map_provider_error(message, body.get("code")))

        outputs = body.get("modelOutputs") or []
        output = outputs[0] if outputs else None
        if not output or not output.get("image"):
            raise ProviderError("No image in Banana response", code=ErrorCodes.SERVER_ERROR)

        seed = output.get("seed")
        if seed is None:
            seed = request.seed if request.seed is not None else random.randint(0, 999999)

        if body.get("finishedAt") is not None and body.get("startedAt") is not None:
            duration_ms = int(body["finishedAt"] - body["startedAt"])
        else:
            duration_ms = int((time.monotonic() - started) * 1000)

        return GenerationResult(
            image_b64=output["image"],
            seed=int(seed),
            model=self.model_name,
            duration_ms=duration_ms,
        )


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        raise ProviderError("Provider returned a non-JSON response", code=ErrorCodes.SERVER_ERROR)
    if not isinstance(body, dict):
        raise ProviderError("Provider returned an unexpected response", code=ErrorCodes.SERVER_ERROR)
    return body


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
