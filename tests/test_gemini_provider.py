import asyncio
import base64
from types import SimpleNamespace

import pytest

from app.core.errors import ErrorCodes, ProviderError, ProviderTimeout
from app.services.providers.base import GenerationRequest
from app.services.providers.gemini import GeminiImageProvider

REQUEST = GenerationRequest(prompt="Anime style, a dog on a hill", style="anime", size="512x512", seed=21)


def _response(parts, finish_reason="STOP"):
    content = SimpleNamespace(parts=parts)
    return SimpleNamespace(candidates=[SimpleNamespace(content=content, finish_reason=finish_reason)])


def _image_part(data: bytes):
    return SimpleNamespace(inline_data=SimpleNamespace(data=data), text=None)


def _text_part(text: str):
    return SimpleNamespace(inline_data=None, text=text)


class FakeModels:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        return await self.responder()


def _provider(responder, **kwargs):
    models = FakeModels(responder)
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    kwargs.setdefault("timeout_seconds", 1)
    provider = GeminiImageProvider(model_name="gemini-test", max_attempts=2, retry_delay=0, client=client, **kwargs)
    return provider, models


@pytest.mark.anyio
async def test_inline_image_is_returned_as_base64():
    async def responder():
        return _response([_text_part("here you go"), _image_part(b"png-bytes")])

    provider, models = _provider(responder)
    result = await provider.generate(REQUEST)

    assert base64.b64decode(result.image_b64) == b"png-bytes"
    assert result.seed == 21
    assert result.model == "gemini-test"
    assert models.calls[0]["model"] == "gemini-test"
    assert REQUEST.prompt in models.calls[0]["contents"]


@pytest.mark.anyio
async def test_missing_image_is_a_provider_error():
    async def responder():
        return _response([_text_part("no image today")], finish_reason="IMAGE_SAFETY")

    provider, _ = _provider(responder)

    with pytest.raises(ProviderError) as exc_info:
        await provider.generate(REQUEST)

    assert exc_info.value.code == ErrorCodes.INVALID_PROMPT


@pytest.mark.anyio
async def test_slow_call_times_out():
    async def responder():
        await asyncio.sleep(5)

    provider, _ = _provider(responder, timeout_seconds=0.01)

    with pytest.raises(ProviderTimeout):
        await provider.generate(REQUEST)


def test_missing_api_key():
    with pytest.raises(ValueError):
        GeminiImageProvider(api_key="")
