# Generation providers - external image-generation backends behind one contract
from app.core.config import settings
from app.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    GenerationResult,
    map_provider_error,
)


def get_generation_provider(name: str = None) -> GenerationProvider:
    """Build the configured provider (GENERATION_PROVIDER)."""
    name = (name or settings.GENERATION_PROVIDER).lower()
    if name == "banana":
        from app.services.providers.banana import BananaProvider
        return BananaProvider()
    if name == "gemini":
        from app.services.providers.gemini import GeminiImageProvider
        return GeminiImageProvider()
    raise ValueError(f"Unknown generation provider: {name}")


__all__ = [
    "GenerationProvider",
    "GenerationRequest",
    "GenerationResult",
    "map_provider_error",
    "get_generation_provider",
]
