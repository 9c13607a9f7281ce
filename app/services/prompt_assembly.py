"""
Prompt Assembly
Builds the final generation prompt, normalizes and hashes it for
deduplication, and applies regeneration deltas.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from app.core.errors import InvalidPrompt, SafetyViolation
from app.services.content_safety import check_content

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 1000


class Styles:
    GHIBLI = "ghibli"
    STUDIO_GHIBLI = "studio_ghibli"
    ANIME = "anime"
    FANTASY = "fantasy"
    WHIMSICAL = "whimsical"


BASE_PROMPTS = {
    Styles.GHIBLI: "Studio Ghibli style, hand-drawn animation, soft watercolor textures, magical atmosphere, detailed backgrounds, warm lighting,",
    Styles.STUDIO_GHIBLI: "Studio Ghibli animation style, cel-shaded, vibrant colors, detailed character design, fantastical elements,",
    Styles.ANIME: "Anime style, clean line art, vibrant colors, expressive characters, detailed backgrounds,",
    Styles.FANTASY: "Fantasy art style, magical elements, ethereal lighting, detailed textures, whimsical atmosphere,",
    Styles.WHIMSICAL: "Whimsical art style, playful colors, soft textures, magical elements, dreamy atmosphere,",
}

SIZES = {
    "1024x1024": (1024, 1024),
    "768x768": (768, 768),
    "512x512": (512, 512),
}

SAFETY_POSITIVE = "high quality, detailed, beautiful, artistic,"
SAFETY_COMPOSITION = "well-composed, balanced, aesthetically pleasing,"
NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, extra limbs, missing limbs, deformed, "
    "watermark, text, signature, nsfw, inappropriate content"
)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PromptValidation:
    valid: bool
    reason: Optional[str] = None


def normalize_prompt(prompt: str) -> str:
    """Trim, collapse whitespace runs to a single space and lower-case."""
    return _WHITESPACE.sub(" ", prompt.strip()).lower()


def prompt_hash(prompt: str) -> str:
    """SHA-256 hex digest of the normalized prompt; the dedup key."""
    return hashlib.sha256(normalize_prompt(prompt).encode("utf-8")).hexdigest()


def validate_prompt(prompt: Optional[str]) -> PromptValidation:
    if not prompt or not prompt.strip():
        return PromptValidation(False, "Prompt cannot be empty")
    if len(prompt) > MAX_PROMPT_LENGTH:
        return PromptValidation(False, f"Prompt too long (max {MAX_PROMPT_LENGTH} characters)")
    if len(prompt) < MIN_PROMPT_LENGTH:
        return PromptValidation(False, f"Prompt too short (min {MIN_PROMPT_LENGTH} characters)")
    return PromptValidation(True)


def validate_style(style: str) -> bool:
    return style in BASE_PROMPTS


def validate_size(size: str) -> bool:
    return size in SIZES


def parse_size(size: str) -> Tuple[int, int]:
    """'1024x768' -> (1024, 768)."""
    if size in SIZES:
        return SIZES[size]
    try:
        width, height = (int(part) for part in size.lower().split("x", 1))
    except ValueError:
        raise InvalidPrompt(f"Invalid size: {size}")
    return width, height


def require_valid_request(prompt: str, style: str, size: str) -> None:
    """Raise InvalidPrompt for a bad prompt, unknown style or unsupported size."""
    validation = validate_prompt(prompt)
    if not validation.valid:
        raise InvalidPrompt(validation.reason)
    if not validate_style(style):
        raise InvalidPrompt(f"Invalid style: {style}")
    if not validate_size(size):
        raise InvalidPrompt(f"Invalid size: {size}")


def assemble_prompt(user_prompt: str, style: str = Styles.GHIBLI, include_safety: bool = True) -> str:
    """
    Assemble the final prompt: style base template, trimmed user prompt and
    (optionally) the positive and composition safety suffix.

    Raises:
        SafetyViolation: the user prompt matches the deny-list
        InvalidPrompt: the style is unknown
    """
    safety = check_content(user_prompt)
    if not safety.safe:
        raise SafetyViolation(f"Content contains restricted term: {safety.reason}", term=safety.reason)

    base_prompt = BASE_PROMPTS.get(style)
    if base_prompt is None:
        raise InvalidPrompt(f"Invalid style: {style}")

    final_prompt = f"{base_prompt} {user_prompt.strip()}"
    if include_safety:
        final_prompt += f" {SAFETY_POSITIVE} {SAFETY_COMPOSITION}"

    return final_prompt.strip()


def apply_delta(original: str, delta: Optional[str]) -> str:
    """
    Derive a regeneration prompt from an existing one.

    "+text" appends, "-text" removes every case-insensitive occurrence of
    the literal text, anything else replaces the prompt outright, and an
    empty delta keeps the original.
    """
    if not delta or not delta.strip():
        return original

    clean_delta = delta.strip()

    if clean_delta.startswith("+"):
        addition = clean_delta[1:].strip()
        if not addition:
            return original
        return f"{original} {addition}"

    if clean_delta.startswith("-"):
        to_remove = clean_delta[1:].strip()
        if not to_remove:
            return original
        # Delta text is content, not a pattern.
        removed = re.sub(re.escape(to_remove), "", original, flags=re.IGNORECASE)
        return _WHITESPACE.sub(" ", removed).strip()

    return clean_delta
