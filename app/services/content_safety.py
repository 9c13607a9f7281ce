"""
Content Safety Filter
Blunt deny-list pre-filter for user prompts. Not a classifier.
"""

from dataclasses import dataclass
from typing import Optional

DENYLIST_TERMS = [
    # explicit content
    "nsfw", "nude", "naked", "sexual", "explicit", "porn", "adult",
    # violence
    "violence", "blood", "gore", "weapon", "gun", "knife",
    # hate speech
    "hate", "racist", "discrimination", "offensive",
    # illegal activity
    "illegal", "drug", "alcohol", "smoking",
    # IP infringement markers
    "copyright", "trademark", "brand", "logo",
]


@dataclass(frozen=True)
class SafetyResult:
    safe: bool
    reason: Optional[str] = None


def check_content(text: str) -> SafetyResult:
    """Check text against the deny-list; the reason is the first matching term."""
    text_lower = (text or "").lower()

    for term in DENYLIST_TERMS:
        if term in text_lower:
            return SafetyResult(safe=False, reason=term)

    return SafetyResult(safe=True)
