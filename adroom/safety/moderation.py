"""
Content Moderation: rule-based ad policy and brand safety checks.

Runs before generated copy is published. Three rule groups:
1. Length: over 280 characters hurts engagement
2. Prohibited claims: words that commonly trip ad review
3. Engagement bait: asking directly for likes or shares

Usage:
    from adroom.safety.moderation import ContentModerator

    result = ContentModerator().analyze(text)
    if not result.is_safe:
        logger.warning("content_blocked", extra={"issues": result.issues})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 280

PROHIBITED_WORDS = ("guarantee", "profit", "rich", "cure")

ENGAGEMENT_BAIT_PHRASES = ("like this", "share this")


@dataclass
class ModerationResult:
    is_safe: bool
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


class ContentModerator:
    """Stateless checker; one instance can be shared across passes."""

    def __init__(
        self,
        max_length: int = MAX_CONTENT_LENGTH,
        prohibited_words: tuple[str, ...] = PROHIBITED_WORDS,
    ):
        self.max_length = max_length
        self.prohibited_words = prohibited_words

    def analyze(self, text: str) -> ModerationResult:
        issues: list[str] = []
        suggestions: list[str] = []
        lowered = text.lower()

        if len(text) > self.max_length:
            issues.append("Content is too long for optimal engagement.")
            suggestions.append(
                f"Shorten the text to under {self.max_length} characters."
            )

        found = [word for word in self.prohibited_words if word in lowered]
        if found:
            issues.append(
                f"Contains potential policy violation words: {', '.join(found)}"
            )
            suggestions.append("Avoid claims that might flag ad review policies.")

        if any(phrase in lowered for phrase in ENGAGEMENT_BAIT_PHRASES):
            issues.append("Potential engagement bait detected.")
            suggestions.append("Focus on value rather than asking for likes directly.")

        return ModerationResult(
            is_safe=not issues,
            issues=issues,
            suggestions=suggestions,
        )
