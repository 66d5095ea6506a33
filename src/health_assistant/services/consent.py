"""Two-tier consent classification for spoken confirmations."""

import logging
import re
from dataclasses import dataclass
from typing import Literal, Protocol

from health_assistant.domain.voice import ConsentIntent

_logger = logging.getLogger(__name__)

ClassifierIntent = Literal["confirm", "cancel", "new_instruction"]

_CONFIRM = re.compile(
    r"\b(yes|yep|yeah|yup|sure|ok|okay|confirm|go ahead|do it|apply|sounds good"
    r"|log it|save it)\b"
)
_CANCEL = re.compile(r"\b(no|nope|cancel|stop|never mind|nevermind)\b")
_REPEAT = re.compile(r"\b(repeat|again|say that again)\b")


def classify_tier_one(text: str) -> ConsentIntent | None:
    """Match fixed confirm/cancel/repeat word lists.

    A reply matching both the confirm and cancel lists is left unclassified.
    """
    lowered = text.strip().lower()
    if not lowered:
        return None
    confirm = _CONFIRM.search(lowered) is not None
    cancel = _CANCEL.search(lowered) is not None
    if confirm and cancel:
        return None
    if confirm:
        return "confirm"
    if cancel:
        return "cancel"
    if _REPEAT.search(lowered):
        return "repeat"
    return None


def word_count(text: str) -> int:
    """Count whitespace separated words."""
    return len(text.split())


def needs_tier_two(text: str, max_words: int) -> bool:
    """Return True when a short reply should go to the intent classifier."""
    return 0 < word_count(text) <= max_words


class IntentClassifier(Protocol):
    """External short-utterance intent classifier."""

    async def classify(self, text: str) -> str:
        """Return the raw label produced for text."""


def parse_intent(raw: str) -> ClassifierIntent:
    """Map a raw classifier label onto a known intent."""
    label = raw.strip().strip(".\"'").lower()
    if label in ("confirm", "cancel", "new_instruction"):
        return label
    return "new_instruction"


@dataclass
class ConsentService:
    """Classifies consent replies, falling back to an external classifier."""

    classifier: IntentClassifier
    max_words: int = 6

    async def classify(self, text: str) -> ConsentIntent:
        """Return the consent intent of a reply.

        Tier one is a fixed word list. Short replies without a tier-one match
        go to the classifier; anything longer is a new instruction.
        """
        tier_one = classify_tier_one(text)
        if tier_one is not None:
            _logger.info("Consent tier 1: %s", tier_one)
            return tier_one
        if not needs_tier_two(text, self.max_words):
            _logger.info("Consent: long reply routed to planning")
            return "new_instruction"
        intent = parse_intent(await self.classifier.classify(text))
        _logger.info("Consent tier 2: %s", intent)
        return intent
