"""Keyword intent classification for free-text messages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from openassist.models import RequestType

IMAGE_TRIGGERS: Tuple[str, ...] = (
    "generate image",
    "create image",
    "draw",
    "picture of",
    "image of",
    "generate a",
    "create a",
)

KNOWLEDGE_BASE_TRIGGERS: Tuple[str, ...] = (
    "what is",
    "explain",
    "how does",
    "tell me about",
    "definition of",
    "describe",
)

_IMAGE_LEAD_INS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"generate\s+(?:an?\s+)?(?:image|picture)\s+(?:of\s+)?", re.IGNORECASE),
    re.compile(r"create\s+(?:an?\s+)?(?:image|picture)\s+(?:of\s+)?", re.IGNORECASE),
    re.compile(r"draw\s+(?:an?\s+)?", re.IGNORECASE),
    re.compile(r"(?:an?\s+)?(?:picture|image)\s+of\s+", re.IGNORECASE),
)


@dataclass(frozen=True)
class IntentRule:
    keywords: Tuple[str, ...]
    request_type: RequestType

    def matches(self, lowered: str) -> Optional[str]:
        return next((keyword for keyword in self.keywords if keyword in lowered), None)


DEFAULT_RULES: Tuple[IntentRule, ...] = (
    IntentRule(IMAGE_TRIGGERS, RequestType.IMAGE_GENERATION),
    IntentRule(KNOWLEDGE_BASE_TRIGGERS, RequestType.KNOWLEDGE_BASE_QUERY),
)


class IntentClassifier:
    """First matching rule wins; anything unmatched is general chat."""

    def __init__(self, rules: Sequence[IntentRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    def classify(self, message: str) -> RequestType:
        return self.match(message)[0]

    def match(self, message: str) -> Tuple[RequestType, Optional[str]]:
        """Return the request type together with the trigger that selected it."""

        lowered = message.lower()
        for rule in self._rules:
            keyword = rule.matches(lowered)
            if keyword is not None:
                return rule.request_type, keyword
        return RequestType.GENERAL_CHAT, None


def extract_image_prompt(message: str) -> str:
    prompt = message
    for pattern in _IMAGE_LEAD_INS:
        prompt = pattern.sub("", prompt, count=1)
    prompt = prompt.strip()
    return prompt or message
