"""Content safety screening on top of the moderation capability."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import FrozenSet, List, Mapping, Sequence, Tuple

from openassist.capabilities.base import ModerationBackend
from openassist.metrics.observability import PipelineMetrics, get_logger
from openassist.models import ModerationResult, new_id
from openassist.sessions import InMemorySessionStore, SessionStore, append_to

HIGH_SEVERITY_CATEGORIES: FrozenSet[str] = frozenset(
    {
        "hate/threatening",
        "harassment/threatening",
        "self-harm/intent",
        "self-harm/instructions",
        "sexual/minors",
        "violence/graphic",
    }
)

REPHRASE_MESSAGE = "I apologize, but I couldn't process your request. Please try rephrasing your message."

GENERIC_REFUSAL = (
    "I'm not able to respond to that type of content. Please rephrase your message and I'll be happy "
    "to help with your question or request."
)

# Checked in order; the first family with a flagged member picks the template.
REFUSAL_TEMPLATES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (
        ("hate", "hate/threatening"),
        "I can't respond to content that contains hate speech or discriminatory language. "
        "Please keep our conversation respectful and inclusive.",
    ),
    (
        ("harassment", "harassment/threatening"),
        "I'm designed to have helpful and respectful conversations. "
        "Please avoid content that could be considered harassing or threatening.",
    ),
    (
        ("violence", "violence/graphic"),
        "I cannot engage with content that involves violence or graphic descriptions. "
        "Let's focus on constructive and positive topics instead.",
    ),
    (
        ("sexual", "sexual/minors"),
        "I'm not able to discuss sexual content. Please keep our conversation appropriate and professional.",
    ),
    (
        ("self-harm", "self-harm/intent", "self-harm/instructions"),
        "I'm concerned about the content of your message. If you're struggling with difficult thoughts, "
        "please consider reaching out to a mental health professional or crisis helpline. "
        "I'm here to help with other topics in a positive way.",
    ),
)


@dataclass(frozen=True)
class SafetyConfig:
    medium_risk_threshold: float = 0.3
    high_risk_threshold: float = 0.7
    high_severity_categories: FrozenSet[str] = HIGH_SEVERITY_CATEGORIES


@dataclass(frozen=True)
class ModerationStatistics:
    total_checks: int
    total_flagged: int
    flagged_percentage: int
    most_common_category: str
    total_sessions: int


class SafetyScreen:
    """Classifies text with the moderation capability and derives risk and action."""

    def __init__(
        self,
        backend: ModerationBackend,
        config: SafetyConfig | None = None,
        *,
        history_store: SessionStore[list] | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or SafetyConfig()
        self._history = history_store or InMemorySessionStore()
        self._logger = get_logger("safety")

    async def check(self, content: str, session_id: str) -> ModerationResult:
        scores = await self._backend.moderate(content)
        result = ModerationResult(
            moderation_id=new_id("mod"),
            content=content,
            session_id=session_id,
            flagged=scores.flagged,
            categories=dict(scores.categories),
            category_scores=dict(scores.category_scores),
            risk_level=self.risk_level(scores.category_scores),
            action=self.action(scores.flagged, scores.categories),
        )
        append_to(self._history, session_id, result)
        PipelineMetrics.count_moderation(result.action)
        self._logger.info(
            "moderation.complete",
            session_id=session_id,
            flagged=result.flagged,
            risk_level=result.risk_level,
            action=result.action,
            categories=result.flagged_categories,
        )
        return result

    async def is_content_safe(self, content: str, session_id: str) -> bool:
        try:
            result = await self.check(content, session_id)
        except Exception as exc:
            self._logger.error("moderation.failed", session_id=session_id, detail=str(exc))
            return False
        return not result.flagged

    def risk_level(self, category_scores: Mapping[str, float]) -> str:
        highest = max(category_scores.values(), default=0.0)
        if highest < self._config.medium_risk_threshold:
            return "low"
        if highest < self._config.high_risk_threshold:
            return "medium"
        return "high"

    def action(self, flagged: bool, categories: Mapping[str, bool]) -> str:
        if not flagged:
            return "allow"
        severe = any(categories.get(name) for name in self._config.high_severity_categories)
        return "block" if severe else "warn"

    @staticmethod
    def safe_refusal_message(result: ModerationResult) -> str:
        if not result.flagged_categories:
            return REPHRASE_MESSAGE
        for family, template in REFUSAL_TEMPLATES:
            if any(result.categories.get(name) for name in family):
                return template
        return GENERIC_REFUSAL

    def history(self, session_id: str) -> List[ModerationResult]:
        return list(self._history.get(session_id) or [])

    def clear_history(self, session_id: str) -> None:
        self._history.delete(session_id)

    def statistics(self) -> ModerationStatistics:
        sessions = list(self._history.keys())
        results = [result for session_id in sessions for result in self.history(session_id)]
        flagged = sum(1 for result in results if result.flagged)
        categories = Counter(name for result in results for name in result.flagged_categories)
        most_common = categories.most_common(1)
        return ModerationStatistics(
            total_checks=len(results),
            total_flagged=flagged,
            flagged_percentage=round(flagged / len(results) * 100) if results else 0,
            most_common_category=most_common[0][0] if most_common else "none",
            total_sessions=len(sessions),
        )
