"""Per-session feature flags, usage statistics and the stores behind them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, Mapping, Protocol, Sequence, TypeVar

from openassist.config import FEATURE_NAMES
from openassist.errors import ValidationFailure
from openassist.metrics.observability import get_logger
from openassist.models import EventKind, SessionFeatures, SessionStatistics, utcnow

T = TypeVar("T")


class SessionStore(Protocol[T]):
    """Key-value storage keyed by session id."""

    def get(self, session_id: str) -> T | None:
        ...

    def set(self, session_id: str, value: T) -> None:
        ...

    def delete(self, session_id: str) -> None:
        ...

    def keys(self) -> Iterable[str]:
        ...

    def values(self) -> Iterable[T]:
        ...


class InMemorySessionStore(Generic[T]):
    def __init__(self) -> None:
        self._data: Dict[str, T] = {}

    def get(self, session_id: str) -> T | None:
        return self._data.get(session_id)

    def set(self, session_id: str, value: T) -> None:
        self._data[session_id] = value

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def keys(self) -> Iterable[str]:
        return list(self._data)

    def values(self) -> Iterable[T]:
        return list(self._data.values())


def append_to(store: SessionStore[list], session_id: str, item: object) -> None:
    """Append ``item`` to the list kept for ``session_id``."""

    items = list(store.get(session_id) or [])
    items.append(item)
    store.set(session_id, items)


@dataclass(frozen=True)
class SystemStatistics:
    total_sessions: int
    active_features: Mapping[str, int]
    total_requests: int
    average_requests_per_session: int


_COUNTERS: Mapping[EventKind, Sequence[str]] = {
    EventKind.GENERAL_CHAT: ("messages_count",),
    EventKind.IMAGE_GENERATION: ("messages_count", "images_generated"),
    EventKind.KNOWLEDGE_BASE_QUERY: ("messages_count", "knowledge_base_queries"),
    EventKind.AUDIO_TRANSCRIPTION: ("audio_transcriptions",),
    EventKind.MODERATION_CHECK: ("moderation_checks",),
    EventKind.MODERATION_BLOCKED: ("moderation_blocked",),
}


class SessionRegistry:
    """Owns feature configuration and statistics for every session."""

    def __init__(
        self,
        *,
        default_features: SessionFeatures | None = None,
        enforce_chat_cascade: bool = True,
        features_store: SessionStore[SessionFeatures] | None = None,
        statistics_store: SessionStore[SessionStatistics] | None = None,
        clock: Callable[[], object] = utcnow,
    ) -> None:
        self._default_features = default_features or SessionFeatures()
        self._cascade = enforce_chat_cascade
        self._features = features_store or InMemorySessionStore()
        self._statistics = statistics_store or InMemorySessionStore()
        self._clock = clock
        self._logger = get_logger("sessions")

    @property
    def default_features(self) -> SessionFeatures:
        return self._default_features

    def get_features(self, session_id: str) -> SessionFeatures:
        return self._features.get(session_id) or self._default_features

    def set_features(self, session_id: str, features: SessionFeatures | Mapping[str, bool]) -> SessionFeatures:
        """Store the features verbatim; missing keys keep their current value."""

        if not isinstance(features, SessionFeatures):
            merged = {**self.get_features(session_id).as_dict(), **dict(features)}
            features = SessionFeatures.from_mapping(merged)
        self._features.set(session_id, features)
        self._logger.info("session.features_configured", session_id=session_id, features=features.as_dict())
        return features

    def toggle_feature(self, session_id: str, name: str, enabled: bool) -> SessionFeatures:
        if name not in FEATURE_NAMES:
            raise ValidationFailure(f"Unknown feature: {name}")
        updated = self.get_features(session_id).toggled(name, enabled, cascade=self._cascade)
        self._features.set(session_id, updated)
        self._logger.info("session.feature_toggled", session_id=session_id, feature=name, enabled=enabled)
        return updated

    def get_statistics(self, session_id: str) -> SessionStatistics:
        stats = self._statistics.get(session_id)
        if stats is None:
            now = self._clock()
            stats = SessionStatistics(session_id=session_id, start_time=now, last_activity=now)
            self._statistics.set(session_id, stats)
        return stats

    def record_event(self, session_id: str, kind: EventKind, *, tokens: int = 0) -> SessionStatistics:
        stats = self.get_statistics(session_id)
        for counter in _COUNTERS[kind]:
            setattr(stats, counter, getattr(stats, counter) + 1)
        stats.tokens_used += max(tokens, 0)
        stats.last_activity = self._clock()
        self._statistics.set(session_id, stats)
        return stats

    def clear(self, session_id: str) -> None:
        self._features.delete(session_id)
        self._statistics.delete(session_id)

    def system_statistics(self) -> SystemStatistics:
        all_stats = list(self._statistics.values())
        total_sessions = len(all_stats)
        total_requests = sum(stats.messages_count for stats in all_stats)
        active = {name: 0 for name in FEATURE_NAMES}
        for features in self._features.values():
            for name, enabled in features.as_dict().items():
                if enabled:
                    active[name] += 1
        return SystemStatistics(
            total_sessions=total_sessions,
            active_features=active,
            total_requests=total_requests,
            average_requests_per_session=round(total_requests / total_sessions) if total_sessions else 0,
        )
