from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from openassist.errors import ValidationFailure
from openassist.models import EventKind, SessionFeatures
from openassist.sessions import SessionRegistry


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def test_unseen_session_gets_default_features():
    registry = SessionRegistry()
    assert registry.get_features("s1") == SessionFeatures()
    assert registry.get_features("s1").image_generation is False


def test_default_features_are_configurable():
    registry = SessionRegistry(default_features=SessionFeatures.from_enabled(["chat"]))
    assert registry.get_features("s1").as_dict() == {
        "chat": True,
        "knowledge_base": False,
        "image_generation": False,
        "audio_input": False,
        "text_to_speech": False,
        "moderation": False,
    }


def test_disabling_chat_cascades_and_reenabling_enables_all():
    registry = SessionRegistry()
    off = registry.toggle_feature("s1", "chat", False)
    assert not any(off.as_dict().values())

    on = registry.toggle_feature("s1", "chat", True)
    assert all(on.as_dict().values())


def test_cascade_can_be_left_to_the_caller():
    registry = SessionRegistry(enforce_chat_cascade=False)
    features = registry.toggle_feature("s1", "chat", False)
    assert features.chat is False
    assert features.knowledge_base is True


def test_toggle_unknown_feature_raises():
    with pytest.raises(ValidationFailure):
        SessionRegistry().toggle_feature("s1", "teleport", True)


def test_unknown_feature_names_are_validation_failures():
    features = SessionFeatures()
    with pytest.raises(ValidationFailure):
        features.toggled("teleport", True)
    with pytest.raises(ValidationFailure):
        features.is_enabled("teleport")
    with pytest.raises(ValidationFailure):
        SessionFeatures.from_mapping({"chat": True, "teleport": True})
    with pytest.raises(ValidationFailure):
        SessionRegistry().set_features("s1", {"teleport": True})


def test_set_features_merges_partial_mapping():
    registry = SessionRegistry()
    registry.set_features("s1", {"image_generation": True})
    features = registry.get_features("s1")
    assert features.image_generation is True
    assert features.chat is True
    assert registry.get_features("s2").image_generation is False


def test_record_event_bumps_matching_counters():
    clock = SteppingClock()
    registry = SessionRegistry(clock=clock)

    registry.record_event("s1", EventKind.GENERAL_CHAT, tokens=12)
    registry.record_event("s1", EventKind.IMAGE_GENERATION)
    registry.record_event("s1", EventKind.KNOWLEDGE_BASE_QUERY, tokens=8)
    registry.record_event("s1", EventKind.AUDIO_TRANSCRIPTION)
    registry.record_event("s1", EventKind.MODERATION_CHECK)
    stats = registry.record_event("s1", EventKind.MODERATION_BLOCKED)

    assert stats.messages_count == 3
    assert stats.images_generated == 1
    assert stats.knowledge_base_queries == 1
    assert stats.audio_transcriptions == 1
    assert stats.moderation_checks == 1
    assert stats.moderation_blocked == 1
    assert stats.tokens_used == 20
    assert stats.last_activity > stats.start_time


def test_statistics_are_created_lazily():
    registry = SessionRegistry()
    stats = registry.get_statistics("fresh")
    assert stats.messages_count == 0
    assert stats.session_duration >= 0


def test_clear_only_touches_one_session():
    registry = SessionRegistry()
    registry.toggle_feature("s1", "image_generation", True)
    registry.toggle_feature("s2", "image_generation", True)
    registry.record_event("s1", EventKind.GENERAL_CHAT)
    registry.record_event("s2", EventKind.GENERAL_CHAT)

    registry.clear("s1")

    assert registry.get_features("s1").image_generation is False
    assert registry.get_statistics("s1").messages_count == 0
    assert registry.get_features("s2").image_generation is True
    assert registry.get_statistics("s2").messages_count == 1


def test_system_statistics_aggregate_sessions():
    registry = SessionRegistry()
    registry.record_event("s1", EventKind.GENERAL_CHAT)
    registry.record_event("s1", EventKind.GENERAL_CHAT)
    registry.record_event("s2", EventKind.GENERAL_CHAT)
    registry.toggle_feature("s1", "image_generation", True)

    stats = registry.system_statistics()

    assert stats.total_sessions == 2
    assert stats.total_requests == 3
    assert stats.average_requests_per_session == 2
    assert stats.active_features["image_generation"] == 1
    assert stats.active_features["chat"] == 1
