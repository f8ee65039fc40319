from __future__ import annotations

import pytest

from openassist.config import FEATURE_NAMES, get_settings
from openassist.models import SessionFeatures


def test_defaults_models_and_retrieval_policy():
    settings = get_settings({"environment": "test"})
    assert settings.chat_model == "gpt-4o"
    assert settings.embedding_model == "text-embedding-3-small"
    assert settings.chunk_size == 800
    assert settings.chunk_overlap == 80
    assert settings.kb_max_results == 3
    assert settings.kb_min_similarity == pytest.approx(0.7)
    assert settings.is_test


def test_default_features_match_conservative_server_default():
    settings = get_settings({"environment": "test"})
    features = SessionFeatures.from_enabled(settings.default_features_tuple)
    assert features.as_dict() == {
        "chat": True,
        "knowledge_base": True,
        "image_generation": False,
        "audio_input": False,
        "text_to_speech": False,
        "moderation": True,
    }


def test_default_features_accepts_comma_separated_string():
    settings = get_settings({"default_features": "chat, image_generation"})
    assert settings.default_features_tuple == ("chat", "image_generation")


def test_default_features_rejects_unknown_names():
    settings = get_settings({"default_features": "chat,telepathy"})
    with pytest.raises(ValueError):
        _ = settings.default_features_tuple


def test_upload_limits_defaults():
    settings = get_settings({"allowed_document_extensions": ".txt,.pdf"})
    assert settings.max_upload_size_mb >= 1
    assert settings.max_audio_size_mb == 25
    assert settings.allowed_document_extensions_tuple == (".txt", ".pdf")
    assert len(FEATURE_NAMES) == 6
