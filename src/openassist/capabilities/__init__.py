"""Capability contracts and backends."""

from .base import (
    CapabilitySet,
    ChatCompletionBackend,
    Completion,
    EmbeddingBackend,
    EmbeddingVector,
    ImageBackend,
    ImageResult,
    ModerationBackend,
    ModerationScores,
    SpeechBackend,
    TranscriptionBackend,
    TranscriptionResult,
)
from .offline import HashEmbeddingBackend, HashEmbeddingConfig, build_offline_capabilities
from .openai_backend import MODERATION_CATEGORIES, build_openai_capabilities

__all__ = [
    "CapabilitySet",
    "ChatCompletionBackend",
    "Completion",
    "EmbeddingBackend",
    "EmbeddingVector",
    "HashEmbeddingBackend",
    "HashEmbeddingConfig",
    "ImageBackend",
    "ImageResult",
    "MODERATION_CATEGORIES",
    "ModerationBackend",
    "ModerationScores",
    "SpeechBackend",
    "TranscriptionBackend",
    "TranscriptionResult",
    "build_offline_capabilities",
    "build_openai_capabilities",
]
