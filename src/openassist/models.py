"""Shared domain models used across the OpenAssist services."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from openassist.config import FEATURE_NAMES
from openassist.errors import ValidationFailure


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return ``<prefix>_<epoch ms>_<random>``, unique even within one millisecond."""

    return f"{prefix}_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


class RequestType(str, Enum):
    """Capability a free-text message is routed to."""

    IMAGE_GENERATION = "image_generation"
    KNOWLEDGE_BASE_QUERY = "knowledge_base_query"
    GENERAL_CHAT = "general_chat"


class EventKind(str, Enum):
    """Statistics-affecting events recorded per session."""

    GENERAL_CHAT = "general_chat"
    IMAGE_GENERATION = "image_generation"
    KNOWLEDGE_BASE_QUERY = "knowledge_base_query"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    MODERATION_CHECK = "moderation_check"
    MODERATION_BLOCKED = "moderation_blocked"


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ChunkMetadata:
    """Provenance captured for an embedded chunk."""

    document_id: str
    filename: str
    source: str
    chunk_index: int
    created_at: datetime = field(default_factory=utcnow)
    token_count: int = 0


@dataclass(frozen=True)
class DocumentChunk:
    """One retrievable unit of knowledge together with its embedding."""

    chunk_id: str
    text: str
    vector: Tuple[float, ...]
    metadata: ChunkMetadata


@dataclass(frozen=True)
class DocumentRecord:
    """Metadata captured for an ingested document."""

    document_id: str
    filename: str
    upload_date: datetime
    chunk_count: int


@dataclass(frozen=True)
class IngestResult:
    document_id: str
    chunk_count: int
    token_count: int


@dataclass(frozen=True)
class RetrievedChunk:
    """Chunk returned from the index during retrieval."""

    chunk: DocumentChunk
    score: float


@dataclass(frozen=True)
class Source:
    filename: str
    similarity: float
    snippet: str


@dataclass(frozen=True)
class KnowledgeBaseAnswer:
    """Grounded answer produced from retrieved context."""

    answer: str
    sources: Sequence[Source]
    confidence: float
    has_context: bool
    token_usage: TokenUsage | None = None


@dataclass(frozen=True)
class ChatMessage:
    message_id: str
    role: Literal["system", "user", "assistant"]
    content: str
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)
    token_usage: TokenUsage | None = None


@dataclass(frozen=True)
class StreamEvent:
    """Incremental event emitted while streaming a chat reply."""

    type: Literal["chunk", "complete", "error"]
    session_id: str
    content: str | None = None
    message_id: str | None = None
    message: ChatMessage | None = None
    error: str | None = None


@dataclass(frozen=True)
class GeneratedImage:
    image_id: str
    url: str
    prompt: str
    revised_prompt: str
    size: str
    quality: str
    style: str
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Transcription:
    transcription_id: str
    text: str
    language: str
    duration_seconds: float
    filename: str
    file_size: int
    session_id: str
    confidence: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SpeechResult:
    """Synthesized narration; persisting the bytes is left to the caller."""

    speech_id: str
    text: str
    voice: str
    speed: float
    response_format: str
    audio: bytes = field(repr=False)
    session_id: str = ""
    estimated_duration_seconds: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def size_bytes(self) -> int:
        return len(self.audio)


@dataclass(frozen=True)
class ModerationResult:
    moderation_id: str
    content: str
    session_id: str
    flagged: bool
    categories: Mapping[str, bool]
    category_scores: Mapping[str, float]
    risk_level: Literal["low", "medium", "high"]
    action: Literal["allow", "warn", "block"]
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def flagged_categories(self) -> list[str]:
        return [name for name, flagged in self.categories.items() if flagged]


@dataclass(frozen=True)
class SessionFeatures:
    """Enabled-state of every capability for one session."""

    chat: bool = True
    knowledge_base: bool = True
    image_generation: bool = False
    audio_input: bool = False
    text_to_speech: bool = False
    moderation: bool = True

    @classmethod
    def from_enabled(cls, enabled: Sequence[str]) -> "SessionFeatures":
        return cls(**{name: name in enabled for name in FEATURE_NAMES})

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "SessionFeatures":
        unknown = set(values) - set(FEATURE_NAMES)
        if unknown:
            raise ValidationFailure(f"Unknown features: {', '.join(sorted(unknown))}")
        return cls(**{name: bool(values[name]) for name in values})

    def is_enabled(self, name: str) -> bool:
        if name not in FEATURE_NAMES:
            raise ValidationFailure(f"Unknown feature: {name}")
        return bool(getattr(self, name))

    def toggled(self, name: str, enabled: bool, *, cascade: bool = True) -> "SessionFeatures":
        """Return a copy with one feature changed.

        With ``cascade`` the chat flag drives every other capability: turning
        chat off turns everything off and turning it back on enables all.
        """

        if name not in FEATURE_NAMES:
            raise ValidationFailure(f"Unknown feature: {name}")
        if cascade and name == "chat":
            return SessionFeatures(**{feature: enabled for feature in FEATURE_NAMES})
        return replace(self, **{name: enabled})

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class SessionStatistics:
    """Mutable per-session usage counters."""

    session_id: str
    messages_count: int = 0
    images_generated: int = 0
    audio_transcriptions: int = 0
    knowledge_base_queries: int = 0
    moderation_checks: int = 0
    moderation_blocked: int = 0
    tokens_used: int = 0
    start_time: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def session_duration(self) -> float:
        """Seconds since the session started, recomputed on every read."""

        return (utcnow() - self.start_time).total_seconds()


@dataclass
class IntegratedResponse:
    """Unified per-request envelope assembled by the orchestrator."""

    session_id: str
    features: SessionFeatures
    timestamp: datetime = field(default_factory=utcnow)
    request_type: Optional[RequestType] = None
    chat: ChatMessage | None = None
    knowledge_base: KnowledgeBaseAnswer | None = None
    image: GeneratedImage | None = None
    audio: SpeechResult | None = None
    moderation: ModerationResult | None = None
    transcription: Transcription | None = None
    error: str | None = None
