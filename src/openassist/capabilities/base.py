"""Contracts for the hosted AI capabilities the core depends on."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping, Protocol, Sequence, Tuple

from openassist.models import TokenUsage

ChatTurn = Mapping[str, str]


@dataclass(frozen=True)
class Completion:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class EmbeddingVector:
    vector: Tuple[float, ...]
    total_tokens: int = 0


@dataclass(frozen=True)
class ImageResult:
    url: str
    revised_prompt: str | None = None


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    duration_seconds: float = 0.0
    language: str | None = None


@dataclass(frozen=True)
class ModerationScores:
    """Raw per-category outcome of one moderation call."""

    flagged: bool
    categories: Mapping[str, bool]
    category_scores: Mapping[str, float]


class ChatCompletionBackend(Protocol):
    """Protocol describing chat completion behaviour."""

    async def complete(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """Return the assistant reply for the ordered conversation."""

    def stream(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Yield incremental content fragments of the assistant reply."""


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    async def embed(self, text: str) -> EmbeddingVector:
        """Return the embedding vector for a single text."""


class ImageBackend(Protocol):
    async def generate(self, prompt: str, *, size: str, quality: str, style: str) -> ImageResult:
        """Synthesize one image for the prompt."""


class TranscriptionBackend(Protocol):
    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        *,
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        """Return the transcript of an audio payload."""


class SpeechBackend(Protocol):
    async def synthesize(self, text: str, *, voice: str, speed: float, response_format: str = "mp3") -> bytes:
        """Return encoded audio narrating the text."""


class ModerationBackend(Protocol):
    async def moderate(self, text: str) -> ModerationScores:
        """Classify the text into moderation categories."""


@dataclass(frozen=True)
class CapabilitySet:
    """Bundle of concrete capability backends wired into the services."""

    chat: ChatCompletionBackend
    embedding: EmbeddingBackend
    image: ImageBackend
    transcription: TranscriptionBackend
    speech: SpeechBackend
    moderation: ModerationBackend
