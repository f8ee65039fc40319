"""Deterministic capability backends used for tests and offline environments."""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Sequence, Tuple
from urllib.parse import quote

from openassist.capabilities.base import (
    CapabilitySet,
    ChatTurn,
    Completion,
    EmbeddingVector,
    ImageResult,
    ModerationScores,
    TranscriptionResult,
)
from openassist.capabilities.openai_backend import MODERATION_CATEGORIES
from openassist.models import TokenUsage

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


@dataclass(frozen=True)
class HashEmbeddingConfig:
    dim: int = 64
    normalize: bool = True


class HashEmbeddingBackend:
    """Feature-hashing embedding: texts sharing words get similar vectors."""

    def __init__(self, config: HashEmbeddingConfig | None = None) -> None:
        self._config = config or HashEmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        vector = [0.0] * self._config.dim
        for token in _tokens(text):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._config.dim
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign
        if self._config.normalize:
            norm = math.sqrt(sum(value * value for value in vector)) or 1.0
            vector = [value / norm for value in vector]
        return tuple(vector)

    async def embed(self, text: str) -> EmbeddingVector:
        return EmbeddingVector(vector=self._hash_to_vector(text), total_tokens=len(_tokens(text)))


class TemplateChatBackend:
    """Simple deterministic chat backend echoing the latest user turn."""

    def _reply(self, messages: Sequence[ChatTurn]) -> str:
        user_turns = [m["content"] for m in messages if m.get("role") == "user"]
        if not user_turns:
            return "Hello! How can I help you today?"
        latest = user_turns[-1]
        if "Context from knowledge base:" in latest:
            context = latest.split("Context from knowledge base:", 1)[1].split("\n\nQuestion:", 1)[0]
            first = context.strip().splitlines()[0] if context.strip() else ""
            return f"Based on the provided documents: {first}"
        return f"You said: {latest}"

    async def complete(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        content = self._reply(messages)
        prompt_tokens = sum(len(_tokens(m["content"])) for m in messages)
        completion_tokens = len(_tokens(content))
        return Completion(
            content=content,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    async def stream(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        words = self._reply(messages).split(" ")
        for index, word in enumerate(words):
            yield word if index == 0 else f" {word}"


class PlaceholderImageBackend:
    async def generate(self, prompt: str, *, size: str, quality: str, style: str) -> ImageResult:
        return ImageResult(url=f"https://placehold.co/{size}?text={quote(prompt[:60])}", revised_prompt=prompt)


class TextPayloadTranscriptionBackend:
    """Treats the uploaded payload as an already transcribed UTF-8 text."""

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        *,
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        text = audio.decode("utf-8", errors="ignore").strip()
        return TranscriptionResult(text=text, duration_seconds=len(text.split()) / 2.5, language=language or "en")


class EncodedTextSpeechBackend:
    async def synthesize(self, text: str, *, voice: str, speed: float, response_format: str = "mp3") -> bytes:
        return f"[{voice}@{speed}] {text}".encode("utf-8")


_KEYWORD_CATEGORIES: Mapping[str, Sequence[str]] = {
    "hate": ("hate you all", "inferior race"),
    "harassment": ("stupid idiot", "worthless loser"),
    "harassment/threatening": ("i will find you",),
    "violence": ("kill", "murder", "attack them"),
    "violence/graphic": ("gore", "dismember"),
    "self-harm": ("hurt myself",),
    "self-harm/intent": ("end my life",),
    "sexual": ("explicit sex",),
}


class KeywordModerationBackend:
    """Flags categories whose trigger phrases occur in the text."""

    def __init__(self, keywords: Mapping[str, Sequence[str]] | None = None) -> None:
        self._keywords = keywords or _KEYWORD_CATEGORIES

    async def moderate(self, text: str) -> ModerationScores:
        lowered = text.lower()
        categories = {name: False for name in MODERATION_CATEGORIES}
        scores = {name: 0.01 for name in MODERATION_CATEGORIES}
        for category, phrases in self._keywords.items():
            if any(re.search(rf"\b{re.escape(phrase)}\b", lowered) for phrase in phrases):
                categories[category] = True
                scores[category] = 0.92
        return ModerationScores(flagged=any(categories.values()), categories=categories, category_scores=scores)


def build_offline_capabilities(embedding_dim: int = 64) -> CapabilitySet:
    return CapabilitySet(
        chat=TemplateChatBackend(),
        embedding=HashEmbeddingBackend(HashEmbeddingConfig(dim=embedding_dim)),
        image=PlaceholderImageBackend(),
        transcription=TextPayloadTranscriptionBackend(),
        speech=EncodedTextSpeechBackend(),
        moderation=KeywordModerationBackend(),
    )
