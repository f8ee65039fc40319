from __future__ import annotations

import asyncio
import math
from typing import AsyncIterator, Callable, List, Sequence, Tuple

import pytest

from openassist.bootstrap import AppDependencies, build_dependencies
from openassist.capabilities import CapabilitySet, Completion, EmbeddingVector
from openassist.capabilities.base import ChatTurn
from openassist.capabilities.offline import (
    EncodedTextSpeechBackend,
    KeywordModerationBackend,
    PlaceholderImageBackend,
    TextPayloadTranscriptionBackend,
)
from openassist.config import Settings
from openassist.errors import CapabilityFailure
from openassist.models import TokenUsage

VOCABULARY = ("cat", "dog", "embedding", "vector", "python", "weather")


class ScriptedChatBackend:
    """Chat fake that records every call and replies with a fixed text."""

    def __init__(self, reply: str = "scripted reply", *, fail: bool = False, delay: float = 0.0) -> None:
        self.reply = reply
        self.fail = fail
        self.delay = delay
        self.calls: List[List[dict]] = []
        self.active = 0
        self.max_active = 0

    async def complete(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        self.calls.append([dict(m) for m in messages])
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise CapabilityFailure("chat", "complete", "upstream unavailable")
            return Completion(content=self.reply, usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15))
        finally:
            self.active -= 1

    async def stream(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        self.calls.append([dict(m) for m in messages])
        if self.fail:
            raise CapabilityFailure("chat", "stream", "upstream unavailable")
        for word in self.reply.split(" "):
            yield word + " "


class KeywordEmbeddingBackend:
    """One axis per vocabulary word plus a catch-all axis."""

    def __init__(self, *, fail_after: int | None = None) -> None:
        self.calls: List[str] = []
        self.fail_after = fail_after

    async def embed(self, text: str) -> EmbeddingVector:
        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise CapabilityFailure("embedding", "embed", "quota exceeded")
        self.calls.append(text)
        lowered = text.lower()
        counts = [float(lowered.count(word)) for word in VOCABULARY]
        counts.append(0.0 if any(counts) else 1.0)
        return EmbeddingVector(vector=tuple(counts), total_tokens=len(text.split()))


class LookupEmbeddingBackend:
    """Returns vectors computed by a caller supplied function."""

    def __init__(self, fn: Callable[[str], Tuple[float, ...]]) -> None:
        self.fn = fn
        self.calls: List[str] = []

    async def embed(self, text: str) -> EmbeddingVector:
        self.calls.append(text)
        return EmbeddingVector(vector=self.fn(text), total_tokens=3)


class FailingModerationBackend:
    async def moderate(self, text: str):
        raise CapabilityFailure("moderation", "moderate", "moderation endpoint down")


class FailingSpeechBackend:
    async def synthesize(self, text: str, *, voice: str, speed: float, response_format: str = "mp3") -> bytes:
        raise CapabilityFailure("speech", "synthesize", "speech endpoint down")


def unit_pair(similarity: float) -> Tuple[float, float]:
    """Return a 2-d unit vector whose cosine with (1, 0) is ``similarity``."""

    return (similarity, math.sqrt(1.0 - similarity * similarity))


def make_capabilities(**overrides) -> CapabilitySet:
    parts = {
        "chat": ScriptedChatBackend(),
        "embedding": KeywordEmbeddingBackend(),
        "image": PlaceholderImageBackend(),
        "transcription": TextPayloadTranscriptionBackend(),
        "speech": EncodedTextSpeechBackend(),
        "moderation": KeywordModerationBackend(),
    }
    parts.update(overrides)
    return CapabilitySet(**parts)


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "use_offline_capabilities": True,
        "embedding_batch_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def build_deps(settings: Settings) -> Callable[..., AppDependencies]:
    def _build(**overrides) -> AppDependencies:
        return build_dependencies(settings, capabilities=make_capabilities(**overrides))

    return _build


@pytest.fixture
def deps(build_deps) -> AppDependencies:
    return build_deps()
