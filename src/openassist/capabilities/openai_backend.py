"""Capability backends calling the hosted OpenAI APIs."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import AsyncIterator, Sequence

from openai import AsyncOpenAI, OpenAIError

from openassist.capabilities.base import (
    CapabilitySet,
    ChatTurn,
    Completion,
    EmbeddingVector,
    ImageResult,
    ModerationScores,
    TranscriptionResult,
)
from openassist.config import Settings
from openassist.errors import CapabilityFailure
from openassist.metrics.observability import PipelineMetrics, TimedSection
from openassist.models import TokenUsage

LOGGER = logging.getLogger(__name__)

MODERATION_CATEGORIES: tuple[str, ...] = (
    "hate",
    "hate/threatening",
    "harassment",
    "harassment/threatening",
    "self-harm",
    "self-harm/intent",
    "self-harm/instructions",
    "sexual",
    "sexual/minors",
    "violence",
    "violence/graphic",
)


@lru_cache(maxsize=4)
def get_openai_client(api_key: str | None = None, timeout: float | None = None) -> AsyncOpenAI:
    """Return a shared async client, reading OPENAI_API_KEY when no key is given."""

    key = api_key or os.getenv("OPENAI_API_KEY")
    if not key:
        raise ValueError("OPENAI_API_KEY environment variable not set")
    kwargs: dict[str, object] = {"api_key": key}
    if timeout is not None:
        kwargs["timeout"] = timeout
    client = AsyncOpenAI(**kwargs)
    LOGGER.info("OpenAI client initialized")
    return client


def _timed(capability: str) -> TimedSection:
    return TimedSection(lambda duration: PipelineMetrics.observe_capability(capability, duration))


def _usage(raw) -> TokenUsage:
    if raw is None:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
        total_tokens=getattr(raw, "total_tokens", 0) or 0,
    )


class OpenAIChatBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "gpt-4o", top_p: float = 1.0) -> None:
        self._client = client
        self._model = model
        self._top_p = top_p

    async def complete(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        try:
            with _timed("chat"):
                response = await self._client.chat.completions.create(
                    model=self._model,
                    messages=[dict(message) for message in messages],
                    **self._params(temperature, max_tokens),
                )
        except OpenAIError as exc:
            raise CapabilityFailure("chat", "complete", str(exc)) from exc
        if not response.choices:
            raise CapabilityFailure("chat", "complete", "No completion choices returned")
        return Completion(
            content=response.choices[0].message.content or "",
            usage=_usage(response.usage),
        )

    async def stream(
        self,
        messages: Sequence[ChatTurn],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=[dict(message) for message in messages],
                stream=True,
                **self._params(temperature, max_tokens),
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except OpenAIError as exc:
            raise CapabilityFailure("chat", "stream", str(exc)) from exc

    def _params(self, temperature: float | None, max_tokens: int | None) -> dict[str, object]:
        params: dict[str, object] = {"top_p": self._top_p}
        if temperature is not None:
            params["temperature"] = temperature
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        return params


class OpenAIEmbeddingBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "text-embedding-3-small") -> None:
        self._client = client
        self._model = model

    async def embed(self, text: str) -> EmbeddingVector:
        try:
            with _timed("embedding"):
                response = await self._client.embeddings.create(
                    model=self._model,
                    input=text,
                    encoding_format="float",
                )
        except OpenAIError as exc:
            raise CapabilityFailure("embedding", "embed", str(exc)) from exc
        if not response.data:
            raise CapabilityFailure("embedding", "embed", "No embedding rows returned")
        total = response.usage.total_tokens if response.usage else 0
        return EmbeddingVector(vector=tuple(response.data[0].embedding), total_tokens=total)


class OpenAIImageBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "dall-e-3") -> None:
        self._client = client
        self._model = model

    async def generate(self, prompt: str, *, size: str, quality: str, style: str) -> ImageResult:
        try:
            with _timed("image"):
                response = await self._client.images.generate(
                    model=self._model,
                    prompt=prompt,
                    n=1,
                    size=size,
                    quality=quality,
                    style=style,
                )
        except OpenAIError as exc:
            raise CapabilityFailure("image", "generate", str(exc)) from exc
        if not response.data or not response.data[0].url:
            raise CapabilityFailure("image", "generate", "No image was generated")
        image = response.data[0]
        return ImageResult(url=image.url, revised_prompt=image.revised_prompt)


class OpenAITranscriptionBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "whisper-1") -> None:
        self._client = client
        self._model = model

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        *,
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        kwargs: dict[str, object] = {"response_format": "verbose_json", "temperature": 0}
        if language:
            kwargs["language"] = language
        if prompt:
            kwargs["prompt"] = prompt
        try:
            with _timed("transcription"):
                response = await self._client.audio.transcriptions.create(
                    file=(filename, audio),
                    model=self._model,
                    **kwargs,
                )
        except OpenAIError as exc:
            raise CapabilityFailure("transcription", "transcribe", str(exc)) from exc
        return TranscriptionResult(
            text=response.text,
            duration_seconds=float(getattr(response, "duration", 0.0) or 0.0),
            language=getattr(response, "language", None) or language,
        )


class OpenAISpeechBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "tts-1") -> None:
        self._client = client
        self._model = model

    async def synthesize(self, text: str, *, voice: str, speed: float, response_format: str = "mp3") -> bytes:
        try:
            with _timed("speech"):
                response = await self._client.audio.speech.create(
                    model=self._model,
                    voice=voice,
                    input=text,
                    response_format=response_format,
                    speed=speed,
                )
        except OpenAIError as exc:
            raise CapabilityFailure("speech", "synthesize", str(exc)) from exc
        return response.content


class OpenAIModerationBackend:
    def __init__(self, client: AsyncOpenAI, *, model: str = "omni-moderation-latest") -> None:
        self._client = client
        self._model = model

    async def moderate(self, text: str) -> ModerationScores:
        try:
            with _timed("moderation"):
                response = await self._client.moderations.create(model=self._model, input=text)
        except OpenAIError as exc:
            raise CapabilityFailure("moderation", "moderate", str(exc)) from exc
        if not response.results:
            raise CapabilityFailure("moderation", "moderate", "No moderation results returned")
        result = response.results[0]
        flags = result.categories.model_dump(by_alias=True)
        scores = result.category_scores.model_dump(by_alias=True)
        return ModerationScores(
            flagged=bool(result.flagged),
            categories={name: bool(flags.get(name)) for name in MODERATION_CATEGORIES},
            category_scores={name: float(scores.get(name) or 0.0) for name in MODERATION_CATEGORIES},
        )


def build_openai_capabilities(settings: Settings) -> CapabilitySet:
    client = get_openai_client(settings.openai_api_key, settings.openai_timeout_seconds)
    return CapabilitySet(
        chat=OpenAIChatBackend(client, model=settings.chat_model, top_p=settings.chat_top_p),
        embedding=OpenAIEmbeddingBackend(client, model=settings.embedding_model),
        image=OpenAIImageBackend(client, model=settings.image_model),
        transcription=OpenAITranscriptionBackend(client, model=settings.transcription_model),
        speech=OpenAISpeechBackend(client, model=settings.tts_model),
        moderation=OpenAIModerationBackend(client, model=settings.moderation_model),
    )
