"""Image generation, transcription and speech synthesis services."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import List, Literal, Tuple

from openassist.capabilities.base import ImageBackend, SpeechBackend, TranscriptionBackend
from openassist.errors import CapabilityFailure, ValidationFailure
from openassist.metrics.observability import get_logger
from openassist.models import GeneratedImage, SpeechResult, Transcription, new_id
from openassist.sessions import InMemorySessionStore, SessionStore, append_to

AUDIO_EXTENSIONS: Tuple[str, ...] = (
    ".flac",
    ".m4a",
    ".mp3",
    ".mp4",
    ".mpeg",
    ".mpga",
    ".oga",
    ".ogg",
    ".wav",
    ".webm",
)

TTS_VOICES: Tuple[str, ...] = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

PROMPT_STYLE_MODIFIERS = {
    "realistic": "photorealistic, high detail, professional photography",
    "artistic": "artistic, creative, stylized, beautiful composition",
    "cartoon": "cartoon style, animated, colorful, fun",
    "photographic": "professional photography, studio lighting, high resolution",
}

_PROBLEMATIC_PROMPT_WORDS = ("nsfw", "explicit", "violence", "gore", "hate")
_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")


@dataclass(frozen=True)
class ImageConfig:
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"


@dataclass(frozen=True)
class PromptValidation:
    is_valid: bool
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImageStatistics:
    total_images_generated: int
    total_sessions: int
    average_images_per_session: int


class ImageService:
    """Generates images and keeps a per-session gallery."""

    def __init__(
        self,
        backend: ImageBackend,
        config: ImageConfig | None = None,
        *,
        history_store: SessionStore[list] | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or ImageConfig()
        self._history = history_store or InMemorySessionStore()
        self._logger = get_logger("image")

    async def generate_image(
        self,
        prompt: str,
        session_id: str,
        *,
        size: str | None = None,
        quality: str | None = None,
        style: str | None = None,
    ) -> GeneratedImage:
        if not prompt or not prompt.strip():
            raise ValidationFailure("Image prompt must not be empty")
        size = size or self._config.size
        quality = quality or self._config.quality
        style = style or self._config.style
        try:
            result = await self._backend.generate(prompt, size=size, quality=quality, style=style)
        except CapabilityFailure as exc:
            self._logger.error("image.failed", session_id=session_id, detail=exc.upstream_message)
            raise CapabilityFailure("image", "generate", _describe_image_failure(exc.upstream_message)) from exc
        image = GeneratedImage(
            image_id=new_id("img"),
            url=result.url,
            prompt=prompt,
            revised_prompt=result.revised_prompt or prompt,
            size=size,
            quality=quality,
            style=style,
            session_id=session_id,
        )
        append_to(self._history, session_id, image)
        self._logger.info("image.generated", session_id=session_id, image_id=image.image_id, size=size)
        return image

    def history(self, session_id: str) -> List[GeneratedImage]:
        return list(self._history.get(session_id) or [])

    def clear_history(self, session_id: str) -> None:
        self._history.delete(session_id)

    def statistics(self) -> ImageStatistics:
        sessions = list(self._history.keys())
        total = sum(len(self.history(session_id)) for session_id in sessions)
        return ImageStatistics(
            total_images_generated=total,
            total_sessions=len(sessions),
            average_images_per_session=round(total / len(sessions)) if sessions else 0,
        )

    @staticmethod
    def validate_prompt(prompt: str) -> PromptValidation:
        issues: List[str] = []
        suggestions: List[str] = []
        if len(prompt) < 10:
            issues.append("Prompt is too short")
            suggestions.append("Add more descriptive details to your prompt")
        if len(prompt) > 1000:
            issues.append("Prompt is too long")
            suggestions.append("Shorten your prompt to under 1000 characters")
        lowered = prompt.lower()
        if any(word in lowered for word in _PROBLEMATIC_PROMPT_WORDS):
            issues.append("Prompt may contain inappropriate content")
            suggestions.append("Remove potentially inappropriate terms and try again")
        if "detailed" not in prompt and "high quality" not in prompt:
            suggestions.append("Consider adding 'detailed' or 'high quality' for better results")
        return PromptValidation(is_valid=not issues, issues=issues, suggestions=suggestions)

    @staticmethod
    def enhance_prompt(
        prompt: str,
        style: Literal["realistic", "artistic", "cartoon", "photographic"] = "realistic",
    ) -> str:
        return f"{prompt}, {PROMPT_STYLE_MODIFIERS[style]}, high quality, detailed, well-composed"


def _describe_image_failure(message: str) -> str:
    if "content_policy_violation" in message:
        return "The prompt violates the content policy. Please try a different prompt."
    if "rate_limit_exceeded" in message:
        return "Rate limit exceeded. Please try again in a few minutes."
    return message


@dataclass(frozen=True)
class AudioConfig:
    max_audio_bytes: int = 25 * 1024 * 1024
    max_tts_chars: int = 4096
    default_voice: str = "alloy"
    words_per_minute: int = 150


@dataclass(frozen=True)
class AudioStatistics:
    total_transcriptions: int
    total_tts_generations: int
    total_sessions: int
    average_transcript_length: int


class AudioService:
    """Speech-to-text and text-to-speech with per-session histories."""

    def __init__(
        self,
        transcriber: TranscriptionBackend,
        synthesizer: SpeechBackend,
        config: AudioConfig | None = None,
        *,
        transcription_store: SessionStore[list] | None = None,
        speech_store: SessionStore[list] | None = None,
    ) -> None:
        self._transcriber = transcriber
        self._synthesizer = synthesizer
        self._config = config or AudioConfig()
        self._transcriptions = transcription_store or InMemorySessionStore()
        self._speech = speech_store or InMemorySessionStore()
        self._logger = get_logger("audio")

    def validate_audio(self, filename: str, size: int) -> List[str]:
        issues: List[str] = []
        if size > self._config.max_audio_bytes:
            limit_mb = self._config.max_audio_bytes // (1024 * 1024)
            issues.append(f"File size {round(size / 1024 / 1024)}MB exceeds maximum of {limit_mb}MB")
        if size == 0:
            issues.append("File is empty")
        extension = PurePath(filename).suffix.lower()
        if not extension:
            issues.append("File has no extension")
        elif extension not in AUDIO_EXTENSIONS:
            issues.append(
                f"File format {extension} is not supported. Supported formats: {', '.join(AUDIO_EXTENSIONS)}"
            )
        return issues

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        session_id: str,
        *,
        language: str | None = None,
        prompt: str | None = None,
    ) -> Transcription:
        issues = self.validate_audio(filename, len(audio))
        if issues:
            raise ValidationFailure(f"Invalid audio file: {', '.join(issues)}")
        result = await self._transcriber.transcribe(audio, filename, language=language, prompt=prompt)
        if not result.text.strip():
            raise CapabilityFailure("transcription", "transcribe", "Transcription resulted in empty text")
        transcription = Transcription(
            transcription_id=new_id("trans"),
            text=result.text,
            language=language or result.language or "auto-detected",
            duration_seconds=result.duration_seconds,
            filename=filename,
            file_size=len(audio),
            session_id=session_id,
            confidence=estimate_confidence(result.text),
        )
        append_to(self._transcriptions, session_id, transcription)
        self._logger.info(
            "audio.transcribed",
            session_id=session_id,
            filename=filename,
            characters=len(result.text),
        )
        return transcription

    async def text_to_speech(
        self,
        text: str,
        session_id: str,
        *,
        voice: str | None = None,
        speed: float = 1.0,
        response_format: str = "mp3",
    ) -> SpeechResult:
        if not text or not text.strip():
            raise ValidationFailure("Text for speech must not be empty")
        if len(text) > self._config.max_tts_chars:
            raise ValidationFailure(
                f"Text is too long for TTS (maximum {self._config.max_tts_chars} characters)"
            )
        voice = voice or self._config.default_voice
        if voice not in TTS_VOICES:
            raise ValidationFailure(f"Unsupported voice: {voice}")
        audio = await self._synthesizer.synthesize(text, voice=voice, speed=speed, response_format=response_format)
        speech = SpeechResult(
            speech_id=new_id("tts"),
            text=text,
            voice=voice,
            speed=speed,
            response_format=response_format,
            audio=audio,
            session_id=session_id,
            estimated_duration_seconds=self.estimate_duration(text, speed),
        )
        append_to(self._speech, session_id, speech)
        self._logger.info("audio.synthesized", session_id=session_id, characters=len(text), voice=voice)
        return speech

    def estimate_duration(self, text: str, speed: float) -> int:
        words = len(text.split())
        return round(words / (self._config.words_per_minute * speed) * 60)

    def transcription_history(self, session_id: str) -> List[Transcription]:
        return list(self._transcriptions.get(session_id) or [])

    def speech_history(self, session_id: str) -> List[SpeechResult]:
        return list(self._speech.get(session_id) or [])

    def remove_transcription(self, session_id: str, transcription_id: str) -> bool:
        history = self.transcription_history(session_id)
        remaining = [item for item in history if item.transcription_id != transcription_id]
        if len(remaining) == len(history):
            return False
        self._transcriptions.set(session_id, remaining)
        self._logger.info("audio.transcription_removed", session_id=session_id, transcription_id=transcription_id)
        return True

    def clear_history(self, session_id: str) -> None:
        self._transcriptions.delete(session_id)
        self._speech.delete(session_id)

    def statistics(self) -> AudioStatistics:
        transcriptions = [item for key in self._transcriptions.keys() for item in self.transcription_history(key)]
        speeches = [item for key in self._speech.keys() for item in self.speech_history(key)]
        sessions = set(self._transcriptions.keys()) | set(self._speech.keys())
        average = round(sum(len(item.text) for item in transcriptions) / len(transcriptions)) if transcriptions else 0
        return AudioStatistics(
            total_transcriptions=len(transcriptions),
            total_tts_generations=len(speeches),
            total_sessions=len(sessions),
            average_transcript_length=average,
        )


def estimate_confidence(text: str) -> float:
    """Rough transcript quality score in [0.1, 1.0]."""

    confidence = 0.8
    if len(text) < 10:
        confidence -= 0.2
    if text and len(_NON_LETTERS.findall(text)) / len(text) > 0.3:
        confidence -= 0.1
    if any(mark in text for mark in ".?!"):
        confidence += 0.1
    return round(max(0.1, min(1.0, confidence)), 2)
