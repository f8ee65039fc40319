from __future__ import annotations

import pytest

from openassist.capabilities import ImageResult
from openassist.capabilities.offline import (
    EncodedTextSpeechBackend,
    PlaceholderImageBackend,
    TextPayloadTranscriptionBackend,
)
from openassist.errors import CapabilityFailure, ValidationFailure
from openassist.services.media import (
    AudioConfig,
    AudioService,
    ImageService,
    estimate_confidence,
)


class RejectingImageBackend:
    def __init__(self, message: str) -> None:
        self.message = message

    async def generate(self, prompt: str, *, size: str, quality: str, style: str) -> ImageResult:
        raise CapabilityFailure("image", "generate", self.message)


def _audio(**config) -> AudioService:
    return AudioService(TextPayloadTranscriptionBackend(), EncodedTextSpeechBackend(), AudioConfig(**config))


@pytest.mark.asyncio
async def test_generate_image_records_history_with_defaults():
    service = ImageService(PlaceholderImageBackend())

    image = await service.generate_image("a lighthouse at dusk", "s1")

    assert image.image_id.startswith("img_")
    assert (image.size, image.quality, image.style) == ("1024x1024", "standard", "vivid")
    assert image.revised_prompt == "a lighthouse at dusk"
    assert service.history("s1") == [image]
    assert service.statistics().total_images_generated == 1


@pytest.mark.asyncio
async def test_empty_image_prompt_is_rejected():
    with pytest.raises(ValidationFailure):
        await ImageService(PlaceholderImageBackend()).generate_image("  ", "s1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "upstream,expected",
    [
        ("Error code: 400 - content_policy_violation", "violates the content policy"),
        ("rate_limit_exceeded for model", "Rate limit exceeded"),
        ("connection reset", "connection reset"),
    ],
)
async def test_image_failures_are_described(upstream: str, expected: str):
    service = ImageService(RejectingImageBackend(upstream))
    with pytest.raises(CapabilityFailure) as excinfo:
        await service.generate_image("a lighthouse", "s1")
    assert expected in excinfo.value.upstream_message
    assert service.history("s1") == []


def test_validate_prompt():
    short = ImageService.validate_prompt("cat")
    assert short.is_valid is False
    assert "Prompt is too short" in short.issues

    flagged = ImageService.validate_prompt("a scene full of gore and blood")
    assert "Prompt may contain inappropriate content" in flagged.issues

    fine = ImageService.validate_prompt("a detailed watercolor of a harbour")
    assert fine.is_valid is True
    assert fine.issues == []


def test_enhance_prompt():
    assert ImageService.enhance_prompt("a fox", "cartoon") == (
        "a fox, cartoon style, animated, colorful, fun, high quality, detailed, well-composed"
    )


def test_validate_audio_reports_every_issue():
    service = _audio(max_audio_bytes=10)
    assert service.validate_audio("clip.wav", 5) == []
    issues = service.validate_audio("clip.exe", 0)
    assert "File is empty" in issues
    assert any("not supported" in issue for issue in issues)
    assert service.validate_audio("clip", 5) == ["File has no extension"]
    assert len(service.validate_audio("clip.mp3", 11)) == 1


@pytest.mark.asyncio
async def test_transcribe_records_history():
    service = _audio()

    transcription = await service.transcribe(b"Hello there, how are you?", "greeting.wav", "s1")

    assert transcription.transcription_id.startswith("trans_")
    assert transcription.text == "Hello there, how are you?"
    assert transcription.language == "en"
    assert transcription.file_size == 25
    assert service.transcription_history("s1") == [transcription]


@pytest.mark.asyncio
async def test_invalid_audio_is_rejected_before_transcription():
    with pytest.raises(ValidationFailure) as excinfo:
        await _audio().transcribe(b"hello", "notes.txt", "s1")
    assert str(excinfo.value).startswith("Invalid audio file:")


@pytest.mark.asyncio
async def test_empty_transcript_is_a_failure():
    with pytest.raises(CapabilityFailure) as excinfo:
        await _audio().transcribe(b"   ", "silence.wav", "s1")
    assert excinfo.value.upstream_message == "Transcription resulted in empty text"


@pytest.mark.asyncio
async def test_remove_transcription():
    service = _audio()
    transcription = await service.transcribe(b"Keep this one.", "a.wav", "s1")

    assert service.remove_transcription("s1", "missing") is False
    assert service.remove_transcription("s1", transcription.transcription_id) is True
    assert service.transcription_history("s1") == []


@pytest.mark.asyncio
async def test_text_to_speech():
    service = _audio()

    speech = await service.text_to_speech("one two three", "s1", voice="nova", speed=1.5)

    assert speech.speech_id.startswith("tts_")
    assert speech.audio == b"[nova@1.5] one two three"
    assert speech.size_bytes == len(speech.audio)
    assert speech.estimated_duration_seconds == 1
    assert service.speech_history("s1") == [speech]
    assert service.statistics().total_tts_generations == 1


@pytest.mark.asyncio
async def test_text_to_speech_limits():
    service = _audio(max_tts_chars=10)
    with pytest.raises(ValidationFailure, match="maximum 10 characters"):
        await service.text_to_speech("x" * 11, "s1")
    with pytest.raises(ValidationFailure):
        await service.text_to_speech("", "s1")
    with pytest.raises(ValidationFailure):
        await service.text_to_speech("hi", "s1", voice="robot")


def test_estimate_duration():
    service = _audio()
    assert service.estimate_duration(" ".join(["word"] * 150), 1.0) == 60
    assert service.estimate_duration(" ".join(["word"] * 150), 2.0) == 30


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Hello there, how are you today.", 0.9),
        ("hi", 0.6),
        ("1234 5678 90", 0.7),
        ("plain words without marks", 0.8),
    ],
)
def test_estimate_confidence(text: str, expected: float):
    assert estimate_confidence(text) == expected
