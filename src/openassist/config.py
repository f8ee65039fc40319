"""Runtime configuration for the OpenAssist services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

FEATURE_NAMES: tuple[str, ...] = (
    "chat",
    "knowledge_base",
    "image_generation",
    "audio_input",
    "text_to_speech",
    "moderation",
)


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="openassist_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Capability providers
    openai_api_key: str | None = None  # falls back to OPENAI_API_KEY
    openai_timeout_seconds: float | None = None
    use_offline_capabilities: bool = False

    chat_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    moderation_model: str = "omni-moderation-latest"
    image_model: str = "dall-e-3"
    transcription_model: str = "whisper-1"
    tts_model: str = "tts-1"
    offline_embedding_dim: int = 64

    # Chat completion
    chat_max_tokens: int = 4096
    chat_temperature: float = 0.7
    chat_top_p: float = 1.0

    # Knowledge base
    chunk_size: int = 800
    chunk_overlap: int = 80
    embedding_batch_size: int = 10
    embedding_batch_delay_seconds: float = 0.1
    kb_max_results: int = 3
    kb_min_similarity: float = 0.7
    kb_temperature: float = 0.3
    kb_max_tokens: int = 1500
    kb_snippet_length: int = 200
    sample_documents_dir: Path | None = None

    # Storage
    document_store: Literal["memory", "chroma"] = "memory"
    chroma_persist_dir: Path | None = None
    chroma_collection: str = "openassist-documents"

    # Safety screening
    risk_medium_threshold: float = 0.3
    risk_high_threshold: float = 0.7

    # Sessions
    default_features: tuple[str, ...] | str = ("chat", "knowledge_base", "moderation")
    enforce_chat_cascade: bool = True
    serialize_sessions: bool = True

    # Media limits
    max_tts_chars: int = 4096
    max_audio_size_mb: int = 25
    default_image_size: str = "1024x1024"
    default_image_quality: str = "standard"
    default_image_style: str = "vivid"
    default_tts_voice: str = "alloy"

    # API
    api_key: str | None = None  # if set, required in X-API-Key header
    max_upload_size_mb: int = 25
    allowed_document_extensions: tuple[str, ...] | str = (".txt", ".md", ".pdf", ".docx")

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def default_features_tuple(self) -> tuple[str, ...]:
        value = self.default_features
        if isinstance(value, str):
            parts = tuple(p.strip() for p in value.split(",") if p.strip())
        else:
            parts = tuple(value)
        unknown = [name for name in parts if name not in FEATURE_NAMES]
        if unknown:
            raise ValueError(f"Unknown feature names in default_features: {', '.join(unknown)}")
        return parts

    @property
    def allowed_document_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_document_extensions
        if isinstance(value, tuple):
            return value
        parts = [p.strip() for p in value.split(",") if p.strip()]
        return tuple(parts) if parts else (".txt", ".md")


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
