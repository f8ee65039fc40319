"""Wiring of capability backends, stores and services from settings."""

from __future__ import annotations

from dataclasses import dataclass

from openassist.capabilities import CapabilitySet, build_offline_capabilities, build_openai_capabilities
from openassist.config import Settings
from openassist.embeddings import ChromaDocumentStore, DocumentStore, EmbeddingConfig, EmbeddingGateway, InMemoryDocumentStore
from openassist.ingestion import ChunkerConfig, SentenceChunker
from openassist.metrics.observability import get_logger
from openassist.models import SessionFeatures
from openassist.services import (
    AudioConfig,
    AudioService,
    ChatConfig,
    ChatService,
    ImageConfig,
    ImageService,
    IntentClassifier,
    KnowledgeBase,
    KnowledgeBaseConfig,
    Orchestrator,
    OrchestratorConfig,
    SafetyConfig,
    SafetyScreen,
)
from openassist.sessions import SessionRegistry


@dataclass(frozen=True)
class AppDependencies:
    settings: Settings
    capabilities: CapabilitySet
    registry: SessionRegistry
    chat: ChatService
    knowledge_base: KnowledgeBase
    safety: SafetyScreen
    images: ImageService
    audio: AudioService
    orchestrator: Orchestrator


def _build_store(settings: Settings) -> DocumentStore:
    if settings.document_store == "chroma":
        return ChromaDocumentStore(
            settings.chroma_collection,
            persist_directory=settings.chroma_persist_dir,
        )
    return InMemoryDocumentStore()


def build_dependencies(settings: Settings, *, capabilities: CapabilitySet | None = None) -> AppDependencies:
    logger = get_logger("bootstrap")
    if capabilities is None:
        if settings.use_offline_capabilities:
            capabilities = build_offline_capabilities(settings.offline_embedding_dim)
        else:
            capabilities = build_openai_capabilities(settings)
    logger.info(
        "dependencies.build",
        offline=settings.use_offline_capabilities,
        document_store=settings.document_store,
    )

    registry = SessionRegistry(
        default_features=SessionFeatures.from_enabled(settings.default_features_tuple),
        enforce_chat_cascade=settings.enforce_chat_cascade,
    )
    chat = ChatService(
        capabilities.chat,
        ChatConfig(temperature=settings.chat_temperature, max_tokens=settings.chat_max_tokens),
    )
    gateway = EmbeddingGateway(
        capabilities.embedding,
        EmbeddingConfig(
            batch_size=settings.embedding_batch_size,
            inter_batch_delay_seconds=settings.embedding_batch_delay_seconds,
        ),
    )
    knowledge_base = KnowledgeBase(
        gateway,
        capabilities.chat,
        store=_build_store(settings),
        chunker=SentenceChunker(ChunkerConfig(max_chunk_size=settings.chunk_size, overlap_size=settings.chunk_overlap)),
        config=KnowledgeBaseConfig(
            max_results=settings.kb_max_results,
            min_similarity=settings.kb_min_similarity,
            snippet_length=settings.kb_snippet_length,
            temperature=settings.kb_temperature,
            max_tokens=settings.kb_max_tokens,
        ),
    )
    safety = SafetyScreen(
        capabilities.moderation,
        SafetyConfig(
            medium_risk_threshold=settings.risk_medium_threshold,
            high_risk_threshold=settings.risk_high_threshold,
        ),
    )
    images = ImageService(
        capabilities.image,
        ImageConfig(
            size=settings.default_image_size,
            quality=settings.default_image_quality,
            style=settings.default_image_style,
        ),
    )
    audio = AudioService(
        capabilities.transcription,
        capabilities.speech,
        AudioConfig(
            max_audio_bytes=settings.max_audio_size_mb * 1024 * 1024,
            max_tts_chars=settings.max_tts_chars,
            default_voice=settings.default_tts_voice,
        ),
    )
    orchestrator = Orchestrator(
        registry=registry,
        safety=safety,
        classifier=IntentClassifier(),
        chat=chat,
        knowledge_base=knowledge_base,
        images=images,
        audio=audio,
        config=OrchestratorConfig(
            serialize_sessions=settings.serialize_sessions,
            image_size=settings.default_image_size,
            image_quality=settings.default_image_quality,
            image_style=settings.default_image_style,
        ),
    )
    return AppDependencies(
        settings=settings,
        capabilities=capabilities,
        registry=registry,
        chat=chat,
        knowledge_base=knowledge_base,
        safety=safety,
        images=images,
        audio=audio,
        orchestrator=orchestrator,
    )
