"""Request orchestration: screening, routing, dispatch, speech and accounting."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, Mapping

from openassist.errors import ValidationFailure
from openassist.metrics.observability import PipelineMetrics, get_logger
from openassist.models import (
    ChatMessage,
    EventKind,
    IntegratedResponse,
    RequestType,
    SessionFeatures,
    SessionStatistics,
    new_id,
)
from openassist.services.chat import ChatService
from openassist.services.knowledge import KnowledgeBase
from openassist.services.media import AudioService, ImageService
from openassist.services.routing import IntentClassifier, extract_image_prompt
from openassist.services.safety import SafetyScreen
from openassist.sessions import SessionRegistry, SystemStatistics

IMAGE_CONFIRMATION = (
    'I\'ve generated an image based on your prompt: "{prompt}". The image should appear above this message.'
)
IMAGE_DISABLED_MESSAGE = (
    "Image generation is currently disabled. Please enable it in the features panel to generate images."
)
KNOWLEDGE_BASE_DISABLED_MESSAGE = (
    "Knowledge base queries are currently disabled. Please enable the knowledge base feature "
    "or upload some documents first."
)
ERROR_MESSAGE = "I apologize, but I encountered an error while processing your request: {error}. Please try again."


class Stage(str, Enum):
    START = "start"
    SCREENING = "screening"
    BLOCKED = "blocked"
    ROUTING = "routing"
    DISPATCH = "dispatch"
    SPEECH = "speech"
    ACCOUNTING = "accounting"
    DONE = "done"


@dataclass(frozen=True)
class ChatRequest:
    message: str
    session_id: str
    enable_tts: bool = False
    tts_voice: str = "alloy"


@dataclass(frozen=True)
class OrchestratorConfig:
    serialize_sessions: bool = True
    image_size: str = "1024x1024"
    image_quality: str = "standard"
    image_style: str = "vivid"


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class Orchestrator:
    """Runs one request through the pipeline and always returns an envelope.

    Stage order is fixed: screening precedes dispatch, dispatch precedes speech,
    and statistics are recorded last. A flagged message stops at ``BLOCKED``.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        safety: SafetyScreen,
        classifier: IntentClassifier,
        chat: ChatService,
        knowledge_base: KnowledgeBase,
        images: ImageService,
        audio: AudioService,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._safety = safety
        self._classifier = classifier
        self._chat = chat
        self._knowledge_base = knowledge_base
        self._images = images
        self._audio = audio
        self._config = config or OrchestratorConfig()
        self._locks: Dict[str, _SessionLock] = {}
        self._logger = get_logger("orchestrator")

    @asynccontextmanager
    async def _session_guard(self, session_id: str) -> AsyncIterator[None]:
        """Serialize requests per session; a lock lives only while someone holds or awaits it."""

        if not self._config.serialize_sessions:
            yield
            return
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _SessionLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(session_id) is entry:
                del self._locks[session_id]

    @property
    def tracked_sessions(self) -> int:
        """Number of sessions currently holding or waiting on a request lock."""

        return len(self._locks)

    async def process(self, request: ChatRequest) -> IntegratedResponse:
        async with self._session_guard(request.session_id):
            return await self._run(request)

    async def _run(self, request: ChatRequest) -> IntegratedResponse:
        session_id = request.session_id
        features = self._registry.get_features(session_id)
        response = IntegratedResponse(session_id=session_id, features=features)
        stage = Stage.START
        try:
            if features.moderation:
                stage = Stage.SCREENING
                moderation = await self._safety.check(request.message, session_id)
                self._registry.record_event(session_id, EventKind.MODERATION_CHECK)
                response.moderation = moderation
                if moderation.flagged:
                    stage = Stage.BLOCKED
                    response.chat = self._assistant(session_id, self._safety.safe_refusal_message(moderation))
                    self._registry.record_event(session_id, EventKind.MODERATION_BLOCKED)
                    self._logger.info(
                        "request.blocked",
                        session_id=session_id,
                        action=moderation.action,
                        categories=moderation.flagged_categories,
                    )
                    return response

            stage = Stage.ROUTING
            request_type = self._classifier.classify(request.message)
            response.request_type = request_type

            stage = Stage.DISPATCH
            event, tokens = await self._dispatch(request, request_type, features, response)

            if features.text_to_speech and request.enable_tts and response.chat is not None:
                stage = Stage.SPEECH
                await self._speak(request, response)

            stage = Stage.ACCOUNTING
            self._registry.record_event(session_id, event, tokens=tokens)
            PipelineMetrics.count_request(request_type.value)
            stage = Stage.DONE
            self._logger.info(
                "request.complete",
                session_id=session_id,
                request_type=request_type.value,
                accounted_as=event.value,
            )
            return response
        except Exception as exc:
            self._logger.error("request.failed", session_id=session_id, stage=stage.value, detail=str(exc))
            return IntegratedResponse(
                session_id=session_id,
                features=self._registry.get_features(session_id),
                request_type=response.request_type,
                moderation=response.moderation,
                chat=self._assistant(session_id, ERROR_MESSAGE.format(error=exc)),
                error=str(exc),
            )

    async def _dispatch(
        self,
        request: ChatRequest,
        request_type: RequestType,
        features: SessionFeatures,
        response: IntegratedResponse,
    ) -> tuple[EventKind, int]:
        session_id = request.session_id
        if request_type is RequestType.IMAGE_GENERATION:
            if not features.image_generation:
                response.chat = self._assistant(session_id, IMAGE_DISABLED_MESSAGE)
                return EventKind.GENERAL_CHAT, 0
            prompt = extract_image_prompt(request.message)
            response.image = await self._images.generate_image(
                prompt,
                session_id,
                size=self._config.image_size,
                quality=self._config.image_quality,
                style=self._config.image_style,
            )
            response.chat = self._assistant(session_id, IMAGE_CONFIRMATION.format(prompt=request.message))
            return EventKind.IMAGE_GENERATION, 0

        if request_type is RequestType.KNOWLEDGE_BASE_QUERY:
            if not features.knowledge_base:
                response.chat = self._assistant(session_id, KNOWLEDGE_BASE_DISABLED_MESSAGE)
                return EventKind.GENERAL_CHAT, 0
            answer = await self._knowledge_base.query(request.message, session_id=session_id)
            response.knowledge_base = answer
            response.chat = self._assistant(session_id, answer.answer)
            tokens = answer.token_usage.total_tokens if answer.token_usage else 0
            return EventKind.KNOWLEDGE_BASE_QUERY, tokens

        reply = await self._chat.send_message(session_id, request.message)
        response.chat = reply
        return EventKind.GENERAL_CHAT, reply.token_usage.total_tokens if reply.token_usage else 0

    async def _speak(self, request: ChatRequest, response: IntegratedResponse) -> None:
        try:
            response.audio = await self._audio.text_to_speech(
                response.chat.content,
                request.session_id,
                voice=request.tts_voice,
            )
        except Exception as exc:
            PipelineMetrics.count_best_effort_failure("speech")
            self._logger.warning("speech.skipped", session_id=request.session_id, detail=str(exc))

    async def process_audio(self, audio: bytes, filename: str, session_id: str) -> IntegratedResponse:
        """Transcribe an upload and run the transcript through :meth:`process`."""

        features = self._registry.get_features(session_id)
        if not features.audio_input:
            raise ValidationFailure("Audio input is disabled for this session")
        transcription = await self._audio.transcribe(audio, filename, session_id)
        self._registry.record_event(session_id, EventKind.AUDIO_TRANSCRIPTION)
        response = await self.process(
            ChatRequest(message=transcription.text, session_id=session_id, enable_tts=features.text_to_speech)
        )
        response.transcription = transcription
        return response

    def configure_features(
        self, session_id: str, features: SessionFeatures | Mapping[str, bool]
    ) -> SessionFeatures:
        return self._registry.set_features(session_id, features)

    def toggle_feature(self, session_id: str, name: str, enabled: bool) -> SessionFeatures:
        return self._registry.toggle_feature(session_id, name, enabled)

    def get_features(self, session_id: str) -> SessionFeatures:
        return self._registry.get_features(session_id)

    def get_statistics(self, session_id: str) -> SessionStatistics:
        return self._registry.get_statistics(session_id)

    def system_statistics(self) -> SystemStatistics:
        return self._registry.system_statistics()

    def clear_session(self, session_id: str) -> None:
        self._chat.clear_history(session_id)
        self._images.clear_history(session_id)
        self._audio.clear_history(session_id)
        self._safety.clear_history(session_id)
        self._registry.clear(session_id)
        self._logger.info("session.cleared", session_id=session_id)

    @staticmethod
    def _assistant(session_id: str, content: str) -> ChatMessage:
        return ChatMessage(message_id=new_id("resp"), role="assistant", content=content, session_id=session_id)
