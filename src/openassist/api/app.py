"""FastAPI application exposing OpenAssist services."""

from __future__ import annotations

import json
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from openassist.api.schemas import (
    ChatHistoryResponse,
    ChatMessageModel,
    ChatMessageRequest,
    DocumentListResponse,
    DocumentModel,
    DocumentUploadResponse,
    FeaturesModel,
    FeaturesUpdate,
    FeatureToggleRequest,
    GeneratedImageModel,
    ImageRequest,
    IntegratedChatRequest,
    IntegratedChatResponse,
    KnowledgeBaseAnswerModel,
    KnowledgeBaseQueryRequest,
    ModerationCheckResponse,
    ModerationModel,
    ModerationRequest,
    SessionRequest,
    SessionStatisticsModel,
    SpeechModel,
    SpeechRequest,
    SystemStatisticsModel,
    TranscriptionModel,
)
from openassist.bootstrap import AppDependencies, build_dependencies
from openassist.config import Settings, get_settings
from openassist.errors import CapabilityFailure, NotFound, ValidationFailure
from openassist.ingestion import extract_text
from openassist.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from openassist.models import IntegratedResponse
from openassist.services import ChatRequest


def _integrated_model(response: IntegratedResponse) -> IntegratedChatResponse:
    return IntegratedChatResponse(
        session_id=response.session_id,
        timestamp=response.timestamp,
        features=FeaturesModel.model_validate(response.features),
        request_type=response.request_type.value if response.request_type else None,
        chat=ChatMessageModel.model_validate(response.chat) if response.chat else None,
        knowledge_base=(
            KnowledgeBaseAnswerModel.model_validate(response.knowledge_base) if response.knowledge_base else None
        ),
        image=GeneratedImageModel.model_validate(response.image) if response.image else None,
        audio=SpeechModel.from_result(response.audio) if response.audio else None,
        moderation=ModerationModel.model_validate(response.moderation) if response.moderation else None,
        transcription=TranscriptionModel.model_validate(response.transcription) if response.transcription else None,
        error=response.error,
    )


async def _read_upload(upload: UploadFile, limit_mb: int) -> bytes:
    limit = limit_mb * 1024 * 1024
    payload = bytearray()
    while True:
        chunk = await upload.read(1024 * 1024)
        if not chunk:
            break
        payload.extend(chunk)
        if len(payload) > limit:
            await upload.close()
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large (>{limit_mb}MB): {upload.filename}",
            )
    await upload.close()
    return bytes(payload)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.sample_documents_dir is not None:
            results = await deps.knowledge_base.load_directory(settings.sample_documents_dir)
            logger.info("samples.loaded", document_count=len(results))
        yield

    from openassist import __version__

    app = FastAPI(title="OpenAssist API", version=__version__, lifespan=lifespan)
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        if request.headers.get("X-API-Key") != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def _error_response(request: Request, code: int, event: str, detail: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error(event, correlation_id=correlation_id, detail=detail)
        return JSONResponse(status_code=code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(ValidationFailure)
    async def handle_validation_failure(request: Request, exc: ValidationFailure) -> JSONResponse:
        return _error_response(request, status.HTTP_400_BAD_REQUEST, "validation.error", str(exc))

    @app.exception_handler(NotFound)
    async def handle_not_found(request: Request, exc: NotFound) -> JSONResponse:
        return _error_response(request, status.HTTP_404_NOT_FOUND, "not_found.error", str(exc))

    @app.exception_handler(CapabilityFailure)
    async def handle_capability_failure(request: Request, exc: CapabilityFailure) -> JSONResponse:
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, "capability.error", str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    # Chat

    @app.post("/api/chat/initialize", response_model=ChatMessageModel)
    async def initialize_chat(
        payload: SessionRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ChatMessageModel:
        return ChatMessageModel.model_validate(await dep.chat.initialize(payload.session_id))

    @app.post("/api/chat/message", response_model=ChatMessageModel)
    async def send_chat_message(
        payload: ChatMessageRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ChatMessageModel:
        reply = await dep.chat.send_message(payload.session_id, payload.message)
        return ChatMessageModel.model_validate(reply)

    @app.post("/api/chat/stream")
    async def stream_chat_message(
        payload: ChatMessageRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> StreamingResponse:
        if not payload.message.strip():
            raise ValidationFailure("Message must not be empty")

        async def iter_sse() -> AsyncIterator[str]:
            yield ": heartbeat\n\n"
            async for event in dep.chat.stream_message(payload.session_id, payload.message):
                body = {"type": event.type, "session_id": event.session_id}
                if event.content is not None:
                    body["content"] = event.content
                if event.message_id is not None:
                    body["message_id"] = event.message_id
                if event.message is not None:
                    body["message"] = ChatMessageModel.model_validate(event.message).model_dump(mode="json")
                if event.error is not None:
                    body["error"] = event.error
                yield f"event: {event.type}\ndata: {json.dumps(body)}\n\n"

        return StreamingResponse(iter_sse(), media_type="text/event-stream")

    @app.get("/api/chat/history/{session_id}", response_model=ChatHistoryResponse)
    async def chat_history(session_id: str, dep: AppDependencies = Depends(get_dependencies)) -> ChatHistoryResponse:
        messages = [ChatMessageModel.model_validate(message) for message in dep.chat.history(session_id)]
        return ChatHistoryResponse(session_id=session_id, messages=messages)

    # Knowledge base

    @app.post(
        "/api/knowledge-base/upload",
        response_model=DocumentUploadResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def upload_document(
        file: UploadFile = File(...),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> DocumentUploadResponse:
        filename = file.filename or f"upload-{uuid4().hex}.txt"
        suffix = Path(filename).suffix.lower()
        if suffix not in settings.allowed_document_extensions_tuple:
            await file.close()
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {suffix or 'unknown'}",
            )
        payload = await _read_upload(file, settings.max_upload_size_mb)
        if not payload:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
        with tempfile.TemporaryDirectory() as tmpdir:
            destination = Path(tmpdir) / Path(filename).name
            destination.write_bytes(payload)
            content = extract_text(destination)
        result = await dep.knowledge_base.add_document(filename, content)
        return DocumentUploadResponse(
            document_id=result.document_id,
            filename=filename,
            chunk_count=result.chunk_count,
            token_count=result.token_count,
        )

    @app.post("/api/knowledge-base/query", response_model=KnowledgeBaseAnswerModel)
    async def query_knowledge_base(
        payload: KnowledgeBaseQueryRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> KnowledgeBaseAnswerModel:
        answer = await dep.knowledge_base.query(
            payload.question,
            session_id=payload.session_id,
            max_results=payload.max_results,
            min_similarity=payload.min_similarity,
        )
        return KnowledgeBaseAnswerModel.model_validate(answer)

    @app.get("/api/knowledge-base/documents", response_model=DocumentListResponse)
    async def list_documents(dep: AppDependencies = Depends(get_dependencies)) -> DocumentListResponse:
        stats = dep.knowledge_base.statistics()
        return DocumentListResponse(
            documents=[DocumentModel.model_validate(record) for record in dep.knowledge_base.list_documents()],
            document_count=stats.document_count,
            total_chunks=stats.total_chunks,
        )

    @app.get("/api/knowledge-base/documents/{document_id}", response_model=DocumentModel)
    async def get_document(document_id: str, dep: AppDependencies = Depends(get_dependencies)) -> DocumentModel:
        return DocumentModel.model_validate(dep.knowledge_base.get_document(document_id))

    @app.delete("/api/knowledge-base/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def remove_document(
        document_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        if not dep.knowledge_base.remove_document(document_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Document not found: {document_id}")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Images

    @app.post("/api/images/generate", response_model=GeneratedImageModel)
    async def generate_image(
        payload: ImageRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> GeneratedImageModel:
        image = await dep.images.generate_image(
            payload.prompt,
            payload.session_id,
            size=payload.size,
            quality=payload.quality,
            style=payload.style,
        )
        return GeneratedImageModel.model_validate(image)

    @app.get("/api/images/history/{session_id}", response_model=list[GeneratedImageModel])
    async def image_history(session_id: str, dep: AppDependencies = Depends(get_dependencies)) -> list[GeneratedImageModel]:
        return [GeneratedImageModel.model_validate(image) for image in dep.images.history(session_id)]

    # Audio

    @app.post("/api/audio/transcribe", response_model=TranscriptionModel)
    async def transcribe_audio(
        file: UploadFile = File(...),
        session_id: str = Form(...),
        language: str | None = Form(default=None),
        prompt: str | None = Form(default=None),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> TranscriptionModel:
        audio = await _read_upload(file, settings.max_audio_size_mb)
        transcription = await dep.audio.transcribe(
            audio,
            file.filename or "audio.webm",
            session_id,
            language=language,
            prompt=prompt,
        )
        return TranscriptionModel.model_validate(transcription)

    @app.post("/api/audio/tts", response_model=SpeechModel)
    async def text_to_speech(
        payload: SpeechRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> SpeechModel:
        speech = await dep.audio.text_to_speech(
            payload.text,
            payload.session_id,
            voice=payload.voice,
            speed=payload.speed,
        )
        return SpeechModel.from_result(speech)

    # Moderation

    @app.post("/api/moderation/check", response_model=ModerationCheckResponse)
    async def check_moderation(
        payload: ModerationRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> ModerationCheckResponse:
        result = await dep.safety.check(payload.content, payload.session_id)
        return ModerationCheckResponse(
            result=ModerationModel.model_validate(result),
            safe_response=dep.safety.safe_refusal_message(result) if result.flagged else None,
        )

    # Integrated pipeline

    @app.post("/api/integrated/chat", response_model=IntegratedChatResponse)
    async def integrated_chat(
        payload: IntegratedChatRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> IntegratedChatResponse:
        response = await dep.orchestrator.process(
            ChatRequest(
                message=payload.message,
                session_id=payload.session_id,
                enable_tts=payload.enable_tts,
                tts_voice=payload.tts_voice,
            )
        )
        return _integrated_model(response)

    @app.post("/api/integrated/audio", response_model=IntegratedChatResponse)
    async def integrated_audio(
        file: UploadFile = File(...),
        session_id: str = Form(...),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> IntegratedChatResponse:
        audio = await _read_upload(file, settings.max_audio_size_mb)
        response = await dep.orchestrator.process_audio(audio, file.filename or "audio.webm", session_id)
        return _integrated_model(response)

    # Sessions

    @app.get("/api/sessions/{session_id}/features", response_model=FeaturesModel)
    async def get_features(session_id: str, dep: AppDependencies = Depends(get_dependencies)) -> FeaturesModel:
        return FeaturesModel.model_validate(dep.orchestrator.get_features(session_id))

    @app.put("/api/sessions/{session_id}/features", response_model=FeaturesModel)
    async def configure_features(
        session_id: str,
        payload: FeaturesUpdate,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> FeaturesModel:
        features = dep.orchestrator.configure_features(session_id, payload.model_dump(exclude_none=True))
        return FeaturesModel.model_validate(features)

    @app.post("/api/sessions/{session_id}/features/{feature}", response_model=FeaturesModel)
    async def toggle_feature(
        session_id: str,
        feature: str,
        payload: FeatureToggleRequest,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> FeaturesModel:
        return FeaturesModel.model_validate(dep.orchestrator.toggle_feature(session_id, feature, payload.enabled))

    @app.get("/api/sessions/{session_id}/statistics", response_model=SessionStatisticsModel)
    async def session_statistics(
        session_id: str, dep: AppDependencies = Depends(get_dependencies)
    ) -> SessionStatisticsModel:
        return SessionStatisticsModel.model_validate(dep.orchestrator.get_statistics(session_id))

    @app.delete("/api/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_session(
        session_id: str,
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        dep.orchestrator.clear_session(session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/api/system/statistics", response_model=SystemStatisticsModel)
    async def system_statistics(dep: AppDependencies = Depends(get_dependencies)) -> SystemStatisticsModel:
        return SystemStatisticsModel.model_validate(dep.orchestrator.system_statistics())

    # Operations

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    return app
