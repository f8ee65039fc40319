"""Pydantic models for the OpenAssist API."""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from openassist.models import SpeechResult


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TokenUsageModel(_FromDomain):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatMessageModel(_FromDomain):
    message_id: str
    role: Literal["system", "user", "assistant"]
    content: str
    session_id: str
    timestamp: datetime
    token_usage: Optional[TokenUsageModel] = None


class SessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


class ChatMessageRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, description="User message to send")


class ChatHistoryResponse(BaseModel):
    session_id: str
    messages: List[ChatMessageModel]


class SourceModel(_FromDomain):
    filename: str
    similarity: float
    snippet: str


class KnowledgeBaseQueryRequest(BaseModel):
    question: str = Field(..., min_length=1, description="Question to answer from uploaded documents")
    session_id: Optional[str] = None
    max_results: Optional[int] = Field(default=None, ge=1, le=20)
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class KnowledgeBaseAnswerModel(_FromDomain):
    answer: str
    sources: List[SourceModel]
    confidence: float
    has_context: bool


class DocumentModel(_FromDomain):
    document_id: str
    filename: str
    upload_date: datetime
    chunk_count: int = Field(..., ge=0)


class DocumentUploadResponse(BaseModel):
    document_id: str
    filename: str
    chunk_count: int
    token_count: int


class DocumentListResponse(BaseModel):
    documents: List[DocumentModel]
    document_count: int
    total_chunks: int


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    session_id: str = Field(..., min_length=1)
    size: Optional[Literal["1024x1024", "1792x1024", "1024x1792"]] = None
    quality: Optional[Literal["standard", "hd"]] = None
    style: Optional[Literal["vivid", "natural"]] = None


class GeneratedImageModel(_FromDomain):
    image_id: str
    url: str
    prompt: str
    revised_prompt: str
    size: str
    quality: str
    style: str
    session_id: str
    timestamp: datetime


class TranscriptionModel(_FromDomain):
    transcription_id: str
    text: str
    language: str
    duration_seconds: float
    filename: str
    file_size: int
    session_id: str
    confidence: float
    timestamp: datetime


class SpeechRequest(BaseModel):
    text: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    voice: Optional[str] = None
    speed: float = Field(default=1.0, ge=0.25, le=4.0)


class SpeechModel(BaseModel):
    speech_id: str
    text: str
    voice: str
    speed: float
    response_format: str
    size_bytes: int
    estimated_duration_seconds: int
    audio_base64: str

    @classmethod
    def from_result(cls, result: SpeechResult) -> "SpeechModel":
        return cls(
            speech_id=result.speech_id,
            text=result.text,
            voice=result.voice,
            speed=result.speed,
            response_format=result.response_format,
            size_bytes=result.size_bytes,
            estimated_duration_seconds=result.estimated_duration_seconds,
            audio_base64=base64.b64encode(result.audio).decode("ascii"),
        )


class ModerationRequest(BaseModel):
    content: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)


class ModerationModel(_FromDomain):
    moderation_id: str
    content: str
    session_id: str
    flagged: bool
    categories: Dict[str, bool]
    category_scores: Dict[str, float]
    risk_level: Literal["low", "medium", "high"]
    action: Literal["allow", "warn", "block"]
    timestamp: datetime


class ModerationCheckResponse(BaseModel):
    result: ModerationModel
    safe_response: Optional[str] = Field(
        default=None,
        description="Refusal message to show instead of a reply when the content is flagged",
    )


class FeaturesModel(_FromDomain):
    chat: bool
    knowledge_base: bool
    image_generation: bool
    audio_input: bool
    text_to_speech: bool
    moderation: bool


class FeaturesUpdate(BaseModel):
    """Partial feature update; omitted keys keep their current value."""

    chat: Optional[bool] = None
    knowledge_base: Optional[bool] = None
    image_generation: Optional[bool] = None
    audio_input: Optional[bool] = None
    text_to_speech: Optional[bool] = None
    moderation: Optional[bool] = None


class FeatureToggleRequest(BaseModel):
    enabled: bool


class IntegratedChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    enable_tts: bool = False
    tts_voice: str = "alloy"


class IntegratedChatResponse(BaseModel):
    session_id: str
    timestamp: datetime
    features: FeaturesModel
    request_type: Optional[str] = None
    chat: Optional[ChatMessageModel] = None
    knowledge_base: Optional[KnowledgeBaseAnswerModel] = None
    image: Optional[GeneratedImageModel] = None
    audio: Optional[SpeechModel] = None
    moderation: Optional[ModerationModel] = None
    transcription: Optional[TranscriptionModel] = None
    error: Optional[str] = None


class SessionStatisticsModel(_FromDomain):
    session_id: str
    messages_count: int
    images_generated: int
    audio_transcriptions: int
    knowledge_base_queries: int
    moderation_checks: int
    moderation_blocked: int
    tokens_used: int
    session_duration: float
    start_time: datetime
    last_activity: datetime


class SystemStatisticsModel(_FromDomain):
    total_sessions: int
    active_features: Dict[str, int]
    total_requests: int
    average_requests_per_session: int
