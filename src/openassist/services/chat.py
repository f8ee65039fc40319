"""Conversational chat with per-session history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, List

from openassist.capabilities.base import ChatCompletionBackend
from openassist.errors import CapabilityFailure, ValidationFailure
from openassist.metrics.observability import get_logger
from openassist.models import ChatMessage, StreamEvent, new_id
from openassist.sessions import InMemorySessionStore, SessionStore

GENERAL_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that can answer questions, generate images, process audio, "
    "and search through uploaded documents. Always be concise but thorough in your responses."
)

WELCOME_MESSAGE = (
    "Welcome to your AI assistant! I can help you with general conversations, knowledge base queries, "
    "image generation, audio processing, and content moderation. How can I assist you today?"
)

EMPTY_REPLY = "I apologize, but I couldn't generate a response. Please try again."


@dataclass(frozen=True)
class ChatConfig:
    """Configuration for conversational completion."""

    system_prompt: str = GENERAL_SYSTEM_PROMPT
    temperature: float = 0.7
    max_tokens: int = 4096


class ChatService:
    """Sends the running conversation to the chat capability and records the exchange."""

    def __init__(
        self,
        backend: ChatCompletionBackend,
        config: ChatConfig | None = None,
        *,
        history_store: SessionStore[list] | None = None,
    ) -> None:
        self._backend = backend
        self._config = config or ChatConfig()
        self._history = history_store or InMemorySessionStore()
        self._logger = get_logger("chat")

    async def initialize(self, session_id: str) -> ChatMessage:
        welcome = ChatMessage(
            message_id=new_id("msg"),
            role="assistant",
            content=WELCOME_MESSAGE,
            session_id=session_id,
        )
        self._history.set(session_id, [welcome])
        return welcome

    async def send_message(self, session_id: str, message: str) -> ChatMessage:
        if not message or not message.strip():
            raise ValidationFailure("Message must not be empty")
        history = self.history(session_id)
        user_message = ChatMessage(message_id=new_id("msg"), role="user", content=message, session_id=session_id)
        completion = await self._backend.complete(
            self._format(history + [user_message]),
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        reply = ChatMessage(
            message_id=new_id("msg"),
            role="assistant",
            content=completion.content or EMPTY_REPLY,
            session_id=session_id,
            token_usage=completion.usage,
        )
        self._history.set(session_id, history + [user_message, reply])
        self._logger.info(
            "chat.complete",
            session_id=session_id,
            history_length=len(history) + 2,
            total_tokens=completion.usage.total_tokens,
        )
        return reply

    async def stream_message(self, session_id: str, message: str) -> AsyncIterator[StreamEvent]:
        """Yield ``chunk`` events, then one ``complete`` event or an ``error`` event."""

        if not message or not message.strip():
            raise ValidationFailure("Message must not be empty")
        history = self.history(session_id)
        user_message = ChatMessage(message_id=new_id("msg"), role="user", content=message, session_id=session_id)
        message_id = new_id("msg")
        parts: List[str] = []
        try:
            async for fragment in self._backend.stream(
                self._format(history + [user_message]),
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            ):
                parts.append(fragment)
                yield StreamEvent(type="chunk", session_id=session_id, content=fragment, message_id=message_id)
        except CapabilityFailure as exc:
            self._logger.error("chat.stream_failed", session_id=session_id, detail=str(exc))
            yield StreamEvent(type="error", session_id=session_id, error=f"Streaming failed: {exc}")
            return
        reply = ChatMessage(message_id=message_id, role="assistant", content="".join(parts), session_id=session_id)
        self._history.set(session_id, history + [user_message, reply])
        yield StreamEvent(type="complete", session_id=session_id, message_id=message_id, message=reply)

    def history(self, session_id: str) -> List[ChatMessage]:
        return list(self._history.get(session_id) or [])

    def clear_history(self, session_id: str) -> None:
        self._history.delete(session_id)

    def _format(self, history: List[ChatMessage]) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self._config.system_prompt},
            *({"role": message.role, "content": message.content} for message in history),
        ]
