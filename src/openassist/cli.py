"""Interactive command-line shell for OpenAssist."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Sequence
from uuid import uuid4

from openassist.bootstrap import AppDependencies, build_dependencies
from openassist.config import FEATURE_NAMES, get_settings
from openassist.errors import OpenAssistError
from openassist.ingestion import extract_text
from openassist.metrics.observability import configure_logging
from openassist.models import IntegratedResponse
from openassist.services import ChatRequest

FEATURE_ALIASES: Dict[str, str] = {
    "chat": "chat",
    "kb": "knowledge_base",
    "knowledge_base": "knowledge_base",
    "image": "image_generation",
    "image_generation": "image_generation",
    "audio": "audio_input",
    "audio_input": "audio_input",
    "tts": "text_to_speech",
    "text_to_speech": "text_to_speech",
    "moderation": "moderation",
}

HELP_TEXT = """Available commands:
/help, /h          - Show this help message
/features, /f      - Show current feature status
/enable <feature>  - Enable a feature (chat, kb, image, audio, tts, moderation)
/disable <feature> - Disable a feature
/upload <file>     - Upload document to knowledge base
/documents         - List uploaded documents
/image <prompt>    - Generate image from prompt
/transcribe <file> - Transcribe audio file
/tts <text>        - Convert text to speech
/moderate <text>   - Check content moderation
/history           - Show chat history
/stats             - Show session statistics
/clear             - Clear session data
/session           - Show current session ID
/exit, /quit, /q   - Exit the shell

Or just type a message to chat."""


class AssistantShell:
    """Maps each slash command to one core operation; other input is orchestrated."""

    def __init__(self, deps: AppDependencies, session_id: str, *, output_dir: Path) -> None:
        self.deps = deps
        self.session_id = session_id
        self.output_dir = output_dir
        self.running = True
        self._commands: Dict[str, Callable[[str], Awaitable[str]]] = {
            "/help": self._help,
            "/h": self._help,
            "/features": self._features,
            "/f": self._features,
            "/enable": lambda arg: self._toggle(arg, True),
            "/disable": lambda arg: self._toggle(arg, False),
            "/upload": self._upload,
            "/documents": self._documents,
            "/image": self._image,
            "/transcribe": self._transcribe,
            "/tts": self._tts,
            "/moderate": self._moderate,
            "/history": self._history,
            "/stats": self._stats,
            "/clear": self._clear,
            "/session": self._session,
            "/exit": self._exit,
            "/quit": self._exit,
            "/q": self._exit,
        }

    async def start(self) -> str:
        welcome = await self.deps.chat.initialize(self.session_id)
        return f"Session ID: {self.session_id}\n{welcome.content}"

    async def handle(self, line: str) -> str:
        line = line.strip()
        if not line:
            return ""
        if not line.startswith("/"):
            response = await self.deps.orchestrator.process(ChatRequest(message=line, session_id=self.session_id))
            return format_response(response)
        command, _, argument = line.partition(" ")
        handler = self._commands.get(command.lower())
        if handler is None:
            return f"Unknown command: {command}. Type /help for available commands."
        try:
            return await handler(argument.strip())
        except (OpenAssistError, OSError) as exc:
            return f"Error: {exc}"

    async def _help(self, _: str) -> str:
        return HELP_TEXT

    async def _features(self, _: str) -> str:
        features = self.deps.orchestrator.get_features(self.session_id).as_dict()
        lines = ["Feature status:"]
        lines.extend(f"  {name:<17} {'enabled' if features[name] else 'disabled'}" for name in FEATURE_NAMES)
        return "\n".join(lines)

    async def _toggle(self, argument: str, enabled: bool) -> str:
        feature = FEATURE_ALIASES.get(argument.lower())
        if feature is None:
            return "Unknown feature. Available: chat, kb, image, audio, tts, moderation"
        self.deps.orchestrator.toggle_feature(self.session_id, feature, enabled)
        return f"{feature} {'enabled' if enabled else 'disabled'}"

    async def _upload(self, argument: str) -> str:
        if not argument:
            return "Please provide a file path. Usage: /upload <file-path>"
        path = Path(argument).expanduser()
        if not path.is_file():
            return f"File not found: {argument}"
        result = await self.deps.knowledge_base.add_document(path.name, extract_text(path))
        return (
            "Document uploaded successfully\n"
            f"  Document ID: {result.document_id}\n"
            f"  Chunks: {result.chunk_count}\n"
            f"  Tokens: {result.token_count}"
        )

    async def _documents(self, _: str) -> str:
        documents = self.deps.knowledge_base.list_documents()
        if not documents:
            return "No documents in the knowledge base."
        lines = ["Documents:"]
        lines.extend(
            f"  {doc.filename} ({doc.chunk_count} chunks, id {doc.document_id})" for doc in documents
        )
        return "\n".join(lines)

    async def _image(self, argument: str) -> str:
        if not argument:
            return "Please provide an image prompt. Usage: /image <prompt>"
        image = await self.deps.images.generate_image(argument, self.session_id)
        return (
            "Image generated successfully\n"
            f"  URL: {image.url}\n"
            f"  Original prompt: {image.prompt}\n"
            f"  Revised prompt: {image.revised_prompt}"
        )

    async def _transcribe(self, argument: str) -> str:
        if not argument:
            return "Please provide an audio file path. Usage: /transcribe <file-path>"
        path = Path(argument).expanduser()
        if not path.is_file():
            return f"File not found: {argument}"
        transcription = await self.deps.audio.transcribe(path.read_bytes(), path.name, self.session_id)
        return (
            "Audio transcribed successfully\n"
            f'  Text: "{transcription.text}"\n'
            f"  Duration: {transcription.duration_seconds:.1f}s\n"
            f"  Confidence: {round(transcription.confidence * 100)}%"
        )

    async def _tts(self, argument: str) -> str:
        if not argument:
            return "Please provide text to convert. Usage: /tts <text>"
        speech = await self.deps.audio.text_to_speech(argument, self.session_id)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        destination = self.output_dir / f"{speech.speech_id}.{speech.response_format}"
        destination.write_bytes(speech.audio)
        return (
            "Speech generated successfully\n"
            f"  File: {destination}\n"
            f"  Duration: ~{speech.estimated_duration_seconds}s\n"
            f"  Voice: {speech.voice}"
        )

    async def _moderate(self, argument: str) -> str:
        if not argument:
            return "Please provide content to moderate. Usage: /moderate <text>"
        result = await self.deps.safety.check(argument, self.session_id)
        lines = [
            "Moderation result:",
            f"  Flagged: {'yes' if result.flagged else 'no'}",
            f"  Risk level: {result.risk_level}",
            f"  Action: {result.action}",
        ]
        if result.flagged_categories:
            lines.append(f"  Flagged categories: {', '.join(result.flagged_categories)}")
        return "\n".join(lines)

    async def _history(self, _: str) -> str:
        messages = self.deps.chat.history(self.session_id)
        if not messages:
            return "No chat history found for this session."
        lines = ["Chat history:"]
        lines.extend(f"  [{message.role}] {message.content}" for message in messages)
        return "\n".join(lines)

    async def _stats(self, _: str) -> str:
        stats = self.deps.orchestrator.get_statistics(self.session_id)
        return "\n".join(
            [
                "Session statistics:",
                f"  Messages: {stats.messages_count}",
                f"  Images generated: {stats.images_generated}",
                f"  Audio transcriptions: {stats.audio_transcriptions}",
                f"  Knowledge base queries: {stats.knowledge_base_queries}",
                f"  Moderation checks: {stats.moderation_checks}",
                f"  Moderation blocked: {stats.moderation_blocked}",
                f"  Tokens used: {stats.tokens_used}",
                f"  Session duration: {round(stats.session_duration)}s",
            ]
        )

    async def _clear(self, _: str) -> str:
        self.deps.orchestrator.clear_session(self.session_id)
        return "Session data cleared."

    async def _session(self, _: str) -> str:
        return f"Current session ID: {self.session_id}"

    async def _exit(self, _: str) -> str:
        self.running = False
        return "Goodbye."


def format_response(response: IntegratedResponse) -> str:
    lines: List[str] = []
    if response.chat is not None:
        lines.append(response.chat.content)
    if response.image is not None:
        lines.append(f"Image generated: {response.image.url}")
        lines.append(f"  Prompt: {response.image.prompt}")
    if response.knowledge_base is not None:
        lines.append(f"Knowledge base response (confidence: {response.knowledge_base.confidence})")
        for index, source in enumerate(response.knowledge_base.sources, start=1):
            lines.append(f"  {index}. {source.filename} ({round(source.similarity * 100)}% match)")
    if response.moderation is not None and response.moderation.flagged:
        lines.append(f"Content flagged by moderation: {response.moderation.action}")
    if response.audio is not None:
        lines.append(f"Audio generated: {response.audio.size_bytes} bytes")
    return "\n".join(lines)


async def run_shell(shell: AssistantShell) -> None:
    print(await shell.start())
    print("Type /help for available commands.")
    while shell.running:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        output = await shell.handle(line)
        if output:
            print(output)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with the OpenAssist multi-capability assistant.")
    parser.add_argument("--session-id", type=str, default=None, help="Reuse a session identifier")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use deterministic local capabilities instead of the hosted APIs",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("openassist-output"),
        help="Directory where synthesized speech is written",
    )
    parser.add_argument("--samples", type=Path, default=None, help="Directory of documents to preload")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    override: dict[str, object] = {}
    if args.offline:
        override["use_offline_capabilities"] = True
    settings = get_settings(override)
    configure_logging()
    deps = build_dependencies(settings)
    session_id = args.session_id or f"cli_{uuid4().hex[:12]}"
    shell = AssistantShell(deps, session_id, output_dir=args.output_dir)

    async def _run() -> None:
        samples = args.samples or settings.sample_documents_dir
        if samples is not None:
            results = await deps.knowledge_base.load_directory(samples)
            print(f"Loaded {len(results)} sample documents.")
        await run_shell(shell)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print("\nGoodbye.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
