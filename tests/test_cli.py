from __future__ import annotations

from pathlib import Path

import pytest

from openassist.cli import HELP_TEXT, AssistantShell, parse_args


@pytest.fixture
def shell(deps, tmp_path: Path) -> AssistantShell:
    return AssistantShell(deps, "cli-session", output_dir=tmp_path / "out")


@pytest.mark.asyncio
async def test_start_prints_session_and_welcome(shell: AssistantShell):
    banner = await shell.start()
    assert banner.startswith("Session ID: cli-session")
    assert "Welcome to your AI assistant!" in banner


@pytest.mark.asyncio
async def test_plain_text_goes_through_orchestrator(shell: AssistantShell):
    assert await shell.handle("Hello") == "scripted reply"
    assert await shell.handle("   ") == ""


@pytest.mark.asyncio
async def test_help_and_unknown_command(shell: AssistantShell):
    assert await shell.handle("/help") == HELP_TEXT
    assert await shell.handle("/dance") == "Unknown command: /dance. Type /help for available commands."


@pytest.mark.asyncio
async def test_enable_and_disable_features(shell: AssistantShell):
    assert await shell.handle("/enable image") == "image_generation enabled"
    assert shell.deps.orchestrator.get_features("cli-session").image_generation is True
    assert await shell.handle("/disable kb") == "knowledge_base disabled"
    assert (await shell.handle("/enable teleport")).startswith("Unknown feature.")
    status = await shell.handle("/features")
    assert "image_generation  enabled" in status
    assert "knowledge_base    disabled" in status


@pytest.mark.asyncio
async def test_upload_and_list_documents(shell: AssistantShell, tmp_path: Path):
    assert await shell.handle("/documents") == "No documents in the knowledge base."
    document = tmp_path / "notes.txt"
    document.write_text("Dogs bark. Cats meow.", encoding="utf-8")

    uploaded = await shell.handle(f"/upload {document}")

    assert uploaded.startswith("Document uploaded successfully")
    assert "notes.txt" in await shell.handle("/documents")
    assert (await shell.handle(f"/upload {tmp_path / 'missing.txt'}")).startswith("File not found")


@pytest.mark.asyncio
async def test_image_and_moderation_commands(shell: AssistantShell):
    assert (await shell.handle("/image a lighthouse at dusk")).startswith("Image generated successfully")
    moderation = await shell.handle("/moderate I will kill it")
    assert moderation.startswith("Moderation result:")
    assert "Flagged categories: violence" in moderation


@pytest.mark.asyncio
async def test_tts_writes_audio_file(shell: AssistantShell):
    output = await shell.handle("/tts Hello world")
    assert output.startswith("Speech generated successfully")
    files = list(shell.output_dir.iterdir())
    assert len(files) == 1
    assert files[0].suffix == ".mp3"


@pytest.mark.asyncio
async def test_transcribe_command_reports_errors(shell: AssistantShell, tmp_path: Path):
    clip = tmp_path / "memo.wav"
    clip.write_bytes(b"Buy more coffee.")
    assert 'Text: "Buy more coffee."' in await shell.handle(f"/transcribe {clip}")

    notes = tmp_path / "notes.txt"
    notes.write_text("not audio", encoding="utf-8")
    assert (await shell.handle(f"/transcribe {notes}")).startswith("Error: Invalid audio file")


@pytest.mark.asyncio
async def test_history_stats_clear_session_and_exit(shell: AssistantShell):
    assert await shell.handle("/history") == "No chat history found for this session."
    await shell.handle("Hello")
    assert "[assistant] scripted reply" in await shell.handle("/history")
    assert "Messages: 1" in await shell.handle("/stats")
    assert await shell.handle("/clear") == "Session data cleared."
    assert await shell.handle("/history") == "No chat history found for this session."
    assert await shell.handle("/session") == "Current session ID: cli-session"

    assert await shell.handle("/quit") == "Goodbye."
    assert shell.running is False


def test_parse_args_defaults_and_flags():
    defaults = parse_args([])
    assert defaults.session_id is None
    assert defaults.offline is False
    assert defaults.output_dir == Path("openassist-output")

    args = parse_args(["--session-id", "abc", "--offline", "--samples", "docs"])
    assert args.session_id == "abc"
    assert args.offline is True
    assert args.samples == Path("docs")
