from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from openassist.embeddings import EmbeddingConfig, EmbeddingGateway, InMemoryDocumentStore
from openassist.errors import DimensionMismatch, IngestFailure, KnowledgeBaseFailure, NotFound, ValidationFailure
from openassist.services.knowledge import (
    EMPTY_KNOWLEDGE_BASE_ANSWER,
    NO_RELEVANT_ANSWER,
    KnowledgeBase,
    generate_document_id,
)

from conftest import KeywordEmbeddingBackend, LookupEmbeddingBackend, ScriptedChatBackend, unit_pair


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 3, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def _knowledge_base(embedding_backend=None, chat=None, **kwargs) -> KnowledgeBase:
    gateway = EmbeddingGateway(
        embedding_backend or KeywordEmbeddingBackend(),
        EmbeddingConfig(inter_batch_delay_seconds=0.0),
    )
    return KnowledgeBase(gateway, chat or ScriptedChatBackend("grounded answer"), **kwargs)


@pytest.mark.asyncio
async def test_query_answers_from_relevant_chunk():
    def vectors(text: str):
        return unit_pair(0.85) if text.startswith("What") else (1.0, 0.0)

    chat = ScriptedChatBackend("Cats sleep a lot.")
    kb = _knowledge_base(LookupEmbeddingBackend(vectors), chat)
    await kb.add_document("notes.txt", "Cats sleep sixteen hours a day.")

    answer = await kb.query("What do cats do all day?")

    assert answer.has_context is True
    assert answer.answer == "Cats sleep a lot."
    assert [source.filename for source in answer.sources] == ["notes.txt"]
    assert answer.sources[0].similarity == pytest.approx(0.85)
    assert answer.confidence == 0.85
    assert answer.token_usage.total_tokens == 15

    messages = chat.calls[-1]
    assert messages[0]["role"] == "system"
    assert "[Source 1]: Cats sleep sixteen hours a day" in messages[1]["content"]
    assert "Question: What do cats do all day?" in messages[1]["content"]


@pytest.mark.asyncio
async def test_empty_knowledge_base_skips_embedding():
    embedder = KeywordEmbeddingBackend()
    chat = ScriptedChatBackend()
    kb = _knowledge_base(embedder, chat)

    answer = await kb.query("What is a vector?")

    assert answer.answer == EMPTY_KNOWLEDGE_BASE_ANSWER
    assert answer.has_context is False
    assert answer.sources == []
    assert embedder.calls == []
    assert chat.calls == []


@pytest.mark.asyncio
async def test_no_chunk_above_threshold_returns_fixed_answer():
    chat = ScriptedChatBackend()
    kb = _knowledge_base(chat=chat)
    await kb.add_document("pets.txt", "The dog chased the cat.")

    answer = await kb.query("Is python good for weather models?")

    assert answer.answer == NO_RELEVANT_ANSWER
    assert answer.confidence == 0.0
    assert chat.calls == []


@pytest.mark.asyncio
async def test_threshold_is_inclusive():
    kb = _knowledge_base(LookupEmbeddingBackend(lambda text: (1.0, 0.0)))
    await kb.add_document("a.txt", "Exactly aligned.")
    answer = await kb.query("anything", min_similarity=1.0)
    assert answer.has_context is True


@pytest.mark.asyncio
async def test_empty_question_is_rejected():
    with pytest.raises(ValidationFailure):
        await _knowledge_base().query("   ")


@pytest.mark.asyncio
async def test_document_without_sentences_fails_ingest():
    kb = _knowledge_base()
    with pytest.raises(IngestFailure):
        await kb.add_document("blank.txt", " ... ")
    assert kb.list_documents() == []


@pytest.mark.asyncio
async def test_embedding_failure_leaves_no_partial_document():
    store = InMemoryDocumentStore()
    kb = _knowledge_base(KeywordEmbeddingBackend(fail_after=1), store=store)
    text = " ".join(f"Sentence {i} about a cat." for i in range(200))

    with pytest.raises(IngestFailure) as excinfo:
        await kb.add_document("long.txt", text)

    assert "quota exceeded" in str(excinfo.value)
    assert store.records() == []
    assert store.all_chunks() == []


@pytest.mark.asyncio
async def test_dimension_change_fails_ingest():
    dims = {"value": 2}
    kb = _knowledge_base(LookupEmbeddingBackend(lambda text: (1.0,) * dims["value"]))
    await kb.add_document("first.txt", "First document.")

    dims["value"] = 3
    with pytest.raises(IngestFailure) as excinfo:
        await kb.add_document("second.txt", "Second document.")

    assert isinstance(excinfo.value.__cause__, DimensionMismatch)
    assert [record.filename for record in kb.list_documents()] == ["first.txt"]


@pytest.mark.asyncio
async def test_chunks_share_document_metadata():
    store = InMemoryDocumentStore()
    kb = _knowledge_base(store=store)
    text = " ".join(f"Sentence number {i:02d} talks about vector embeddings." for i in range(40))

    result = await kb.add_document("vectors.md", text)

    chunks = store.all_chunks()
    assert result.chunk_count == len(chunks) > 1
    assert [chunk.chunk_id for chunk in chunks] == [f"{result.document_id}-{i}" for i in range(len(chunks))]
    assert {chunk.metadata.created_at for chunk in chunks} == {chunks[0].metadata.created_at}
    assert {chunk.metadata.source for chunk in chunks} == {"document_upload"}
    assert kb.get_document(result.document_id).chunk_count == result.chunk_count


@pytest.mark.asyncio
async def test_remove_and_get_document():
    kb = _knowledge_base()
    result = await kb.add_document("cat.txt", "A cat.")

    assert kb.remove_document(result.document_id) is True
    assert kb.remove_document(result.document_id) is False
    with pytest.raises(NotFound):
        kb.get_document(result.document_id)


@pytest.mark.asyncio
async def test_removed_document_is_no_longer_retrieved():
    kb = _knowledge_base()
    result = await kb.add_document("cat.txt", "The cat sat.")
    kb.remove_document(result.document_id)
    assert (await kb.query("cat")).answer == EMPTY_KNOWLEDGE_BASE_ANSWER


@pytest.mark.asyncio
async def test_documents_listed_newest_first():
    kb = _knowledge_base(clock=SteppingClock())
    for name in ("one.txt", "two.txt", "three.txt"):
        await kb.add_document(name, f"Document {name}.")

    assert [record.filename for record in kb.list_documents()] == ["three.txt", "two.txt", "one.txt"]


@pytest.mark.asyncio
async def test_chat_failure_becomes_knowledge_base_failure():
    kb = _knowledge_base(chat=ScriptedChatBackend(fail=True))
    await kb.add_document("cat.txt", "The cat sat.")
    with pytest.raises(KnowledgeBaseFailure):
        await kb.query("cat")


@pytest.mark.asyncio
async def test_repeated_query_returns_same_sources():
    kb = _knowledge_base()
    await kb.add_document("cat.txt", "The cat sat. The dog ran.")
    first = await kb.query("cat")
    second = await kb.query("cat")
    assert first.sources == second.sources
    assert first.confidence == second.confidence


@pytest.mark.asyncio
async def test_long_snippets_are_truncated():
    kb = _knowledge_base(LookupEmbeddingBackend(lambda text: (1.0, 0.0)))
    await kb.add_document("long.txt", "word " * 100)
    snippet = (await kb.query("anything")).sources[0].snippet
    assert len(snippet) == 203
    assert snippet.endswith("...")


@pytest.mark.asyncio
async def test_statistics_and_directory_loading(tmp_path: Path):
    (tmp_path / "cats.txt").write_text("Cats purr. Cats nap.", encoding="utf-8")
    (tmp_path / "dogs.md").write_text("# Dogs\n\nDogs bark.", encoding="utf-8")
    (tmp_path / "photo.png").write_bytes(b"\x89PNG")
    kb = _knowledge_base()

    results = await kb.load_directory(tmp_path)

    assert len(results) == 2
    stats = kb.statistics()
    assert stats.document_count == 2
    assert stats.total_chunks == sum(result.chunk_count for result in results)
    assert await kb.load_directory(tmp_path / "missing") == []


def test_document_ids_embed_a_safe_filename():
    document_id = generate_document_id("my report (v2).pdf")
    assert document_id.startswith("doc_")
    assert "_my_report__v2_.pdf_" in document_id
    assert generate_document_id("a.txt") != generate_document_id("a.txt")
