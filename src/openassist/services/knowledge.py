"""Knowledge base: document lifecycle plus retrieval-augmented answering."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence

from openassist.capabilities.base import ChatCompletionBackend
from openassist.embeddings.service import EmbeddingGateway
from openassist.embeddings.store import DocumentStore, InMemoryDocumentStore
from openassist.errors import (
    CapabilityFailure,
    DimensionMismatch,
    IngestFailure,
    KnowledgeBaseFailure,
    NotFound,
    ValidationFailure,
)
from openassist.ingestion.chunker import ChunkerConfig, SentenceChunker
from openassist.metrics.observability import PipelineMetrics, get_logger
from openassist.models import (
    ChunkMetadata,
    DocumentChunk,
    DocumentRecord,
    IngestResult,
    KnowledgeBaseAnswer,
    RetrievedChunk,
    Source,
    new_id,
    utcnow,
)
from openassist.retrieval.index import VectorIndex

KNOWLEDGE_BASE_SYSTEM_PROMPT = (
    "You are an AI assistant with access to a knowledge base. Use the provided context to answer "
    "questions accurately. If the context doesn't contain relevant information, say so clearly."
)

EMPTY_KNOWLEDGE_BASE_ANSWER = (
    "I don't have any documents in my knowledge base yet. Please upload some documents first, "
    "and then I'll be able to answer questions based on their content."
)

NO_RELEVANT_ANSWER = (
    "I couldn't find any relevant information in my knowledge base for your question. "
    "The documents I have don't seem to contain information related to your query."
)

EMPTY_COMPLETION_ANSWER = "I apologize, but I couldn't generate a response based on the available context."

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


@dataclass(frozen=True)
class KnowledgeBaseConfig:
    """Retrieval and generation policy for the knowledge base."""

    max_results: int = 3
    min_similarity: float = 0.7
    snippet_length: int = 200
    temperature: float = 0.3
    max_tokens: int = 1500
    source_tag: str = "document_upload"


@dataclass(frozen=True)
class KnowledgeBaseStatistics:
    document_count: int
    total_chunks: int
    average_chunks_per_document: int


class PromptBuilder:
    """Builds grounded prompts for the chat capability."""

    def build_context(self, citations: Sequence[RetrievedChunk]) -> str:
        return "\n\n".join(
            f"[Source {index}]: {citation.chunk.text}" for index, citation in enumerate(citations, start=1)
        )

    def build_messages(self, question: str, context: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": KNOWLEDGE_BASE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Context from knowledge base:\n{context}\n\nQuestion: {question}\n\n"
                    "Please answer the question based on the provided context. If the context doesn't "
                    "contain enough information to answer the question completely, say so clearly."
                ),
            },
        ]


def generate_document_id(filename: str) -> str:
    clean = _UNSAFE_FILENAME_CHARS.sub("_", filename)
    prefix, stamp, suffix = new_id("doc").split("_", 2)
    return f"{prefix}_{stamp}_{clean}_{suffix}"


class KnowledgeBase:
    """Owns document storage and answers questions grounded in stored chunks.

    Queries read the whole candidate set without a snapshot, so a document
    ingested concurrently may or may not be visible to an in-flight query.
    """

    def __init__(
        self,
        embeddings: EmbeddingGateway,
        chat: ChatCompletionBackend,
        *,
        store: DocumentStore | None = None,
        chunker: SentenceChunker | None = None,
        index: VectorIndex[DocumentChunk] | None = None,
        config: KnowledgeBaseConfig | None = None,
        prompt_builder: PromptBuilder | None = None,
        clock: Callable[[], object] = utcnow,
    ) -> None:
        self._embeddings = embeddings
        self._chat = chat
        self._store = store or InMemoryDocumentStore()
        self._chunker = chunker or SentenceChunker(ChunkerConfig())
        self._index: VectorIndex[DocumentChunk] = index or VectorIndex()
        self._config = config or KnowledgeBaseConfig()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._clock = clock
        self._logger = get_logger("knowledge_base")

    @property
    def config(self) -> KnowledgeBaseConfig:
        return self._config

    async def add_document(self, filename: str, content: str) -> IngestResult:
        start = time.perf_counter()
        texts = self._chunker.split(content)
        if not texts:
            raise IngestFailure(f"Document {filename!r} produced no chunks")

        try:
            vectors = await self._embeddings.embed_batch(texts)
        except CapabilityFailure as exc:
            self._logger.error("ingest.failed", filename=filename, detail=str(exc))
            raise IngestFailure(f"Document processing failed: {exc.upstream_message}") from exc

        dimension = self._store.dimension()
        for vector in vectors:
            expected = dimension if dimension is not None else len(vectors[0].vector)
            if len(vector.vector) != expected:
                mismatch = DimensionMismatch(expected, len(vector.vector))
                raise IngestFailure(f"Document processing failed: {mismatch}") from mismatch

        document_id = generate_document_id(filename)
        created_at = self._clock()
        chunks = [
            DocumentChunk(
                chunk_id=f"{document_id}-{index}",
                text=text,
                vector=tuple(vector.vector),
                metadata=ChunkMetadata(
                    document_id=document_id,
                    filename=filename,
                    source=self._config.source_tag,
                    chunk_index=index,
                    created_at=created_at,
                    token_count=vector.total_tokens,
                ),
            )
            for index, (text, vector) in enumerate(zip(texts, vectors))
        ]
        record = DocumentRecord(
            document_id=document_id,
            filename=filename,
            upload_date=created_at,
            chunk_count=len(chunks),
        )
        self._store.put(record, chunks)

        token_count = sum(chunk.metadata.token_count for chunk in chunks)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        self._logger.info(
            "ingest.complete",
            document_id=document_id,
            filename=filename,
            chunk_count=len(chunks),
            token_count=token_count,
            duration_seconds=duration,
        )
        return IngestResult(document_id=document_id, chunk_count=len(chunks), token_count=token_count)

    async def query(
        self,
        question: str,
        *,
        session_id: str | None = None,
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> KnowledgeBaseAnswer:
        if not question or not question.strip():
            raise ValidationFailure("Question must not be empty")
        limit = max_results if max_results is not None else self._config.max_results
        threshold = min_similarity if min_similarity is not None else self._config.min_similarity

        candidates = self._store.all_chunks()
        if not candidates:
            return KnowledgeBaseAnswer(answer=EMPTY_KNOWLEDGE_BASE_ANSWER, sources=[], confidence=0.0, has_context=False)

        retrieval_start = time.perf_counter()
        try:
            query_vector = await self._embeddings.embed(question)
        except CapabilityFailure as exc:
            raise KnowledgeBaseFailure(f"Knowledge base query failed: {exc.upstream_message}") from exc
        ranked = self._index.top_k(query_vector.vector, candidates, limit)
        relevant = [RetrievedChunk(chunk=chunk, score=score) for chunk, score in ranked if score >= threshold]
        retrieval_duration = time.perf_counter() - retrieval_start
        PipelineMetrics.observe_retrieval(retrieval_duration, len(relevant), (r.score for r in relevant))
        self._logger.info(
            "retrieval.complete",
            session_id=session_id,
            candidate_count=len(candidates),
            chunk_count=len(relevant),
            duration_seconds=retrieval_duration,
        )

        if not relevant:
            return KnowledgeBaseAnswer(answer=NO_RELEVANT_ANSWER, sources=[], confidence=0.0, has_context=False)

        context = self._prompt_builder.build_context(relevant)
        generation_start = time.perf_counter()
        try:
            completion = await self._chat.complete(
                self._prompt_builder.build_messages(question, context),
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
        except CapabilityFailure as exc:
            raise KnowledgeBaseFailure(f"Knowledge base query failed: {exc.upstream_message}") from exc
        generation_duration = time.perf_counter() - generation_start
        PipelineMetrics.observe_generation(generation_duration)
        self._logger.info(
            "generation.complete",
            session_id=session_id,
            duration_seconds=generation_duration,
            citation_count=len(relevant),
        )

        confidence = round(sum(r.score for r in relevant) / len(relevant), 2)
        return KnowledgeBaseAnswer(
            answer=completion.content or EMPTY_COMPLETION_ANSWER,
            sources=[self._source(r) for r in relevant],
            confidence=confidence,
            has_context=True,
            token_usage=completion.usage,
        )

    def remove_document(self, document_id: str) -> bool:
        removed = self._store.delete(document_id)
        if removed:
            self._logger.info("document.removed", document_id=document_id)
        return removed

    def get_document(self, document_id: str) -> DocumentRecord:
        record = self._store.get_record(document_id)
        if record is None:
            raise NotFound(f"Document not found: {document_id}")
        return record

    def list_documents(self) -> List[DocumentRecord]:
        return sorted(self._store.records(), key=lambda record: record.upload_date, reverse=True)

    def statistics(self) -> KnowledgeBaseStatistics:
        records = self._store.records()
        total_chunks = sum(record.chunk_count for record in records)
        return KnowledgeBaseStatistics(
            document_count=len(records),
            total_chunks=total_chunks,
            average_chunks_per_document=round(total_chunks / len(records)) if records else 0,
        )

    async def load_directory(self, directory: Path) -> List[IngestResult]:
        """Ingest every supported document found directly inside ``directory``."""

        from openassist.ingestion.loaders import extract_text, supported_extensions

        if not directory.is_dir():
            self._logger.warning("samples.missing", directory=str(directory))
            return []
        results: List[IngestResult] = []
        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in supported_extensions():
                continue
            results.append(await self.add_document(path.name, extract_text(path)))
        return results

    def _source(self, retrieved: RetrievedChunk) -> Source:
        text = retrieved.chunk.text
        limit = self._config.snippet_length
        snippet = text[:limit] + ("..." if len(text) > limit else "")
        return Source(filename=retrieved.chunk.metadata.filename, similarity=retrieved.score, snippet=snippet)
