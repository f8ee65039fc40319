"""Document and chunk storage owned by the knowledge base."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from openassist.models import ChunkMetadata, DocumentChunk, DocumentRecord


class DocumentStore(Protocol):
    """Protocol for chunk persistence backends."""

    def put(self, record: DocumentRecord, chunks: Sequence[DocumentChunk]) -> None:
        """Store a document and all of its chunks in one step."""

    def delete(self, document_id: str) -> bool:
        """Remove a document and its chunks; return whether it existed."""

    def get_record(self, document_id: str) -> DocumentRecord | None:
        """Return the stored document record, if any."""

    def records(self) -> Sequence[DocumentRecord]:
        """Return every stored document record."""

    def all_chunks(self) -> Sequence[DocumentChunk]:
        """Return every chunk, grouped by document in insertion order."""

    def dimension(self) -> int | None:
        """Return the vector length shared by stored chunks, if any are stored."""


class InMemoryDocumentStore:
    """Process-local store; contents are lost on restart."""

    def __init__(self) -> None:
        self._chunks: Dict[str, List[DocumentChunk]] = {}
        self._records: Dict[str, DocumentRecord] = {}

    def put(self, record: DocumentRecord, chunks: Sequence[DocumentChunk]) -> None:
        self._chunks[record.document_id] = list(chunks)
        self._records[record.document_id] = record

    def delete(self, document_id: str) -> bool:
        existed = document_id in self._chunks
        self._chunks.pop(document_id, None)
        self._records.pop(document_id, None)
        return existed

    def get_record(self, document_id: str) -> DocumentRecord | None:
        return self._records.get(document_id)

    def records(self) -> Sequence[DocumentRecord]:
        return list(self._records.values())

    def all_chunks(self) -> Sequence[DocumentChunk]:
        chunks: List[DocumentChunk] = []
        for document_chunks in self._chunks.values():
            chunks.extend(document_chunks)
        return chunks

    def dimension(self) -> int | None:
        for document_chunks in self._chunks.values():
            if document_chunks:
                return len(document_chunks[0].vector)
        return None


class ChromaDocumentStore:
    """Chroma-backed store keeping chunk vectors and metadata durable.

    Ranking still happens in-process; Chroma is only used as storage.
    """

    def __init__(
        self,
        collection_name: str = "openassist-documents",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def put(self, record: DocumentRecord, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        self._collection.add(
            ids=[chunk.chunk_id for chunk in chunks],
            documents=[chunk.text for chunk in chunks],
            embeddings=[list(chunk.vector) for chunk in chunks],
            metadatas=[self._serialize(record, chunk) for chunk in chunks],
        )

    def delete(self, document_id: str) -> bool:
        existed = self.get_record(document_id) is not None
        if existed:
            self._collection.delete(where={"document_id": document_id})
        return existed

    def get_record(self, document_id: str) -> DocumentRecord | None:
        batch = self._collection.get(where={"document_id": document_id}, include=["metadatas"], limit=1)
        metadatas = batch.get("metadatas") or []
        if not metadatas:
            return None
        return self._record_from(metadatas[0])

    def records(self) -> Sequence[DocumentRecord]:
        batch = self._collection.get(include=["metadatas"])
        seen: Dict[str, DocumentRecord] = {}
        for metadata in batch.get("metadatas") or []:
            document_id = str(metadata.get("document_id", ""))
            if document_id and document_id not in seen:
                seen[document_id] = self._record_from(metadata)
        return list(seen.values())

    def all_chunks(self) -> Sequence[DocumentChunk]:
        batch = self._collection.get(include=["documents", "metadatas", "embeddings"])
        ids = batch.get("ids") or []
        documents = batch.get("documents")
        metadatas = batch.get("metadatas")
        embeddings = batch.get("embeddings")
        if not ids or documents is None or metadatas is None or embeddings is None:
            return []
        chunks = [
            self._chunk_from(chunk_id, text, metadata, vector)
            for chunk_id, text, metadata, vector in zip(ids, documents, metadatas, embeddings)
        ]
        # Chroma does not guarantee insertion order on reads
        chunks.sort(key=lambda c: (str(c.metadata.created_at), c.metadata.document_id, c.metadata.chunk_index))
        return chunks

    def dimension(self) -> int | None:
        batch = self._collection.get(include=["embeddings"], limit=1)
        embeddings = batch.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return None
        return len(embeddings[0])

    def count(self) -> int:
        return int(self._collection.count())

    @staticmethod
    def _serialize(record: DocumentRecord, chunk: DocumentChunk) -> MutableMapping[str, object]:
        return {
            "document_id": record.document_id,
            "filename": record.filename,
            "upload_date": record.upload_date.isoformat(),
            "chunk_count": record.chunk_count,
            "source": chunk.metadata.source,
            "chunk_index": chunk.metadata.chunk_index,
            "created_at": chunk.metadata.created_at.isoformat(),
            "token_count": chunk.metadata.token_count,
        }

    @staticmethod
    def _record_from(metadata: Mapping[str, object]) -> DocumentRecord:
        return DocumentRecord(
            document_id=str(metadata.get("document_id", "")),
            filename=str(metadata.get("filename", "")),
            upload_date=datetime.fromisoformat(str(metadata["upload_date"])),
            chunk_count=int(metadata.get("chunk_count", 0)),
        )

    @staticmethod
    def _chunk_from(chunk_id: str, text: str, metadata: Mapping[str, object], vector: Sequence[float]) -> DocumentChunk:
        return DocumentChunk(
            chunk_id=chunk_id,
            text=text,
            vector=tuple(float(value) for value in vector),
            metadata=ChunkMetadata(
                document_id=str(metadata.get("document_id", "")),
                filename=str(metadata.get("filename", "")),
                source=str(metadata.get("source", "")),
                chunk_index=int(metadata.get("chunk_index", 0)),
                created_at=datetime.fromisoformat(str(metadata["created_at"])),
                token_count=int(metadata.get("token_count", 0)),
            ),
        )
