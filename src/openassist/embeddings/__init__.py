"""Embedding gateway and document stores."""

from .service import EmbeddingConfig, EmbeddingGateway
from .store import ChromaDocumentStore, DocumentStore, InMemoryDocumentStore

__all__ = [
    "ChromaDocumentStore",
    "DocumentStore",
    "EmbeddingConfig",
    "EmbeddingGateway",
    "InMemoryDocumentStore",
]
