"""Similarity search over embedded chunks."""

from .index import VectorIndex, cosine_similarity

__all__ = ["VectorIndex", "cosine_similarity"]
