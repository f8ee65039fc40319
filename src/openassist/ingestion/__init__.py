"""Document chunking and text extraction."""

from .chunker import ChunkerConfig, SentenceChunker, split_text
from .loaders import ExtractionError, UnsupportedFileTypeError, extract_text, supported_extensions

__all__ = [
    "ChunkerConfig",
    "ExtractionError",
    "SentenceChunker",
    "UnsupportedFileTypeError",
    "extract_text",
    "split_text",
    "supported_extensions",
]
