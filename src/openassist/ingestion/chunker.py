"""Sentence-aware text chunking for embedding."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")

# Average characters per word used to turn a character overlap budget into words.
_CHARS_PER_WORD = 5


@dataclass(frozen=True)
class ChunkerConfig:
    """Configuration for sentence chunking."""

    max_chunk_size: int = 800
    overlap_size: int = 80


class SentenceChunker:
    """Greedily packs whole sentences into chunks of bounded size.

    When a sentence would push the running buffer past ``max_chunk_size`` the
    buffer is emitted and the next chunk is seeded with the trailing
    ``overlap_size // 5`` words of the emitted one. A single sentence longer
    than the limit is never split and becomes an oversized chunk of its own.
    """

    def __init__(self, config: ChunkerConfig | None = None) -> None:
        self._config = config or ChunkerConfig()

    @property
    def config(self) -> ChunkerConfig:
        return self._config

    def split(self, text: str) -> List[str]:
        sentences = [s.strip() for s in _SENTENCE_BOUNDARY.split(text or "")]
        sentences = [s for s in sentences if s]
        overlap_words = self._config.overlap_size // _CHARS_PER_WORD

        chunks: List[str] = []
        current = ""
        for sentence in sentences:
            if current and len(current) + len(sentence) > self._config.max_chunk_size:
                chunks.append(current.strip())
                seed = current.split()[-overlap_words:] if overlap_words > 0 else []
                current = " ".join([*seed, sentence])
            else:
                current = f"{current} {sentence}" if current else sentence

        if current.strip():
            chunks.append(current.strip())
        return chunks


def split_text(text: str, max_chunk_size: int = 800, overlap_size: int = 80) -> List[str]:
    """Convenience helper for tests and ad-hoc chunking."""

    return SentenceChunker(ChunkerConfig(max_chunk_size=max_chunk_size, overlap_size=overlap_size)).split(text)
