"""Embedding gateway batching calls to the embedding capability."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Sequence

from openassist.capabilities.base import EmbeddingBackend, EmbeddingVector
from openassist.errors import EmbeddingFailure

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for batched embedding."""

    batch_size: int = 10
    inter_batch_delay_seconds: float = 0.1


class EmbeddingGateway:
    """Turns texts into vectors through an embedding backend.

    Batches run their calls concurrently and wait ``inter_batch_delay_seconds``
    before the next batch to stay under provider rate limits. Upstream errors
    surface as :class:`EmbeddingFailure`; nothing is retried.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        config: EmbeddingConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._config = config or EmbeddingConfig()
        if self._config.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._sleep = sleep

    async def embed(self, text: str) -> EmbeddingVector:
        try:
            result = await self._backend.embed(text)
        except Exception as exc:
            LOGGER.error("Embedding generation failed: %s", exc)
            raise EmbeddingFailure(str(exc)) from exc
        if not result.vector:
            raise EmbeddingFailure("Embedding capability returned an empty vector")
        return result

    async def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        vectors: List[EmbeddingVector] = []
        size = self._config.batch_size
        for start in range(0, len(texts), size):
            batch = texts[start : start + size]
            # every call in the batch settles before the first failure is raised
            results = await asyncio.gather(*(self.embed(text) for text in batch), return_exceptions=True)
            failures = [result for result in results if isinstance(result, BaseException)]
            if failures:
                first = failures[0]
                if len(failures) > 1:
                    LOGGER.error("%d of %d embeddings in batch failed", len(failures), len(batch))
                if not isinstance(first, EmbeddingFailure):
                    raise first
                raise EmbeddingFailure(first.upstream_message, operation="embed_batch") from first
            vectors.extend(results)
            if start + size < len(texts) and self._config.inter_batch_delay_seconds > 0:
                await self._sleep(self._config.inter_batch_delay_seconds)
        return vectors
