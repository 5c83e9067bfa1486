"""
Embedding Gateway

Converts text to fixed-dimension vectors and guarantees that every vector
leaving this module is safe to store in pgvector and to compare:

- non-finite components are coerced to 0.0 (with a warning)
- components are rounded to 6 decimal places
- a length different from the configured dimension is logged, never
  truncated or padded

The wrapped embedding capability is injected at construction time and is
treated as an immutable, shared handle.
"""

from __future__ import annotations

import logging
import math
import time
from typing import List, Protocol, Sequence

from ..core.errors import EmbeddingFailure

logger = logging.getLogger("rag.embeddings")

PRECISION = 6


class EmbeddingCapability(Protocol):
    async def embed(self, text: str) -> List[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...


class EmbeddingGateway:
    """Sanitizing front for an embedding provider."""

    def __init__(self, capability: EmbeddingCapability, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._capability = capability
        self._dimension = dimension
        logger.info("Embedding gateway initialized with dimension %d", dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_query(self, text: str) -> List[float]:
        """
        Embed a question.

        Raises
        ------
        EmbeddingFailure
            If the provider errors. The call is not retried.
        """
        started = time.perf_counter()
        try:
            vector = await self._capability.embed(text)
        except Exception as exc:
            logger.error("Failed to embed query: %s", exc)
            raise EmbeddingFailure("Failed to generate query embedding") from exc

        logger.debug("Embedded query in %.0fms", (time.perf_counter() - started) * 1000)
        return self.sanitize(vector)

    async def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed a batch of texts, preserving input order.

        Either every text gets a vector or the call fails as a whole.
        """
        if not texts:
            return []

        started = time.perf_counter()
        try:
            vectors = await self._capability.embed_batch(list(texts))
        except Exception as exc:
            logger.error("Failed to embed %d documents: %s", len(texts), exc)
            raise EmbeddingFailure("Failed to generate document embeddings") from exc

        if len(vectors) != len(texts):
            logger.error(
                "Embedding batch size mismatch: %d texts, %d vectors",
                len(texts),
                len(vectors),
            )
            raise EmbeddingFailure("Failed to generate document embeddings")

        logger.debug(
            "Embedded %d documents in %.0fms",
            len(texts),
            (time.perf_counter() - started) * 1000,
        )
        return [self.sanitize(vector) for vector in vectors]

    def sanitize(self, vector: Sequence[float]) -> List[float]:
        if len(vector) != self._dimension:
            logger.warning(
                "Embedding dimension mismatch: expected %d, got %d",
                self._dimension,
                len(vector),
            )

        cleaned: List[float] = []
        non_finite = 0
        for value in vector:
            value = float(value)
            if not math.isfinite(value):
                non_finite += 1
                cleaned.append(0.0)
            else:
                cleaned.append(round(value, PRECISION))

        if non_finite:
            logger.warning(
                "Replaced %d non-finite embedding components with 0", non_finite
            )
        return cleaned
