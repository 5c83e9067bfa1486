"""
Adaptive Retrieval

Two-phase similarity retrieval over the transcript chunks of a chat's videos.

Phase 1 asks for the ``max_chunks`` nearest chunks and drops those below
``similarity_threshold``. When that leaves fewer than ``min_chunks``, phase 2
discards the threshold and asks for exactly ``min_chunks`` nearest chunks, so
the generator always gets some grounding. Chunks returned by phase 2 are not
guaranteed to be relevant, only present.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Protocol, Sequence

logger = logging.getLogger("rag.retrieval")


class RetrievedChunk(NamedTuple):
    """A transcript chunk matched against a query vector."""
    title: str
    content: str
    similarity: float


class NeighborSearch(Protocol):
    async def nearest_neighbors(
        self,
        query_embedding: List[float],
        video_ids: Sequence[uuid.UUID],
        k: int,
        min_similarity: Optional[float] = None,
    ) -> List[RetrievedChunk]: ...


@dataclass(frozen=True)
class RetrievalConfig:
    min_chunks: int = 5
    max_chunks: int = 20
    similarity_threshold: float = 0.4

    def __post_init__(self) -> None:
        if not 0 < self.min_chunks <= self.max_chunks:
            raise ValueError(
                f"Invalid chunk bounds: need 0 < min_chunks ({self.min_chunks}) "
                f"<= max_chunks ({self.max_chunks})"
            )


async def retrieve(
    store: NeighborSearch,
    query_embedding: List[float],
    video_ids: Sequence[uuid.UUID],
    config: RetrievalConfig,
) -> List[RetrievedChunk]:
    """
    Return the chunks used to ground an answer, highest similarity first.

    Parameters
    ----------
    store : NeighborSearch
        Storage collaborator executing the vector search.
    query_embedding : List[float]
        Sanitized question vector.
    video_ids : Sequence[uuid.UUID]
        Videos in scope. Must not be empty.
    config : RetrievalConfig
        Chunk bounds and similarity floor.

    Raises
    ------
    ValueError
        If ``video_ids`` is empty.
    RetrievalFailure
        Propagated from the store.
    """
    if not video_ids:
        raise ValueError("retrieve() requires at least one candidate video")

    started = time.perf_counter()
    chunks = await store.nearest_neighbors(
        query_embedding,
        video_ids,
        k=config.max_chunks,
        min_similarity=config.similarity_threshold,
    )

    if len(chunks) < config.min_chunks:
        logger.warning(
            "Only %d chunks above threshold %.2f, retrieving top %d",
            len(chunks),
            config.similarity_threshold,
            config.min_chunks,
        )
        chunks = await store.nearest_neighbors(
            query_embedding,
            video_ids,
            k=config.min_chunks,
        )

    logger.debug(
        "Retrieved %d chunks from %d videos in %.0fms",
        len(chunks),
        len(video_ids),
        (time.perf_counter() - started) * 1000,
    )
    return list(chunks)
