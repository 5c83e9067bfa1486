"""
Transcript Vector Store

PostgreSQL + pgvector based storage and similarity search for transcript
chunks. Index maintenance (HNSW, cosine ops) is left to pgvector.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import TranscriptChunk
from ..core.errors import RetrievalFailure
from ..rag.retrieval import RetrievedChunk

logger = logging.getLogger("rag.db.transcripts")


class TranscriptStore:
    """
    PostgreSQL-backed transcript chunk store using pgvector for similarity search.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize with an async database session.

        Parameters
        ----------
        session : AsyncSession
            SQLAlchemy async session for database operations.
        """
        self._session = session

    async def add_chunks(
        self,
        video_id: uuid.UUID,
        chunks: Sequence[Tuple[str, str]],
        embeddings: Sequence[List[float]],
    ) -> int:
        """
        Add transcript chunks for a video.

        Parameters
        ----------
        video_id : uuid.UUID
            Owning video.
        chunks : Sequence[Tuple[str, str]]
            ``(title, content)`` pairs.
        embeddings : Sequence[List[float]]
            Sanitized vectors matching ``chunks`` one to one.

        Returns
        -------
        int
            Number of chunks added.
        """
        if len(chunks) != len(embeddings):
            raise ValueError("chunks and embeddings must have the same length")
        if not chunks:
            return 0

        started = time.perf_counter()
        self._session.add_all(
            TranscriptChunk(
                video_id=video_id,
                title=title,
                content=content,
                embedding=embedding,
            )
            for (title, content), embedding in zip(chunks, embeddings)
        )
        await self._session.flush()

        logger.info(
            "%d chunks created in %.0fms for video %s",
            len(chunks),
            (time.perf_counter() - started) * 1000,
            video_id,
        )
        return len(chunks)

    async def nearest_neighbors(
        self,
        query_embedding: List[float],
        video_ids: Sequence[uuid.UUID],
        k: int,
        min_similarity: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        """
        Return up to ``k`` chunks of the given videos closest to the query.

        Similarity is ``1 - cosine_distance``. The ``min_similarity`` floor is
        applied after the top-k cut, so the result is always a prefix of the
        unfiltered top-k.

        Raises
        ------
        RetrievalFailure
            If the database query fails.
        """
        started = time.perf_counter()
        cosine_distance = TranscriptChunk.embedding.cosine_distance(query_embedding)

        stmt = (
            select(
                TranscriptChunk.title,
                TranscriptChunk.content,
                (1 - cosine_distance).label("similarity"),
            )
            .where(TranscriptChunk.video_id.in_(list(video_ids)))
            .order_by(cosine_distance)
            .limit(k)
        )

        try:
            result = await self._session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as exc:
            logger.error("Similarity search failed: %s", exc)
            raise RetrievalFailure("Failed to search transcript chunks") from exc

        hits = [
            RetrievedChunk(row.title, row.content, float(row.similarity))
            for row in rows
        ]
        if min_similarity is not None:
            hits = [hit for hit in hits if hit.similarity >= min_similarity]

        average = sum(h.similarity for h in hits) / len(hits) if hits else 0.0
        logger.debug(
            "nearest_neighbors in %.0fms: videos=%d k=%d floor=%s found=%d avg=%.3f",
            (time.perf_counter() - started) * 1000,
            len(video_ids),
            k,
            min_similarity,
            len(hits),
            average,
        )
        return hits
