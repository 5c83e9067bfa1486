"""
Video Import Service

Imports a YouTube video: fetch transcript, chunk, embed, store. Also lists
and deletes imported videos.

Import order matters: all embeddings are computed before anything is written,
so a provider failure leaves no video without chunks behind.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, List

from sqlalchemy.exc import IntegrityError

from .chunker import TranscriptChunker
from .youtube import TranscriptSource, parse_video_id
from ..core.errors import InvalidVideoUrl, VideoAlreadyExists, VideoNotFound
from ..db.models import Video
from ..embeddings.gateway import EmbeddingGateway

logger = logging.getLogger("rag.ingestion")


class VideoImporter:

    def __init__(
        self,
        source: TranscriptSource,
        chunker: TranscriptChunker,
        embeddings: EmbeddingGateway,
    ) -> None:
        self._source = source
        self._chunker = chunker
        self._embeddings = embeddings

    async def import_from_url(self, storage: Any, url: str) -> Video:
        """
        Import one video and its transcript chunks.

        Raises
        ------
        InvalidVideoUrl
            Unparseable URL, unknown video or missing transcript.
        VideoMetadataUnavailable
            The metadata lookup failed for a network reason.
        VideoAlreadyExists
            The video's source id was imported before.
        EmbeddingFailure
            The embedding provider failed; nothing is stored.
        """
        logger.info("Starting video import from URL: %s", url)
        started = time.perf_counter()

        source_id = parse_video_id(url)
        if await storage.videos.find_by_source_id(source_id) is not None:
            raise VideoAlreadyExists(source_id)

        fetched = await self._source.fetch(url)
        chunks = self._chunker.split(fetched.title, fetched.transcript)
        if not chunks:
            raise InvalidVideoUrl(url, "transcript is empty")
        logger.info("Created %d chunks for %s", len(chunks), source_id)

        embeddings = await self._embeddings.embed_documents(
            [content for _, content in chunks]
        )

        try:
            video = await storage.videos.create(
                url=url,
                source_id=fetched.source_id,
                title=fetched.title,
                description=fetched.description,
            )
            await storage.transcripts.add_chunks(video.id, chunks, embeddings)
            await storage.commit()
        except IntegrityError as exc:
            await storage.rollback()
            raise VideoAlreadyExists(source_id) from exc

        logger.info(
            "Video import completed in %.0fms (video=%s, source=%s, chunks=%d)",
            (time.perf_counter() - started) * 1000,
            video.id,
            source_id,
            len(chunks),
        )
        return video

    async def list_videos(self, storage: Any) -> List[Video]:
        return await storage.videos.list_all()

    async def delete_video(self, storage: Any, video_id: uuid.UUID) -> None:
        """Delete a video; its chunks and chat associations cascade."""
        video = await storage.videos.find_by_id(video_id)
        if video is None:
            raise VideoNotFound(video_id)

        await storage.videos.delete(video_id)
        await storage.commit()
        logger.info("Video %s deleted (title=%r)", video_id, video.title)
