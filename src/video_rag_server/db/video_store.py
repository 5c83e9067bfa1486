"""
Video Store

Persistence of imported videos. Transcript chunks and chat associations
follow a video's lifetime through ``ON DELETE CASCADE``.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Video

logger = logging.getLogger("rag.db.videos")


class VideoStore:

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        url: str,
        source_id: str,
        title: str,
        description: str,
    ) -> Video:
        video = Video(
            url=url,
            source_id=source_id,
            title=title,
            description=description,
        )
        self._session.add(video)
        await self._session.flush()
        logger.info("Video %s created (source=%s, title=%r)", video.id, source_id, title)
        return video

    async def find_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        return await self._session.get(Video, video_id)

    async def find_by_source_id(self, source_id: str) -> Optional[Video]:
        result = await self._session.execute(
            select(Video).where(Video.source_id == source_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_many(self, video_ids: Sequence[uuid.UUID]) -> List[Video]:
        if not video_ids:
            return []
        result = await self._session.execute(
            select(Video).where(Video.id.in_(list(video_ids)))
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[Video]:
        result = await self._session.execute(
            select(Video).order_by(Video.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete(self, video_id: uuid.UUID) -> int:
        result = await self._session.execute(delete(Video).where(Video.id == video_id))
        logger.info("Video %s deleted", video_id)
        return result.rowcount
