"""
Storage Unit of Work

Bundles the stores bound to one ``AsyncSession``. Each question, import or
API request works inside its own unit of work; nothing is shared between
requests except the engine's connection pool.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .chat_store import ChatStore
from .session import AsyncSessionLocal
from .vector_store import TranscriptStore
from .video_store import VideoStore


class Storage:
    """Stores sharing one session and one transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.chats = ChatStore(session)
        self.videos = VideoStore(session)
        self.transcripts = TranscriptStore(session)

    async def commit(self) -> None:
        """
        Commit the current transaction.
        """
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


@asynccontextmanager
async def open_storage(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[Storage]:
    """
    Open a unit of work. Uncommitted changes are rolled back on error.
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield Storage(session)
        except Exception:
            await session.rollback()
            raise
