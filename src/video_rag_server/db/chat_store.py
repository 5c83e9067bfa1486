"""
Chat Store

Persistence of chats, their video associations and their messages.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Chat, Message, Video, chat_video

logger = logging.getLogger("rag.db.chats")


@dataclass(frozen=True)
class VideoRef:
    """Id and title of a video attached to a chat."""
    id: uuid.UUID
    title: str


@dataclass(frozen=True)
class ChatSummary:
    """A chat with its most recent message, if any."""
    id: uuid.UUID
    created_at: datetime
    latest_message: Optional[Message]


class ChatStore:
    """
    Chat and message persistence bound to one ``AsyncSession``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create(self, video_ids: Sequence[uuid.UUID]) -> Chat:
        """Create a chat associated with the given (existing) videos."""
        chat = Chat()
        self._session.add(chat)
        await self._session.flush()

        if video_ids:
            await self._session.execute(
                insert(chat_video),
                [{"chat_id": chat.id, "video_id": vid} for vid in video_ids],
            )

        logger.info("Chat %s created with %d videos", chat.id, len(video_ids))
        return chat

    async def find_by_id(self, chat_id: uuid.UUID) -> Optional[Chat]:
        return await self._session.get(Chat, chat_id)

    async def videos_for(self, chat_id: uuid.UUID) -> List[VideoRef]:
        """Return the videos still attached to a chat, oldest association first."""
        stmt = (
            select(Video.id, Video.title)
            .join(chat_video, chat_video.c.video_id == Video.id)
            .where(chat_video.c.chat_id == chat_id)
            .order_by(chat_video.c.created_at, Video.title)
        )
        result = await self._session.execute(stmt)
        return [VideoRef(row.id, row.title) for row in result.all()]

    async def video_ids_for(self, chat_id: uuid.UUID) -> List[uuid.UUID]:
        return [video.id for video in await self.videos_for(chat_id)]

    async def touch(self, chat_id: uuid.UUID) -> None:
        await self._session.execute(
            update(Chat).where(Chat.id == chat_id).values(updated_at=func.now())
        )

    async def list_with_latest_message(self) -> List[ChatSummary]:
        """
        Return all chats, most recently updated first, each with its latest message.
        """
        ranked = (
            select(
                Message.id.label("message_id"),
                Message.chat_id,
                func.row_number()
                .over(
                    partition_by=Message.chat_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("rank"),
            )
            .subquery()
        )

        stmt = (
            select(Chat, Message)
            .outerjoin(
                ranked,
                and_(ranked.c.chat_id == Chat.id, ranked.c.rank == 1),
            )
            .outerjoin(Message, Message.id == ranked.c.message_id)
            .order_by(Chat.updated_at.desc())
        )
        result = await self._session.execute(stmt)
        return [
            ChatSummary(chat.id, chat.created_at, message)
            for chat, message in result.all()
        ]

    async def delete(self, chat_id: uuid.UUID) -> int:
        """Delete a chat; messages and video associations cascade."""
        result = await self._session.execute(delete(Chat).where(Chat.id == chat_id))
        logger.info("Chat %s deleted", chat_id)
        return result.rowcount

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(
        self,
        chat_id: uuid.UUID,
        role: str,
        content: str,
    ) -> Message:
        message = Message(chat_id=chat_id, role=role, content=content)
        self._session.add(message)
        await self._session.flush()
        return message

    async def recent_messages(self, chat_id: uuid.UUID, limit: int) -> List[Message]:
        """
        Return at most ``limit`` most recent messages, oldest first.
        """
        stmt = (
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def messages(self, chat_id: uuid.UUID) -> List[Message]:
        stmt = (
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at, Message.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
