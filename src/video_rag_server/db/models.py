"""
SQLAlchemy Models

Defines the database schema for:
- Videos and their transcript chunks (vector storage with pgvector)
- Chats, their video associations and messages
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import (
    Column,
    Enum,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Index,
    Table,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from pgvector.sqlalchemy import Vector

from ..config import settings


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Chat <-> Video association
# ---------------------------------------------------------------------

chat_video = Table(
    "chat_video",
    Base.metadata,
    Column(
        "chat_id",
        UUID(as_uuid=True),
        ForeignKey("chat.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "video_id",
        UUID(as_uuid=True),
        ForeignKey("video.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


# ---------------------------------------------------------------------
# Video Model
# ---------------------------------------------------------------------

class Video(Base):
    """
    An imported YouTube video. One row per unique source id.
    """
    __tablename__ = "video"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    chunks: Mapped[List["TranscriptChunk"]] = relationship(
        "TranscriptChunk",
        back_populates="video",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ---------------------------------------------------------------------
# Transcript Chunk Model
# ---------------------------------------------------------------------

class TranscriptChunk(Base):
    """
    A bounded slice of a video transcript with its embedding.

    Uses pgvector for similarity search.
    """
    __tablename__ = "transcript_chunk"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    video_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    # pgvector column, dimension fixed process-wide
    embedding = Column(Vector(settings.embedding_dimension), nullable=False)

    video: Mapped["Video"] = relationship("Video", back_populates="chunks")

    __table_args__ = (
        Index("idx_chunk_video", "video_id"),
        Index(
            "idx_chunk_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


# ---------------------------------------------------------------------
# Chat Model
# ---------------------------------------------------------------------

class Chat(Base):
    """
    A conversation scoped to one or more videos.
    """
    __tablename__ = "chat"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    videos: Mapped[List["Video"]] = relationship(
        "Video",
        secondary=chat_video,
        passive_deletes=True,
    )

    messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id",
    )


# ---------------------------------------------------------------------
# Message Model
# ---------------------------------------------------------------------

class Message(Base):
    """
    A single question or answer within a chat.
    """
    __tablename__ = "message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        Enum("user", "assistant", name="message_role"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")

    __table_args__ = (
        Index("idx_message_chat", "chat_id", "created_at"),
    )
