"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
stores used by the answering engine, for PostgreSQL with pgvector.
"""

from .session import init_models, async_engine, AsyncSessionLocal
from .models import Base, Video, TranscriptChunk, Chat, Message, chat_video
from .chat_store import ChatStore, ChatSummary, VideoRef
from .video_store import VideoStore
from .vector_store import TranscriptStore
from .storage import Storage, open_storage

__all__ = [
    "init_models",
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "Video",
    "TranscriptChunk",
    "Chat",
    "Message",
    "chat_video",
    "ChatStore",
    "ChatSummary",
    "VideoRef",
    "VideoStore",
    "TranscriptStore",
    "Storage",
    "open_storage",
]
