"""
API Models

Pydantic models used for request/response validation of the chat and video
endpoints.

Design Goals
------------
- Strong typing
- camelCase on the wire, snake_case in Python (both accepted on input)
- Safe defaults (no shared mutable state)
- Clear schema documentation for OpenAPI generation
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class OperationResult(ApiModel):
    """
    Standardized mutation operation result.
    """
    message: str


# ---------------------------------------------------------------------
# Chat Models
# ---------------------------------------------------------------------

class CreateChatRequest(ApiModel):
    """
    Create a chat over one or more imported videos.
    """
    video_ids: List[uuid.UUID] = Field(..., min_length=1)


class CreateChatResponse(ApiModel):
    id: uuid.UUID


class AskRequest(ApiModel):
    """
    Question about the videos of a chat.
    """
    chat_id: uuid.UUID
    question: str = Field(..., min_length=1, max_length=5000)


class ChunkMetadata(ApiModel):
    """
    Preview of a transcript chunk used to ground an answer.
    """
    content: str
    similarity: float


class AskResponse(ApiModel):
    answer: str
    chunks: List[ChunkMetadata] = Field(default_factory=list)


class MessageResponse(ApiModel):
    id: int
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime


class ChatResponse(ApiModel):
    """
    A chat with its most recent message.
    """
    id: uuid.UUID
    created_at: datetime
    latest_message: Optional[MessageResponse] = None


# ---------------------------------------------------------------------
# Video Models
# ---------------------------------------------------------------------

class ImportVideoRequest(ApiModel):
    url: str = Field(..., min_length=1, max_length=2048)


class ImportVideoResponse(ApiModel):
    id: uuid.UUID
    message: str


class VideoResponse(ApiModel):
    id: uuid.UUID
    url: str
    source_id: str
    title: str
    description: str
    created_at: datetime
