"""
Chat Routes: Question Answering over Video Transcripts

This module implements the conversational endpoints used by the web client:

- Chat lifecycle (create, list, read messages, delete)
- Batch question answering (``POST /chat/ask``)
- Streaming question answering over server-sent events
  (``POST /chat/ask-stream``)

Streaming Wire Format
---------------------
One SSE frame per pipeline event::

    data: {"type": "token", "data": "partial text"}
    data: {"type": "done", "data": {"answer": "...", "chunks": [...]}}
    data: {"type": "error", "data": "human readable message"}

A client disconnect cancels the answer stream; an answer whose generation
already finished is still persisted.
"""

import json
import uuid
from typing import Annotated, AsyncIterator, List

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from .models import (
    AskRequest,
    AskResponse,
    ChatResponse,
    CreateChatRequest,
    CreateChatResponse,
    MessageResponse,
    OperationResult,
)
from .dependencies import get_answer_pipeline, get_storage
from ..core.errors import ChatNotFound, VideoNotFound
from ..db import Storage
from ..rag.pipeline import AnswerPipeline, AnswerStream

router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


# ---------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------

async def _sse_frames(stream: AnswerStream) -> AsyncIterator[str]:
    """Render pipeline events as SSE frames; cancel the stream on disconnect."""
    try:
        async for event in stream.events():
            yield f"data: {json.dumps(event.to_dict())}\n\n"
    finally:
        stream.cancel()


# ---------------------------------------------------------------------
# Chat lifecycle
# ---------------------------------------------------------------------

@router.post(
    "/create",
    response_model=CreateChatResponse,
    summary="Create a chat over imported videos",
    status_code=status.HTTP_201_CREATED,
)
async def create_chat(
    req: CreateChatRequest,
    storage: Annotated[Storage, Depends(get_storage)],
) -> CreateChatResponse:
    video_ids = list(dict.fromkeys(req.video_ids))

    found = {video.id for video in await storage.videos.find_many(video_ids)}
    missing = [video_id for video_id in video_ids if video_id not in found]
    if missing:
        raise VideoNotFound(missing[0])

    chat = await storage.chats.create(video_ids)
    await storage.commit()
    return CreateChatResponse(id=chat.id)


@router.get(
    "/chats",
    response_model=List[ChatResponse],
    summary="List chats, most recently active first",
)
async def list_chats(
    storage: Annotated[Storage, Depends(get_storage)],
) -> List[ChatResponse]:
    summaries = await storage.chats.list_with_latest_message()
    return [
        ChatResponse(
            id=summary.id,
            created_at=summary.created_at,
            latest_message=(
                MessageResponse.model_validate(summary.latest_message)
                if summary.latest_message is not None
                else None
            ),
        )
        for summary in summaries
    ]


@router.get(
    "/messages",
    response_model=List[MessageResponse],
    summary="Messages of a chat, oldest first",
)
async def get_messages(
    chat_id: Annotated[uuid.UUID, Query(alias="chatId")],
    storage: Annotated[Storage, Depends(get_storage)],
) -> List[MessageResponse]:
    if await storage.chats.find_by_id(chat_id) is None:
        raise ChatNotFound(chat_id)

    messages = await storage.chats.messages(chat_id)
    return [MessageResponse.model_validate(message) for message in messages]


@router.delete(
    "",
    response_model=OperationResult,
    summary="Delete a chat and its messages",
)
async def delete_chat(
    chat_id: Annotated[uuid.UUID, Query(alias="chatId")],
    storage: Annotated[Storage, Depends(get_storage)],
    pipeline: Annotated[AnswerPipeline, Depends(get_answer_pipeline)],
) -> OperationResult:
    async with pipeline.chat_lock(chat_id):
        if await storage.chats.find_by_id(chat_id) is None:
            raise ChatNotFound(chat_id)

        await storage.chats.delete(chat_id)
        await storage.commit()
    return OperationResult(message="Chat deleted successfully")


# ---------------------------------------------------------------------
# Question answering
# ---------------------------------------------------------------------

@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Answer a question about the chat's videos",
)
async def ask(
    req: AskRequest,
    pipeline: Annotated[AnswerPipeline, Depends(get_answer_pipeline)],
) -> AskResponse:
    """
    Batch mode: returns the full answer and the chunks that grounded it.

    Domain errors (unknown chat, provider failures) are rendered by the
    global ``rag_error_handler``.
    """
    payload = await pipeline.ask(req.chat_id, req.question)
    return AskResponse.model_validate(payload.to_dict())


@router.post(
    "/ask-stream",
    summary="Answer a question, streaming tokens as server-sent events",
    response_class=StreamingResponse,
)
async def ask_stream(
    req: AskRequest,
    pipeline: Annotated[AnswerPipeline, Depends(get_answer_pipeline)],
) -> StreamingResponse:
    stream = pipeline.ask_stream(req.chat_id, req.question)
    return StreamingResponse(
        _sse_frames(stream),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
