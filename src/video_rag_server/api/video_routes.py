"""
Video Routes

Import, list and delete YouTube videos. Importing fetches the transcript,
chunks and embeds it; deleting a video removes its chunks and detaches it
from chats without deleting the chats.
"""

import uuid
from typing import Annotated, List

from fastapi import APIRouter, Depends, Query, status

from .models import ImportVideoRequest, ImportVideoResponse, OperationResult, VideoResponse
from .dependencies import get_storage, get_video_importer
from ..db import Storage
from ..ingestion.importer import VideoImporter

router = APIRouter(prefix="/youtube", tags=["videos"])


@router.post(
    "/import",
    response_model=ImportVideoResponse,
    summary="Import a YouTube video transcript",
    status_code=status.HTTP_201_CREATED,
)
async def import_video(
    req: ImportVideoRequest,
    storage: Annotated[Storage, Depends(get_storage)],
    importer: Annotated[VideoImporter, Depends(get_video_importer)],
) -> ImportVideoResponse:
    video = await importer.import_from_url(storage, req.url)
    return ImportVideoResponse(id=video.id, message="Video imported successfully")


@router.get(
    "/videos",
    response_model=List[VideoResponse],
    summary="List imported videos",
)
async def list_videos(
    storage: Annotated[Storage, Depends(get_storage)],
    importer: Annotated[VideoImporter, Depends(get_video_importer)],
) -> List[VideoResponse]:
    videos = await importer.list_videos(storage)
    return [VideoResponse.model_validate(video) for video in videos]


@router.delete(
    "/video",
    response_model=OperationResult,
    summary="Delete a video and its transcript chunks",
)
async def delete_video(
    video_id: Annotated[uuid.UUID, Query(alias="videoId")],
    storage: Annotated[Storage, Depends(get_storage)],
    importer: Annotated[VideoImporter, Depends(get_video_importer)],
) -> OperationResult:
    await importer.delete_video(storage, video_id)
    return OperationResult(message="Video deleted successfully")
