"""
Error Taxonomy and Global Error Handling

This module defines the domain exceptions raised by the answering engine and
the FastAPI exception handlers that render them.

Design Goals
------------
- Every failure of a request maps to one named exception
- Domain errors carry their own HTTP status and machine-readable code
- Never leak internal exception details for unexpected errors
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Domain Exceptions
# ---------------------------------------------------------------------

class RagError(RuntimeError):
    """Base class for errors surfaced to callers of the service."""

    status_code: int = 500
    error_code: str = "rag_error"


class ChatNotFound(RagError):
    status_code = 404
    error_code = "chat_not_found"

    def __init__(self, chat_id: object) -> None:
        super().__init__(f'Chat with ID "{chat_id}" not found')
        self.chat_id = chat_id


class VideoNotFound(RagError):
    status_code = 404
    error_code = "video_not_found"

    def __init__(self, video_id: object) -> None:
        super().__init__(f'Video with ID "{video_id}" not found')
        self.video_id = video_id


class VideoAlreadyExists(RagError):
    status_code = 409
    error_code = "video_already_exists"

    def __init__(self, source_id: str) -> None:
        super().__init__(
            f'Video with YouTube ID "{source_id}" has already been imported'
        )
        self.source_id = source_id


class InvalidVideoUrl(RagError):
    status_code = 400
    error_code = "invalid_video_url"

    def __init__(self, url: str, reason: str | None = None) -> None:
        message = f'Invalid YouTube URL: "{url}"'
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.url = url


class EmbeddingFailure(RagError):
    """Raised when the embedding provider fails. Never retried here."""

    status_code = 502
    error_code = "embedding_failed"


class GenerationFailure(RagError):
    """Raised when the generation provider fails, before or during streaming."""

    status_code = 502
    error_code = "generation_failed"


class RetrievalFailure(RagError):
    """Raised when the storage collaborator fails during similarity search."""

    status_code = 500
    error_code = "retrieval_failed"


class VideoMetadataUnavailable(RagError):
    """Raised when video metadata cannot be fetched for a network reason."""

    status_code = 502
    error_code = "video_metadata_unavailable"

    def __init__(self, source_id: str) -> None:
        super().__init__(f'Metadata for video "{source_id}" is unavailable')
        self.source_id = source_id


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def rag_error_handler(
    request: Request,
    exc: RagError,
) -> JSONResponse:
    """
    Render a domain error with its own status code and message.

    Domain errors are expected failures (missing chat, provider outage), so
    they are logged at warning level without a stack trace.
    """
    logger.warning(
        "%s %s -> %d %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.error_code,
        exc,
    )

    payload: Dict[str, Any] = {
        "error": exc.error_code,
        "detail": str(exc),
    }

    return JSONResponse(
        status_code=exc.status_code,
        content=payload,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    This handler should be registered with FastAPI as the final safety net
    for any exception not otherwise handled by route-level or framework-level
    handlers.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    - Ensures consistent error response format across the entire API.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
