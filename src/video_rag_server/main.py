"""
Video RAG Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Design Goals
------------
- Deterministic startup
- Explicit dependency initialization order
- Centralized router registration
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .config import settings
from .core.errors import RagError, rag_error_handler, unhandled_exception_handler
from .core.logging import configure_logging
from .db import async_engine, init_models

from .api import (
    chat_routes,
    health_routes,
    video_routes,
)


logger = logging.getLogger("rag.app")


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Fail-fast validation at application startup, cleanup at shutdown.

    This ensures that critical configuration is present and the schema
    exists before the first request is ever served.
    """
    configure_logging(settings.log_level)
    logger.info("Starting video-rag-server")

    if not settings.openai_api_key.get_secret_value():
        raise RuntimeError("OPENAI_API_KEY is not configured")

    await init_models()
    logger.info(
        "Configuration validated (embedding dimension=%d, chunks=%d..%d, threshold=%.2f)",
        settings.embedding_dimension,
        settings.min_chunks,
        settings.max_chunks,
        settings.similarity_threshold,
    )

    yield

    logger.info("Shutting down video-rag-server")
    await async_engine.dispose()


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory pattern allows:
    - Clean test instantiation
    - Isolated app instances for integration tests
    - Controlled dependency overrides in pytest

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="video-rag-server",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(RagError, rag_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(chat_routes.router)
    app.include_router(video_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
