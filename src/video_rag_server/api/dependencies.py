from functools import lru_cache
from typing import AsyncGenerator

from ..config import settings
from ..db import Storage, open_storage
from ..embeddings.embedder import Embedder
from ..embeddings.gateway import EmbeddingGateway
from ..ingestion.chunker import TranscriptChunker
from ..ingestion.importer import VideoImporter
from ..ingestion.youtube import YouTubeTranscriptSource
from ..llm.client import LLMClient
from ..rag.pipeline import AnswerPipeline
from ..rag.retrieval import RetrievalConfig


@lru_cache
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache
def get_embedder() -> Embedder:
    return Embedder()


@lru_cache
def get_embedding_gateway() -> EmbeddingGateway:
    return EmbeddingGateway(get_embedder(), settings.embedding_dimension)


@lru_cache
def get_answer_pipeline() -> AnswerPipeline:
    return AnswerPipeline(
        storage_factory=open_storage,
        embeddings=get_embedding_gateway(),
        generator=get_llm_client(),
        retrieval=RetrievalConfig(
            min_chunks=settings.min_chunks,
            max_chunks=settings.max_chunks,
            similarity_threshold=settings.similarity_threshold,
        ),
        max_messages=settings.max_messages,
        preview_length=settings.chunk_preview_length,
    )


@lru_cache
def get_video_importer() -> VideoImporter:
    return VideoImporter(
        source=YouTubeTranscriptSource(),
        chunker=TranscriptChunker(),
        embeddings=get_embedding_gateway(),
    )


async def get_storage() -> AsyncGenerator[Storage, None]:
    """
    Request-scoped unit of work. Routes commit explicitly.
    """
    async with open_storage() as storage:
        yield storage
