"""
Shared test fixtures: in-memory stand-ins for the storage, embedding and
generation collaborators of the answering engine.

Writes made through a ``FakeStorage`` are staged and only applied on
``commit()``, mirroring the unit-of-work semantics of the real stores.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from video_rag_server.db.chat_store import ChatSummary, VideoRef
from video_rag_server.embeddings.gateway import EmbeddingGateway
from video_rag_server.rag.pipeline import AnswerPipeline
from video_rag_server.rag.retrieval import RetrievalConfig, RetrievedChunk

DIM = 8


# ---------------------------------------------------------------------
# In-memory database
# ---------------------------------------------------------------------

@dataclass
class FakeMessage:
    id: int
    chat_id: uuid.UUID
    role: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class FakeChunk:
    video_id: uuid.UUID
    title: str
    content: str
    similarity: float


class FakeDatabase:
    def __init__(self) -> None:
        self.videos: Dict[uuid.UUID, SimpleNamespace] = {}
        self.chunks: List[FakeChunk] = []
        self.chats: Dict[uuid.UUID, SimpleNamespace] = {}
        self.chat_videos: Dict[uuid.UUID, List[uuid.UUID]] = {}
        self.messages: Dict[uuid.UUID, List[FakeMessage]] = {}
        self.touched: Dict[uuid.UUID, int] = {}
        self.neighbor_calls: List[dict] = []
        self.commit_gate: Optional[asyncio.Event] = None
        self.commit_error: Optional[Exception] = None
        self._ids = count(1)

    def add_video(self, title: str, similarities: List[float] = ()) -> uuid.UUID:
        video_id = uuid.uuid4()
        self.videos[video_id] = SimpleNamespace(
            id=video_id,
            url=f"https://youtu.be/{title}",
            source_id=title,
            title=title,
            description="No description available",
            created_at=datetime.now(timezone.utc),
        )
        for i, similarity in enumerate(similarities):
            self.chunks.append(
                FakeChunk(video_id, title, f"{title} chunk {i} " + "x" * 150, similarity)
            )
        return video_id

    def add_chat(self, video_ids: List[uuid.UUID]) -> uuid.UUID:
        chat_id = uuid.uuid4()
        self.chats[chat_id] = SimpleNamespace(
            id=chat_id, created_at=datetime.now(timezone.utc)
        )
        self.chat_videos[chat_id] = list(video_ids)
        self.messages[chat_id] = []
        return chat_id

    def add_message(self, chat_id: uuid.UUID, role: str, content: str) -> FakeMessage:
        message = FakeMessage(next(self._ids), chat_id, role, content)
        self.messages[chat_id].append(message)
        return message

    def delete_video(self, video_id: uuid.UUID) -> None:
        self.videos.pop(video_id, None)
        self.chunks = [c for c in self.chunks if c.video_id != video_id]
        for video_ids in self.chat_videos.values():
            if video_id in video_ids:
                video_ids.remove(video_id)

    def message_count(self, chat_id: uuid.UUID) -> int:
        return len(self.messages.get(chat_id, []))


class FakeChatStore:
    def __init__(self, db: FakeDatabase, pending: list) -> None:
        self._db = db
        self._pending = pending

    async def create(self, video_ids):
        chat_id = uuid.uuid4()
        chat = SimpleNamespace(id=chat_id, created_at=datetime.now(timezone.utc))

        def apply():
            self._db.chats[chat_id] = chat
            self._db.chat_videos[chat_id] = list(video_ids)
            self._db.messages[chat_id] = []

        self._pending.append(apply)
        return chat

    async def find_by_id(self, chat_id):
        return self._db.chats.get(chat_id)

    async def videos_for(self, chat_id):
        return [
            VideoRef(video_id, self._db.videos[video_id].title)
            for video_id in self._db.chat_videos.get(chat_id, [])
            if video_id in self._db.videos
        ]

    async def video_ids_for(self, chat_id):
        return [video.id for video in await self.videos_for(chat_id)]

    async def append_message(self, chat_id, role, content):
        self._pending.append(lambda: self._db.add_message(chat_id, role, content))

    async def touch(self, chat_id):
        self._pending.append(
            lambda: self._db.touched.__setitem__(
                chat_id, self._db.touched.get(chat_id, 0) + 1
            )
        )

    async def recent_messages(self, chat_id, limit):
        messages = self._db.messages.get(chat_id, [])
        return list(messages[-limit:]) if limit else []

    async def messages(self, chat_id):
        return list(self._db.messages.get(chat_id, []))

    async def list_with_latest_message(self):
        return [
            ChatSummary(
                chat.id,
                chat.created_at,
                (self._db.messages.get(chat.id) or [None])[-1],
            )
            for chat in self._db.chats.values()
        ]

    async def delete(self, chat_id):
        def apply():
            self._db.chats.pop(chat_id, None)
            self._db.chat_videos.pop(chat_id, None)
            self._db.messages.pop(chat_id, None)

        self._pending.append(apply)
        return 1


class FakeVideoStore:
    def __init__(self, db: FakeDatabase, pending: list) -> None:
        self._db = db
        self._pending = pending

    async def create(self, url, source_id, title, description):
        video = SimpleNamespace(
            id=uuid.uuid4(),
            url=url,
            source_id=source_id,
            title=title,
            description=description,
            created_at=datetime.now(timezone.utc),
        )
        self._pending.append(lambda: self._db.videos.__setitem__(video.id, video))
        return video

    async def find_by_id(self, video_id):
        return self._db.videos.get(video_id)

    async def find_by_source_id(self, source_id):
        return next(
            (v for v in self._db.videos.values() if v.source_id == source_id), None
        )

    async def find_many(self, video_ids):
        return [self._db.videos[v] for v in video_ids if v in self._db.videos]

    async def list_all(self):
        return list(self._db.videos.values())

    async def delete(self, video_id):
        self._pending.append(lambda: self._db.delete_video(video_id))
        return 1


class FakeTranscriptStore:
    def __init__(self, db: FakeDatabase, pending: list) -> None:
        self._db = db
        self._pending = pending

    async def add_chunks(self, video_id, chunks, embeddings):
        for (title, content), _ in zip(chunks, embeddings):
            self._pending.append(
                lambda t=title, c=content: self._db.chunks.append(
                    FakeChunk(video_id, t, c, 0.5)
                )
            )
        return len(chunks)

    async def nearest_neighbors(self, query_embedding, video_ids, k, min_similarity=None):
        self._db.neighbor_calls.append(
            {"video_ids": list(video_ids), "k": k, "min_similarity": min_similarity}
        )
        candidates = sorted(
            (c for c in self._db.chunks if c.video_id in set(video_ids)),
            key=lambda c: c.similarity,
            reverse=True,
        )[:k]
        hits = [RetrievedChunk(c.title, c.content, c.similarity) for c in candidates]
        if min_similarity is not None:
            hits = [h for h in hits if h.similarity >= min_similarity]
        return hits


class FakeStorage:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self._pending: list = []
        self.chats = FakeChatStore(db, self._pending)
        self.videos = FakeVideoStore(db, self._pending)
        self.transcripts = FakeTranscriptStore(db, self._pending)
        self.commits = 0

    async def commit(self):
        if self._db.commit_gate is not None:
            await self._db.commit_gate.wait()
        if self._db.commit_error is not None:
            raise self._db.commit_error
        for apply in self._pending:
            apply()
        self._pending.clear()
        self.commits += 1

    async def rollback(self):
        self._pending.clear()


def storage_factory_for(db: FakeDatabase):
    @asynccontextmanager
    async def factory():
        yield FakeStorage(db)

    return factory


# ---------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------

class FakeEmbedder:
    def __init__(self, dimension: int = DIM) -> None:
        self.dimension = dimension
        self.calls: List[str] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def embed(self, text):
        self.calls.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return [0.1] * self.dimension

    async def embed_batch(self, texts):
        self.calls.extend(texts)
        if self.error:
            raise self.error
        return [[0.1 * (i + 1)] * self.dimension for i in range(len(texts))]


class FakeGenerator:
    """
    Deterministic generator. ``fail_after`` raises after that many deltas;
    ``gate_after`` blocks after that many deltas until ``gate`` is set, and
    makes ``generate`` block on ``gate`` before answering.
    """

    def __init__(self, tokens: List[str]) -> None:
        self.tokens = tokens
        self.prompts: List[str] = []
        self.fail_after: Optional[int] = None
        self.gate_after: Optional[int] = None
        self.gate = asyncio.Event()
        self.closed = False

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.gate_after is not None:
            await self.gate.wait()
        if self.fail_after is not None:
            raise RuntimeError("provider unavailable")
        return "".join(self.tokens)

    async def generate_stream(self, prompt):
        self.prompts.append(prompt)
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i == self.fail_after:
                    raise RuntimeError("provider unavailable")
                if self.gate_after is not None and i == self.gate_after:
                    await self.gate.wait()
                await asyncio.sleep(0)
                yield token
            if self.fail_after is not None and self.fail_after >= len(self.tokens):
                raise RuntimeError("provider unavailable")
        finally:
            self.closed = True


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator(["The ", "answer ", "is ", "42."])


@pytest.fixture
def retrieval_config():
    return RetrievalConfig(min_chunks=5, max_chunks=20, similarity_threshold=0.4)


@pytest.fixture
def pipeline(db, embedder, generator, retrieval_config):
    return AnswerPipeline(
        storage_factory=storage_factory_for(db),
        embeddings=EmbeddingGateway(embedder, DIM),
        generator=generator,
        retrieval=retrieval_config,
        max_messages=50,
        preview_length=100,
    )
