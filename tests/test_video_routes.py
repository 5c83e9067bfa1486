import contextlib
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from video_rag_server.main import app
from video_rag_server.api.dependencies import get_storage, get_video_importer
from video_rag_server.core.errors import VideoMetadataUnavailable
from video_rag_server.embeddings.gateway import EmbeddingGateway
from video_rag_server.ingestion.chunker import TranscriptChunker
from video_rag_server.ingestion.importer import VideoImporter
from video_rag_server.ingestion.youtube import FetchedVideo

from conftest import DIM, FakeStorage

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def source():
    mock = MagicMock()
    mock.fetch = AsyncMock(
        return_value=FetchedVideo("dQw4w9WgXcQ", URL, "Intro", "No description available", "hello world")
    )
    return mock


@pytest.fixture
def client(db, embedder, source):
    async def override_storage():
        yield FakeStorage(db)

    importer = VideoImporter(source, TranscriptChunker(), EmbeddingGateway(embedder, DIM))
    app.dependency_overrides[get_storage] = override_storage
    app.dependency_overrides[get_video_importer] = lambda: importer

    # Mock lifespan to avoid DB connection
    @contextlib.asynccontextmanager
    async def mock_lifespan(app):
        yield

    app.router.lifespan_context = mock_lifespan

    with TestClient(app) as c:
        yield c

    app.dependency_overrides = {}


def test_import_video(client, db):
    response = client.post("/youtube/import", json={"url": URL})

    assert response.status_code == 201
    video_id = uuid.UUID(response.json()["id"])
    assert db.videos[video_id].title == "Intro"


def test_import_duplicate_is_conflict(client):
    assert client.post("/youtube/import", json={"url": URL}).status_code == 201

    response = client.post("/youtube/import", json={"url": URL})

    assert response.status_code == 409
    assert response.json()["error"] == "video_already_exists"


def test_import_invalid_url(client, source):
    response = client.post("/youtube/import", json={"url": "https://example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_video_url"
    source.fetch.assert_not_awaited()


def test_import_embedding_failure_is_bad_gateway(client, db, embedder):
    embedder.error = RuntimeError("quota exceeded")

    response = client.post("/youtube/import", json={"url": URL})

    assert response.status_code == 502
    assert db.videos == {}


def test_import_metadata_outage_is_bad_gateway(client, db, source):
    source.fetch.side_effect = VideoMetadataUnavailable("dQw4w9WgXcQ")

    response = client.post("/youtube/import", json={"url": URL})

    assert response.status_code == 502
    assert response.json()["error"] == "video_metadata_unavailable"
    assert db.videos == {}


def test_list_videos(client, db):
    db.add_video("intro")

    response = client.get("/youtube/videos")

    assert response.status_code == 200
    [video] = response.json()
    assert video["title"] == "intro"
    assert video["sourceId"] == "intro"


def test_delete_video_keeps_chat(client, db):
    video_id = db.add_video("intro", [0.5])
    chat_id = db.add_chat([video_id])

    response = client.delete("/youtube/video", params={"videoId": str(video_id)})

    assert response.status_code == 200
    assert video_id not in db.videos
    assert chat_id in db.chats


def test_delete_unknown_video(client):
    response = client.delete("/youtube/video", params={"videoId": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["error"] == "video_not_found"
