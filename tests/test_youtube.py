"""
Tests for YouTube URL parsing, transcript fetching and chunking.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from youtube_transcript_api import TranscriptsDisabled

from video_rag_server.core.errors import InvalidVideoUrl, VideoMetadataUnavailable
from video_rag_server.ingestion.chunker import TranscriptChunker
from video_rag_server.ingestion.youtube import (
    DEFAULT_DESCRIPTION,
    YouTubeTranscriptSource,
    parse_video_id,
)


class TestParseVideoId:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ&t=42",
            "youtube.com/watch?v=dQw4w9WgXcQ",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ?si=abc",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
            "  https://www.youtube.com/live/dQw4w9WgXcQ  ",
        ],
    )
    def test_recognised_urls(self, url):
        assert parse_video_id(url) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "not a url",
            "https://vimeo.com/123456",
            "https://www.youtube.com/watch?v=short",
            "https://www.youtube.com/channel/UC1234567890",
        ],
    )
    def test_unrecognised_urls(self, url):
        with pytest.raises(InvalidVideoUrl):
            parse_video_id(url)


class TestYouTubeTranscriptSource:
    def _source(self, oembed_status=200, snippets=None, transcript_error=None):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["url"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
            if oembed_status != 200:
                return httpx.Response(oembed_status)
            return httpx.Response(200, json={"title": "Never Gonna Give You Up"})

        api = MagicMock()
        if transcript_error is not None:
            api.fetch.side_effect = transcript_error
        else:
            api.fetch.return_value = [SimpleNamespace(text=t) for t in snippets or []]

        source = YouTubeTranscriptSource(
            languages=["en"],
            transport=httpx.MockTransport(handler),
            transcript_api=api,
        )
        return source, api

    async def test_fetch_joins_snippets(self):
        source, api = self._source(snippets=["Never gonna ", " give you up", "  ", "never"])

        fetched = await source.fetch("https://youtu.be/dQw4w9WgXcQ")

        assert fetched.source_id == "dQw4w9WgXcQ"
        assert fetched.title == "Never Gonna Give You Up"
        assert fetched.description == DEFAULT_DESCRIPTION
        assert fetched.transcript == "Never gonna give you up never"
        api.fetch.assert_called_once_with("dQw4w9WgXcQ", languages=["en"])

    async def test_unknown_video_is_invalid_url(self):
        source, _ = self._source(oembed_status=404)

        with pytest.raises(InvalidVideoUrl, match="video not found"):
            await source.fetch("https://youtu.be/dQw4w9WgXcQ")

    async def test_network_error_is_metadata_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = MagicMock()
        source = YouTubeTranscriptSource(
            languages=["en"],
            transport=httpx.MockTransport(handler),
            transcript_api=api,
        )

        with pytest.raises(VideoMetadataUnavailable) as excinfo:
            await source.fetch("https://youtu.be/dQw4w9WgXcQ")

        assert excinfo.value.status_code == 502
        api.fetch.assert_not_called()

    async def test_missing_transcript_is_invalid_url(self):
        source, _ = self._source(transcript_error=TranscriptsDisabled("dQw4w9WgXcQ"))

        with pytest.raises(InvalidVideoUrl, match="no transcript available"):
            await source.fetch("https://youtu.be/dQw4w9WgXcQ")


class TestTranscriptChunker:
    def test_short_transcript_is_single_titled_chunk(self):
        chunks = TranscriptChunker(chunk_size=1000, chunk_overlap=200).split("Intro", "hello world")

        assert chunks == [("Intro", "Title: Intro | Content: hello world")]

    def test_long_transcript_is_split_with_bounded_chunks(self):
        transcript = " ".join(f"word{i}" for i in range(200))

        chunks = TranscriptChunker(chunk_size=100, chunk_overlap=20).split("Intro", transcript)

        assert len(chunks) > 1
        assert all(title == "Intro" for title, _ in chunks)
        assert all(len(content) <= 100 for _, content in chunks)
        assert chunks[0][1].startswith("Title: Intro | Content: word0")

    def test_blank_transcript_yields_nothing(self):
        assert TranscriptChunker().split("Intro", "   ") == []
