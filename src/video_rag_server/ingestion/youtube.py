"""
YouTube Transcript Source

Resolves a YouTube URL into the video's id, title and plain-text transcript.

- Video id: parsed from watch, short-link, embed, shorts and live URLs
- Title: YouTube oEmbed endpoint (no API key required)
- Description: oEmbed has no description field, so every video gets
  ``DEFAULT_DESCRIPTION``
- Transcript: ``youtube-transcript-api``, first available language from
  ``settings.transcript_languages``
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

import httpx
from youtube_transcript_api import YouTubeTranscriptApi, CouldNotRetrieveTranscript

from ..config import settings
from ..core.errors import InvalidVideoUrl, VideoMetadataUnavailable

logger = logging.getLogger("rag.ingestion.youtube")

DEFAULT_DESCRIPTION = "No description available"

_VIDEO_ID = r"([A-Za-z0-9_-]{11})"
_URL_PATTERNS = [
    re.compile(r"^(?:https?://)?(?:www\.|m\.|music\.)?youtube\.com/watch\?(?:.*&)?v=" + _VIDEO_ID),
    re.compile(r"^(?:https?://)?youtu\.be/" + _VIDEO_ID),
    re.compile(r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/(?:embed|shorts|live|v)/" + _VIDEO_ID),
]


def parse_video_id(url: str) -> str:
    """
    Extract the 11-character video id from a YouTube URL.

    Raises
    ------
    InvalidVideoUrl
        If the URL is not a recognised YouTube video URL.
    """
    candidate = url.strip()
    for pattern in _URL_PATTERNS:
        match = pattern.match(candidate)
        if match:
            return match.group(1)
    raise InvalidVideoUrl(url)


@dataclass(frozen=True)
class FetchedVideo:
    source_id: str
    url: str
    title: str
    description: str
    transcript: str


class TranscriptSource(Protocol):
    async def fetch(self, url: str) -> FetchedVideo: ...


class YouTubeTranscriptSource:
    """Fetches video metadata and transcripts from YouTube."""

    OEMBED_URL = "https://www.youtube.com/oembed"

    def __init__(
        self,
        languages: Optional[List[str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        transcript_api: Optional[YouTubeTranscriptApi] = None,
    ) -> None:
        self.languages = languages or settings.languages
        self.timeout = timeout
        self._transport = transport
        self._api = transcript_api or YouTubeTranscriptApi()

    async def fetch(self, url: str) -> FetchedVideo:
        source_id = parse_video_id(url)
        title = await self._fetch_title(url, source_id)
        transcript = await asyncio.to_thread(self._fetch_transcript, url, source_id)

        logger.info(
            "Fetched transcript for %s (%r): %d characters",
            source_id,
            title,
            len(transcript),
        )
        return FetchedVideo(
            source_id=source_id,
            url=url,
            title=title,
            description=DEFAULT_DESCRIPTION,
            transcript=transcript,
        )

    async def _fetch_title(self, url: str, source_id: str) -> str:
        params = {
            "url": f"https://www.youtube.com/watch?v={source_id}",
            "format": "json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.get(self.OEMBED_URL, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise InvalidVideoUrl(url, "video not found") from exc
        except httpx.HTTPError as exc:
            logger.error("oEmbed lookup failed for %s: %s", source_id, exc)
            raise VideoMetadataUnavailable(source_id) from exc

        title = resp.json().get("title")
        return title or source_id

    def _fetch_transcript(self, url: str, source_id: str) -> str:
        try:
            fetched = self._api.fetch(source_id, languages=self.languages)
        except CouldNotRetrieveTranscript as exc:
            logger.warning("No transcript for %s: %s", source_id, type(exc).__name__)
            raise InvalidVideoUrl(url, "no transcript available") from exc

        return " ".join(
            snippet.text.strip() for snippet in fetched if snippet.text.strip()
        )
