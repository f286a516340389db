"""
YouTube Transcript Service
Fetches caption transcripts and basic video metadata for YouTube links.
"""
import asyncio
from typing import Any, Dict, Optional

import httpx
import structlog
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    YouTubeTranscriptApi,
)

from app.config import get_settings
from app.errors import ExtractionError, InvalidURLFormatError, NoTranscriptAvailableError
from app.models.schemas import VideoMetadata, YouTubeTranscript
from app.services.source_normalizer import extract_video_id, is_youtube_url

logger = structlog.get_logger()

OEMBED_URL = "https://www.youtube.com/oembed"


class YouTubeService:
    """Transcript fetching via youtube-transcript-api, titles via the oEmbed endpoint."""

    def __init__(self, transcript_api: Optional[YouTubeTranscriptApi] = None):
        self.settings = get_settings()
        self.transcript_api = transcript_api or YouTubeTranscriptApi()

    async def fetch_transcript(self, url: str, language: Optional[str] = None) -> YouTubeTranscript:
        """
        Fetch the transcript for a YouTube video.

        Args:
            url: Any accepted YouTube link shape
            language: Caption language code (default from settings)

        Returns:
            YouTubeTranscript with transcript text and metadata

        Raises:
            InvalidURLFormatError: If the URL is not a YouTube video link
            NoTranscriptAvailableError: If captions are disabled or missing
            ExtractionError: For any other retrieval failure
        """
        if not is_youtube_url(url):
            raise InvalidURLFormatError(f"Invalid YouTube URL format: {url}", source_name=url)

        language = language or self.settings.youtube_language
        video_id = extract_video_id(url)
        logger.info("Fetching YouTube transcript", video_id=video_id, language=language)

        try:
            fetched = await asyncio.to_thread(
                self.transcript_api.fetch, video_id, languages=[language]
            )
        except (TranscriptsDisabled, NoTranscriptFound) as e:
            raise NoTranscriptAvailableError(
                "Failed to extract transcript. The video might not have captions or they might be disabled.",
                source_name=url,
            ) from e
        except CouldNotRetrieveTranscript as e:
            raise ExtractionError(f"Failed to get YouTube video transcription: {e}", source_name=url) from e

        snippets = list(fetched.snippets)
        transcript = "\n".join(s.text.strip() for s in snippets if s.text and s.text.strip())
        duration = None
        if snippets:
            last = snippets[-1]
            duration = int(round(last.start + last.duration))

        info = await self.fetch_video_info(url)

        logger.info(
            "Transcript fetched",
            video_id=video_id,
            segments=len(snippets),
            chars=len(transcript),
        )

        return YouTubeTranscript(
            url=url,
            title=info.get("title"),
            description=info.get("description"),
            transcript=transcript,
            metadata=VideoMetadata(
                language=getattr(fetched, "language_code", None) or language,
                video_id=video_id,
                duration=duration,
                author=info.get("author_name"),
            ),
        )

    async def fetch_video_info(self, url: str) -> Dict[str, Any]:
        """Best-effort title/author lookup; missing metadata never fails a transcript."""
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout, follow_redirects=True) as client:
                response = await client.get(OEMBED_URL, params={"url": url, "format": "json"})
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Video metadata unavailable", url=url, error=str(e))
            return {}


# Singleton instance
_youtube_service: Optional[YouTubeService] = None


def get_youtube_service() -> YouTubeService:
    """Get singleton YouTube service instance."""
    global _youtube_service
    if _youtube_service is None:
        _youtube_service = YouTubeService()
    return _youtube_service
