"""
Unit Tests for YouTube Service

The transcript API and the oEmbed lookup are mocked.
"""
import pytest
from unittest.mock import AsyncMock, Mock, patch
from youtube_transcript_api import TranscriptsDisabled

from app.errors import InvalidURLFormatError, NoTranscriptAvailableError
from app.services.youtube_service import YouTubeService

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def fetched_transcript(snippets, language_code="en") -> Mock:
    return Mock(
        snippets=[Mock(text=text, start=start, duration=duration) for text, start, duration in snippets],
        language_code=language_code,
    )


@pytest.fixture
def transcript_api() -> Mock:
    return Mock()


@pytest.fixture
def service(transcript_api) -> YouTubeService:
    return YouTubeService(transcript_api=transcript_api)


class TestYouTubeService:

    @pytest.mark.asyncio
    async def test_fetch_transcript(self, service, transcript_api):
        """
        Expected:
        - snippets joined by newlines
        - duration from the last snippet
        - title and author from oEmbed
        """
        transcript_api.fetch.return_value = fetched_transcript([
            ("hello everyone", 0.0, 2.5),
            ("  ", 2.5, 1.0),
            ("welcome to the talk", 3.5, 4.2),
        ])
        info = {"title": "Test Video", "author_name": "Test Channel"}

        with patch.object(YouTubeService, "fetch_video_info", AsyncMock(return_value=info)):
            video = await service.fetch_transcript(VIDEO_URL)

        assert video.transcript == "hello everyone\nwelcome to the talk"
        assert video.title == "Test Video"
        assert video.metadata.video_id == "dQw4w9WgXcQ"
        assert video.metadata.duration == 8
        assert video.metadata.author == "Test Channel"
        assert video.metadata.view_count is None
        transcript_api.fetch.assert_called_once_with("dQw4w9WgXcQ", languages=["en"])

    @pytest.mark.asyncio
    async def test_serialized_field_names(self, service, transcript_api):
        transcript_api.fetch.return_value = fetched_transcript([("hi", 0.0, 1.0)])

        with patch.object(YouTubeService, "fetch_video_info", AsyncMock(return_value={})):
            video = await service.fetch_transcript("https://youtu.be/dQw4w9WgXcQ", language="de")

        data = video.model_dump(by_alias=True)
        assert data["metadata"]["videoId"] == "dQw4w9WgXcQ"
        assert "viewCount" in data["metadata"]
        assert "uploadDate" in data["metadata"]
        assert data["title"] is None
        transcript_api.fetch.assert_called_once_with("dQw4w9WgXcQ", languages=["de"])

    @pytest.mark.asyncio
    async def test_captions_disabled(self, service, transcript_api):
        """
        Expected: NoTranscriptAvailableError
        """
        transcript_api.fetch.side_effect = TranscriptsDisabled("dQw4w9WgXcQ")

        with pytest.raises(NoTranscriptAvailableError, match="might not have captions"):
            await service.fetch_transcript(VIDEO_URL)

    @pytest.mark.asyncio
    async def test_invalid_url(self, service, transcript_api):
        with pytest.raises(InvalidURLFormatError):
            await service.fetch_transcript("https://vimeo.com/123")

        transcript_api.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_transcript(self, service, transcript_api):
        transcript_api.fetch.return_value = fetched_transcript([])

        with patch.object(YouTubeService, "fetch_video_info", AsyncMock(return_value={})):
            video = await service.fetch_transcript(VIDEO_URL)

        assert video.transcript == ""
        assert video.metadata.duration is None
