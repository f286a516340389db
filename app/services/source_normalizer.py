"""
Source Normalizer
Turns uploaded files, web links, YouTube links and pasted text into RawSource objects.
"""
import base64
import binascii
import os
import re
from typing import List, Optional, Union
from urllib.parse import urlparse

import structlog

from app.errors import InputValidationError, InvalidURLFormatError, UnsupportedMediaTypeError
from app.models.schemas import (
    CSV_TYPE,
    DOC_TYPE,
    DOCX_TYPE,
    HTML_TYPE,
    PDF_TYPE,
    TEXT_TYPE,
    YOUTUBE_TYPE,
    RawSource,
    SourceKind,
)

logger = structlog.get_logger()

PASTED_TEXT_NAME = "Pasted Text"

# Accepted YouTube link shapes (scheme and www./m. prefixes optional)
YOUTUBE_URL_PATTERNS = [
    re.compile(r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/watch\?(?:.*&)?v=[\w-]+", re.IGNORECASE),
    re.compile(r"^(?:https?://)?youtu\.be/[\w-]+", re.IGNORECASE),
    re.compile(r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/embed/[\w-]+", re.IGNORECASE),
    re.compile(r"^(?:https?://)?(?:www\.|m\.)?youtube\.com/v/[\w-]+", re.IGNORECASE),
]

# Tried in order, first match wins
VIDEO_ID_PATTERNS = [
    re.compile(r"youtube\.com/watch\?(?:.*&)?v=([\w-]+)", re.IGNORECASE),
    re.compile(r"youtu\.be/([\w-]+)", re.IGNORECASE),
    re.compile(r"youtube\.com/embed/([\w-]+)", re.IGNORECASE),
    re.compile(r"youtube\.com/v/([\w-]+)", re.IGNORECASE),
]

_DATA_URL = re.compile(r"^data:(?P<type>[^;,]*)(?P<params>(?:;[^,]*)?),(?P<data>.*)$", re.DOTALL)


def is_youtube_url(url: str) -> bool:
    candidate = (url or "").strip()
    return any(pattern.match(candidate) for pattern in YOUTUBE_URL_PATTERNS)


def extract_video_id(url: str) -> str:
    """Extract the video id from any accepted YouTube link shape."""
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    raise InvalidURLFormatError(f"Invalid YouTube URL format: {url}", source_name=url)


def is_valid_url(url: str) -> bool:
    """Absolute http(s) URL with a host."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(parsed.hostname)


class SourceNormalizer:
    """Builds canonical RawSource objects from the four accepted input shapes."""

    # Extension fallback when the declared type is missing or generic
    EXTENSION_TYPES = {
        ".pdf": PDF_TYPE,
        ".txt": TEXT_TYPE,
        ".csv": CSV_TYPE,
        ".docx": DOCX_TYPE,
        ".doc": DOC_TYPE,
    }

    FILE_TYPES = {PDF_TYPE, TEXT_TYPE, CSV_TYPE, DOCX_TYPE, DOC_TYPE}

    GENERIC_TYPES = {"", "application/octet-stream"}

    def from_file(
        self,
        name: str,
        content: Union[bytes, str, None],
        declared_type: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> RawSource:
        """
        Normalize an uploaded file.

        Args:
            name: Original filename
            content: Raw bytes, a base64 data URL, or plain text
            declared_type: MIME type reported by the client
            source_id: Client-assigned id to keep

        Returns:
            RawSource with a supported media type

        Raises:
            UnsupportedMediaTypeError: If the file type is not supported
            InputValidationError: If no content was sent at all
        """
        safe_name = self._sanitize_filename(name or "untitled")
        if not content:
            raise InputValidationError(f"Invalid document format for {safe_name}", source_name=safe_name)

        payload, data_url_type = self._decode_content(content, safe_name)
        media_type = self.detect_media_type(safe_name, declared_type or data_url_type)

        logger.info("Normalized file source", name=safe_name, media_type=media_type, size_bytes=len(payload))
        return self._build(SourceKind.FILE, safe_name, media_type, payload, source_id)

    def from_url(self, url: str, source_id: Optional[str] = None) -> RawSource:
        """Web page source; the page itself is fetched later by the extractor."""
        candidate = (url or "").strip()
        if not is_valid_url(candidate):
            raise InputValidationError(f"Invalid URL: {url}", source_name=url)
        return self._build(SourceKind.URL, candidate, HTML_TYPE, candidate, source_id)

    def from_youtube(self, url: str, source_id: Optional[str] = None) -> RawSource:
        candidate = (url or "").strip()
        if not is_youtube_url(candidate):
            raise InvalidURLFormatError(f"Invalid YouTube URL format: {url}", source_name=url)
        extract_video_id(candidate)
        return self._build(SourceKind.YOUTUBE, candidate, YOUTUBE_TYPE, candidate, source_id)

    def from_text(self, text: str, name: str = PASTED_TEXT_NAME, source_id: Optional[str] = None) -> RawSource:
        if not text:
            raise InputValidationError("Text is required", source_name=name)
        return self._build(SourceKind.TEXT, name or PASTED_TEXT_NAME, TEXT_TYPE, text, source_id)

    def classify_url(self, url: str) -> RawSource:
        """Route YouTube links to transcript extraction, everything else to page fetching."""
        if is_youtube_url(url):
            return self.from_youtube(url)
        return self.from_url(url)

    def detect_media_type(self, name: str, declared_type: Optional[str] = None) -> str:
        """
        Pick the media type from the declared type, falling back to the extension.

        Raises:
            UnsupportedMediaTypeError: If neither yields a supported file type
        """
        declared = (declared_type or "").split(";")[0].strip().lower()
        if declared not in self.GENERIC_TYPES and declared in self.FILE_TYPES:
            return declared

        ext = os.path.splitext(name)[1].lower()
        if ext in self.EXTENSION_TYPES:
            if declared not in self.GENERIC_TYPES:
                logger.warning(
                    "Declared type not supported, using extension",
                    declared_type=declared,
                    extension=ext,
                )
            return self.EXTENSION_TYPES[ext]

        raise UnsupportedMediaTypeError(declared or ext or "unknown", source_name=name)

    def is_supported(self, name: str, declared_type: Optional[str] = None) -> bool:
        try:
            self.detect_media_type(name, declared_type)
        except UnsupportedMediaTypeError:
            return False
        return True

    def supported_extensions(self) -> List[str]:
        return sorted(self.EXTENSION_TYPES)

    def _decode_content(self, content: Union[bytes, str, None], name: str):
        """Return (payload bytes, type embedded in a data URL if any)."""
        if content is None:
            return b"", None
        if isinstance(content, bytes):
            return content, None

        match = _DATA_URL.match(content)
        if not match:
            return content.encode("utf-8"), None

        data = match.group("data")
        if ";base64" in match.group("params"):
            try:
                return base64.b64decode(data, validate=False), match.group("type") or None
            except (binascii.Error, ValueError) as e:
                raise InputValidationError(f"Invalid document format for {name}: {e}", source_name=name) from e
        return data.encode("utf-8"), match.group("type") or None

    def _sanitize_filename(self, filename: str) -> str:
        """Create a safe filename."""
        filename = os.path.basename(filename.replace("\\", "/"))
        for char in ["..", "\x00"]:
            filename = filename.replace(char, "_")
        return filename or "untitled"

    def _build(self, kind: SourceKind, name: str, media_type: str, payload, source_id: Optional[str]) -> RawSource:
        fields = {"name": name, "kind": kind, "media_type": media_type, "payload": payload}
        if source_id:
            fields["id"] = source_id
        return RawSource(**fields)


# Singleton instance
_source_normalizer: Optional[SourceNormalizer] = None


def get_source_normalizer() -> SourceNormalizer:
    """Get singleton source normalizer instance."""
    global _source_normalizer
    if _source_normalizer is None:
        _source_normalizer = SourceNormalizer()
    return _source_normalizer
