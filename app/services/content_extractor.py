"""
Content Extractor
Turns a RawSource into plain text using a per-media-kind strategy registry.
"""
import asyncio
import io
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import structlog
from unstructured.documents.elements import Element
from unstructured.partition.auto import partition

from app.config import get_settings
from app.errors import ExtractionError, NoContentExtractedError, RAGPipelineError
from app.models.schemas import (
    HTML_TYPE,
    CsvContent,
    DocxContent,
    ExtractedContent,
    HtmlContent,
    MediaKind,
    PdfContent,
    RawSource,
    TextContent,
    YouTubeContent,
    media_kind_for,
)
from app.services.youtube_service import YouTubeService, get_youtube_service

logger = structlog.get_logger()

_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; rag-sources/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


def split_csv_line(line: str) -> List[str]:
    """
    Split one CSV line on commas outside double quotes.

    Raises:
        ValueError: If a quoted field is not terminated on the line
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    if in_quotes:
        raise ValueError("Unterminated quoted field")
    fields.append("".join(current).strip())
    return fields


def parse_csv(text: str) -> CsvContent:
    """
    Parse CSV text into "header: value, header: value" rows.

    Raises:
        ValueError: On structural problems (no data rows, ragged rows, bad quoting)
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError("CSV needs a header row and at least one data row")

    headers = split_csv_line(lines[0])
    rows = []
    for line_no, line in enumerate(lines[1:], start=2):
        values = split_csv_line(line)
        if len(values) != len(headers):
            raise ValueError(f"Row {line_no} has {len(values)} fields, expected {len(headers)}")
        rows.append(", ".join(f"{header}: {value}" for header, value in zip(headers, values)))

    return CsvContent(headers=headers, rows=rows)


@dataclass
class ExtractionAttempt:
    """One step of a strategy; later steps run when this one is empty or (optionally) raises."""
    name: str
    run: Callable[[RawSource], Awaitable[ExtractedContent]]
    fallback_on_error: bool = False


class ContentExtractor:
    """Extracts plain text from files, web pages and YouTube videos."""

    def __init__(self, youtube_service: Optional[YouTubeService] = None):
        self.settings = get_settings()
        self.youtube_service = youtube_service or get_youtube_service()
        self.strategies: Dict[MediaKind, List[ExtractionAttempt]] = {
            MediaKind.PDF: [
                ExtractionAttempt("partition", self._extract_pdf, fallback_on_error=True),
                ExtractionAttempt("partition-fast", self._extract_pdf_fast),
            ],
            MediaKind.TEXT: [
                ExtractionAttempt("utf8", self._extract_text),
            ],
            MediaKind.CSV: [
                ExtractionAttempt("csv-rows", self._extract_csv_rows, fallback_on_error=True),
                ExtractionAttempt("raw-text", self._extract_text),
            ],
            MediaKind.DOCX: [
                ExtractionAttempt("partition", self._extract_docx),
            ],
            MediaKind.HTML: [
                ExtractionAttempt("fetch-page", self._extract_html),
            ],
            MediaKind.YOUTUBE: [
                ExtractionAttempt("transcript", self._extract_youtube),
            ],
        }

    async def extract(self, source: RawSource) -> ExtractedContent:
        """
        Extract plain text from a source.

        Empty results are returned as-is; callers substitute placeholder text.

        Raises:
            UnsupportedMediaTypeError: If the media type has no strategy
            ExtractionError: If the strategy fails unrecoverably
        """
        kind = media_kind_for(source.media_type, source_name=source.name)
        attempts = self.strategies[kind]
        timeout = self.settings.extraction_timeout

        logger.info("Extracting content", source=source.name, media_kind=kind.value)

        for position, attempt in enumerate(attempts):
            is_last = position == len(attempts) - 1
            try:
                content = await asyncio.wait_for(attempt.run(source), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise ExtractionError(
                    f"Extraction of {source.name} timed out after {timeout:.0f}s",
                    source_name=source.name,
                ) from e
            except Exception as e:
                if attempt.fallback_on_error and not is_last:
                    logger.warning(
                        "Extraction attempt failed, falling back",
                        source=source.name,
                        attempt=attempt.name,
                        error=str(e),
                    )
                    continue
                if isinstance(e, RAGPipelineError):
                    raise
                raise ExtractionError(
                    f"Failed to process file {source.name}: {e}",
                    source_name=source.name,
                ) from e

            if content.as_text().strip() or is_last:
                logger.info(
                    "Content extracted",
                    source=source.name,
                    attempt=attempt.name,
                    chars=len(content.as_text()),
                )
                return content

            logger.warning("Extraction attempt returned no text", source=source.name, attempt=attempt.name)

    # ─────────────────────────────────────────────────────────────
    # Strategies
    # ─────────────────────────────────────────────────────────────

    async def _extract_pdf(self, source: RawSource, strategy: str = "auto") -> PdfContent:
        elements = await asyncio.to_thread(
            self._partition, self._payload_bytes(source), source.media_type, source.name, strategy
        )
        pages: Dict[int, List[str]] = {}
        for el in elements:
            text = self.get_element_text(el).strip()
            if not text:
                continue
            page_number = getattr(el.metadata, "page_number", None) or 1
            pages.setdefault(page_number, []).append(text)

        return PdfContent(pages=["\n".join(pages[n]) for n in sorted(pages)])

    async def _extract_pdf_fast(self, source: RawSource) -> PdfContent:
        # Text-only but very robust
        return await self._extract_pdf(source, strategy="fast")

    async def _extract_docx(self, source: RawSource) -> DocxContent:
        elements = await asyncio.to_thread(
            self._partition, self._payload_bytes(source), source.media_type, source.name
        )
        return DocxContent(paragraphs=[self.get_element_text(el).strip() for el in elements])

    async def _extract_text(self, source: RawSource) -> TextContent:
        return TextContent(body=self._decode(source))

    async def _extract_csv_rows(self, source: RawSource) -> CsvContent:
        return parse_csv(self._decode(source))

    async def _extract_html(self, source: RawSource) -> HtmlContent:
        url = self._decode(source).strip()
        try:
            data, content_type = await self._fetch_page(url)
        except httpx.HTTPStatusError as e:
            raise ExtractionError(
                f"HTTP {e.response.status_code} for {url}", source_name=source.name
            ) from e
        except httpx.HTTPError as e:
            raise ExtractionError(f"HTTP error fetching {url}: {e}", source_name=source.name) from e

        elements = await asyncio.to_thread(self._partition, data, content_type, url)
        text = "\n\n".join(t for t in (self.get_element_text(el).strip() for el in elements) if t)
        if not text:
            raise NoContentExtractedError(f"No content could be extracted from {url}", source_name=source.name)
        return HtmlContent(url=url, body=text)

    async def _extract_youtube(self, source: RawSource) -> YouTubeContent:
        video = await self.youtube_service.fetch_transcript(self._decode(source).strip())
        return YouTubeContent(video=video)

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    async def _fetch_page(self, url: str) -> Tuple[bytes, str]:
        """Fetch a page; returns (body, content type without parameters)."""
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout,
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()

        content_type = response.headers.get("content-type", HTML_TYPE).split(";")[0].strip() or HTML_TYPE
        logger.info("Page fetched", url=url, content_type=content_type, size_bytes=len(response.content))
        return response.content, content_type

    def _partition(self, data: bytes, content_type: str, name: str, strategy: str = "auto") -> List[Element]:
        return partition(
            file=io.BytesIO(data),
            content_type=content_type,
            metadata_filename=name,
            strategy=strategy,
        )

    def _payload_bytes(self, source: RawSource) -> bytes:
        if isinstance(source.payload, bytes):
            return source.payload
        return source.payload.encode("utf-8")

    def _decode(self, source: RawSource) -> str:
        """Strict UTF-8; undecodable payloads are unrecoverable."""
        if isinstance(source.payload, str):
            return source.payload
        return source.payload.decode("utf-8-sig")

    def get_element_text(self, element: Element) -> str:
        """Get text content from an element."""
        if hasattr(element, "text"):
            return str(element.text)
        return str(element)


# Singleton instance
_content_extractor: Optional[ContentExtractor] = None


def get_content_extractor() -> ContentExtractor:
    """Get singleton content extractor instance."""
    global _content_extractor
    if _content_extractor is None:
        _content_extractor = ContentExtractor()
    return _content_extractor
