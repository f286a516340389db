"""
Data models for the RAG pipeline.
"""
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from app.errors import UnsupportedMediaTypeError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Media types
# ─────────────────────────────────────────────────────────────

PDF_TYPE = "application/pdf"
TEXT_TYPE = "text/plain"
CSV_TYPE = "text/csv"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_TYPE = "application/msword"
HTML_TYPE = "text/html"
YOUTUBE_TYPE = "video/youtube"


class SourceKind(str, Enum):
    FILE = "file"
    URL = "url"
    YOUTUBE = "youtube"
    TEXT = "text"


class MediaKind(str, Enum):
    """Closed set of extraction strategies."""
    PDF = "pdf"
    TEXT = "text"
    CSV = "csv"
    DOCX = "docx"
    HTML = "html"
    YOUTUBE = "youtube"


MEDIA_KINDS: Dict[str, MediaKind] = {
    PDF_TYPE: MediaKind.PDF,
    TEXT_TYPE: MediaKind.TEXT,
    CSV_TYPE: MediaKind.CSV,
    DOCX_TYPE: MediaKind.DOCX,
    DOC_TYPE: MediaKind.DOCX,
    HTML_TYPE: MediaKind.HTML,
    YOUTUBE_TYPE: MediaKind.YOUTUBE,
}


def media_kind_for(media_type: str, source_name: Optional[str] = None) -> MediaKind:
    """Resolve a MIME-type string (parameters ignored) to its MediaKind."""
    base_type = (media_type or "").split(";")[0].strip().lower()
    kind = MEDIA_KINDS.get(base_type)
    if kind is None:
        raise UnsupportedMediaTypeError(media_type or "unknown", source_name=source_name)
    return kind


# ─────────────────────────────────────────────────────────────
# Pipeline models
# ─────────────────────────────────────────────────────────────

class RawSource(BaseModel):
    """Canonical form of any user-supplied source before extraction."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    kind: SourceKind
    media_type: str
    payload: Union[bytes, str]

    @model_validator(mode="after")
    def payload_not_empty(self):
        # An uploaded file may legitimately be zero bytes; extraction tolerates it
        if len(self.payload) == 0 and self.kind != SourceKind.FILE:
            raise ValueError("payload must not be empty")
        return self

    @property
    def size_bytes(self) -> int:
        if isinstance(self.payload, bytes):
            return len(self.payload)
        return len(self.payload.encode("utf-8"))


class Chunk(BaseModel):
    """A bounded slice of a document's text, the unit of embedding and retrieval."""
    text: str
    source_id: str
    source_name: str = ""
    index: int
    media_type: str
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def vector_id(self) -> str:
        return f"{self.source_id}-{self.index}"


class ProcessedDocument(BaseModel):
    id: str
    name: str
    media_type: str
    size_bytes: int
    full_text: str
    chunks: List[Chunk]
    summary: str
    created_at: datetime = Field(default_factory=utc_now)
    processed: bool = True
    vector_stored: Optional[bool] = None


class BatchResult(BaseModel):
    """Outcome of a batch: each input lands in exactly one of the two collections."""
    succeeded: List[ProcessedDocument] = []
    failures: Dict[str, str] = {}

    def _free_key(self, name: str) -> str:
        taken = set(self.failures) | {document.name for document in self.succeeded}
        key = name
        suffix = 2
        while key in taken:
            key = f"{name} ({suffix})"
            suffix += 1
        return key

    def add_failure(self, name: str, message: str) -> str:
        key = self._free_key(name)
        self.failures[key] = message
        return key

    def add_success(self, document: ProcessedDocument) -> None:
        """Record a success; a failure already keyed by the same name moves to a suffixed key."""
        message = self.failures.pop(document.name, None)
        self.succeeded.append(document)
        if message is not None:
            self.failures[self._free_key(document.name)] = message

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failures)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    @property
    def all_failed(self) -> bool:
        return not self.succeeded and self.has_failures

    @property
    def error_summary(self) -> str:
        return "; ".join(f"{name}: {message}" for name, message in self.failures.items())

    @property
    def warning(self) -> Optional[str]:
        if not self.has_failures:
            return None
        return f"{len(self.failures)} of {self.total} sources failed to process: {self.error_summary}"


# ─────────────────────────────────────────────────────────────
# Extracted content (tagged by kind)
# ─────────────────────────────────────────────────────────────

class PdfContent(BaseModel):
    kind: Literal["pdf"] = "pdf"
    pages: List[str] = []

    def as_text(self) -> str:
        return "\n\n".join(page for page in self.pages if page.strip())


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    body: str = ""

    def as_text(self) -> str:
        return self.body


class CsvContent(BaseModel):
    kind: Literal["csv"] = "csv"
    headers: List[str] = []
    rows: List[str] = []

    def as_text(self) -> str:
        return "\n".join(self.rows)


class DocxContent(BaseModel):
    kind: Literal["docx"] = "docx"
    paragraphs: List[str] = []

    def as_text(self) -> str:
        return "\n\n".join(p for p in self.paragraphs if p.strip())


class HtmlContent(BaseModel):
    kind: Literal["html"] = "html"
    url: str
    body: str = ""

    def as_text(self) -> str:
        return self.body


class VideoMetadata(BaseModel):
    language: str
    video_id: str = Field(serialization_alias="videoId")
    duration: Optional[int] = None
    view_count: Optional[int] = Field(default=None, serialization_alias="viewCount")
    upload_date: Optional[str] = Field(default=None, serialization_alias="uploadDate")
    author: Optional[str] = None


class YouTubeTranscript(BaseModel):
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    transcript: str
    metadata: VideoMetadata


class YouTubeContent(BaseModel):
    kind: Literal["youtube"] = "youtube"
    video: YouTubeTranscript

    def as_text(self) -> str:
        return self.video.transcript


ExtractedContent = Annotated[
    Union[PdfContent, TextContent, CsvContent, DocxContent, HtmlContent, YouTubeContent],
    Field(discriminator="kind"),
]


# ─────────────────────────────────────────────────────────────
# Retrieval
# ─────────────────────────────────────────────────────────────

class ExplicitSource(BaseModel):
    """A source the user attached to a question; its content is always used verbatim."""
    id: str = ""
    type: str = "text"
    name: str = "Untitled"
    content: Optional[str] = None


class RetrievedChunk(BaseModel):
    """Model for search results returned from vector query."""
    rank: int
    text: str
    score: float = 0.0
    source_id: str = ""
    source_name: str = ""
    chunk_index: int = 0


class RetrievalContext(BaseModel):
    explicit_sources: List[ExplicitSource] = []
    retrieved_chunks: List[RetrievedChunk] = []

    def render(self) -> str:
        context = ""
        for source in self.explicit_sources:
            if source.content:
                context += f"Source: {source.name}\nContent: {source.content}\n\n"

        if self.retrieved_chunks:
            context += "Relevant information from knowledge base:\n"
            for chunk in self.retrieved_chunks:
                context += f"{chunk.rank}. {chunk.text}\n\n"

        return context

    def source_type_counts(self) -> Dict[str, int]:
        return dict(Counter(source.type for source in self.explicit_sources))
