"""
Chunking Service
Splits extracted text into overlapping fixed-size chunks for embedding and retrieval.
"""
from typing import List, Optional
import structlog

from langchain_text_splitters import RecursiveCharacterTextSplitter

from app.config import get_settings
from app.models.schemas import Chunk, RawSource, utc_now

logger = structlog.get_logger()

EMPTY_TEXT_PLACEHOLDER = "Empty or unreadable content"


class ChunkingService:
    """Recursive character splitting: paragraphs, then lines, then words, then characters."""

    SEPARATORS = ["\n\n", "\n", " ", ""]

    def __init__(self, chunk_size: Optional[int] = None, chunk_overlap: Optional[int] = None):
        self.settings = get_settings()
        self.chunk_size = chunk_size or self.settings.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else self.settings.chunk_overlap
        # Overlap is stitched on after splitting; leave room for it plus one joining character
        window = self.chunk_size - self.chunk_overlap - 1 if self.chunk_overlap else self.chunk_size
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=window,
            chunk_overlap=0,
            separators=self.SEPARATORS,
        )

    def split(self, text: str, placeholder: str = EMPTY_TEXT_PLACEHOLDER) -> List[str]:
        """
        Split text into chunks of at most chunk_size characters.

        Args:
            text: Extracted plain text
            placeholder: Text of the single chunk returned for empty input

        Returns:
            Ordered, never-empty list of chunk texts
        """
        if not text or not text.strip():
            return [placeholder]

        parts = self.splitter.split_text(text)
        if not parts:
            return [placeholder]
        return self._stitch(text, parts)

    def _stitch(self, text: str, parts: List[str]) -> List[str]:
        """Repeat the last chunk_overlap characters of each chunk at the start of the next."""
        if not self.chunk_overlap:
            return parts

        chunks = [parts[0]]
        cursor = max(text.find(parts[0]), 0) + len(parts[0])
        for part in parts[1:]:
            start = text.find(part, cursor)
            gap = text[cursor:start] if start >= 0 else " "
            if "\n" in gap:
                joiner = "\n"
            elif gap:
                joiner = " "
            else:
                joiner = ""  # split inside an unbreakable run
            chunks.append(chunks[-1][-self.chunk_overlap:] + joiner + part)
            if start >= 0:
                cursor = start + len(part)
        return chunks

    def chunk_document(self, source: RawSource, text: str, placeholder: str = EMPTY_TEXT_PLACEHOLDER) -> List[Chunk]:
        """Split a document's text into Chunk objects indexed 0..n-1."""
        created_at = utc_now()
        chunks = [
            Chunk(
                text=part,
                source_id=source.id,
                source_name=source.name,
                index=idx,
                media_type=source.media_type,
                created_at=created_at,
            )
            for idx, part in enumerate(self.split(text, placeholder=placeholder))
        ]

        logger.info(
            "Chunking complete",
            source=source.name,
            chunks=len(chunks),
            chars=len(text),
        )
        return chunks

    def summarize(self, text: str, chunk_count: int) -> str:
        """Human-readable word/char/chunk counts."""
        word_count = len(text.split())
        char_count = len(text)
        return (
            f"Document processed successfully. Contains {word_count} words, "
            f"{char_count} characters, split into {chunk_count} chunks for optimal AI processing."
        )


# Singleton
_chunking_service: Optional[ChunkingService] = None


def get_chunking_service() -> ChunkingService:
    """Get singleton chunking service instance."""
    global _chunking_service
    if _chunking_service is None:
        _chunking_service = ChunkingService()
    return _chunking_service
