"""
Batch Processor
Runs extraction and chunking across a set of sources with per-item failure isolation.
"""
from typing import List, Optional
import structlog

from app.errors import RAGPipelineError
from app.models.schemas import BatchResult, ProcessedDocument, RawSource
from app.services.chunking_service import ChunkingService, get_chunking_service
from app.services.content_extractor import ContentExtractor, get_content_extractor

logger = structlog.get_logger()


def empty_placeholder(name: str) -> str:
    return f"Empty or unreadable file: {name}"


class BatchProcessor:
    """Processes sources one at a time; a failing source never aborts the batch."""

    def __init__(
        self,
        extractor: Optional[ContentExtractor] = None,
        chunker: Optional[ChunkingService] = None,
    ):
        self.extractor = extractor or get_content_extractor()
        self.chunker = chunker or get_chunking_service()

    async def process_source(self, source: RawSource) -> ProcessedDocument:
        """
        Extract, chunk and summarize a single source.

        Args:
            source: Normalized source

        Returns:
            ProcessedDocument with at least one chunk

        Raises:
            RAGPipelineError: If extraction fails unrecoverably
        """
        content = await self.extractor.extract(source)
        text = content.as_text()
        if not text.strip():
            logger.warning("No text extracted, using placeholder", source=source.name)
            text = empty_placeholder(source.name)

        chunks = self.chunker.chunk_document(source, text, placeholder=empty_placeholder(source.name))

        return ProcessedDocument(
            id=source.id,
            name=source.name,
            media_type=source.media_type,
            size_bytes=source.size_bytes,
            full_text=text,
            chunks=chunks,
            summary=self.chunker.summarize(text, len(chunks)),
        )

    async def process_batch(self, sources: List[RawSource], result: Optional[BatchResult] = None) -> BatchResult:
        """
        Process every source, collecting successes and failures independently.

        Args:
            sources: Normalized sources, processed in submission order
            result: Existing result to extend (e.g. holding validation failures)

        Returns:
            BatchResult where each source appears exactly once
        """
        result = result if result is not None else BatchResult()
        logger.info("Stage: Starting batch processing", count=len(sources))

        for source in sources:
            try:
                document = await self.process_source(source)
            except RAGPipelineError as e:
                key = result.add_failure(source.name, e.message)
                logger.warning("Source failed", source=key, error=e.message)
                continue
            except Exception as e:
                key = result.add_failure(source.name, f"Failed to process {source.name}: {e}")
                logger.error("Source failed unexpectedly", source=key, error=str(e))
                continue

            result.add_success(document)
            logger.info("Source processed", source=source.name, chunks=len(document.chunks))

        logger.info(
            "Stage: Batch processing finished",
            succeeded=len(result.succeeded),
            failed=len(result.failures),
        )
        return result


# Singleton instance
_batch_processor: Optional[BatchProcessor] = None


def get_batch_processor() -> BatchProcessor:
    """Get singleton batch processor instance."""
    global _batch_processor
    if _batch_processor is None:
        _batch_processor = BatchProcessor()
    return _batch_processor
