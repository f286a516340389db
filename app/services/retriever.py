"""
Retriever
Merges explicitly attached sources with vector-similarity results into a RetrievalContext.
"""
from typing import List, Optional
import structlog

from app.config import get_settings
from app.errors import EmbeddingError, PersistenceError
from app.models.schemas import ExplicitSource, RetrievalContext, RetrievedChunk
from app.services.embedding_service import EmbeddingService
from app.services.vector_store import VectorStore, get_vector_store

logger = structlog.get_logger()


class Retriever:
    """Builds the per-question context; the vector store is optional."""

    def __init__(self, embedder: EmbeddingService, vector_store: Optional[VectorStore] = None):
        self.settings = get_settings()
        self.embedder = embedder
        self.vector_store = vector_store or get_vector_store()

    async def build_context(
        self,
        question: str,
        sources: List[ExplicitSource],
        k: Optional[int] = None,
    ) -> RetrievalContext:
        """
        Build the retrieval context for a question.

        Args:
            question: User question
            sources: Explicitly attached sources, always included verbatim
            k: Number of similarity results (default from settings)

        Returns:
            RetrievalContext with explicit sources and ranked chunks
        """
        if k is None:
            k = self.settings.retrieval_k

        try:
            retrieved = await self.vector_store.similarity_search(question, self.embedder, k=k)
        except (PersistenceError, EmbeddingError) as e:
            logger.warning("Vector search unavailable, using attached sources only", error=e.message)
            retrieved = []

        context = RetrievalContext(
            explicit_sources=list(sources),
            retrieved_chunks=self._bound(retrieved),
        )

        logger.info(
            "Context built",
            explicit_sources=len(context.explicit_sources),
            retrieved_chunks=len(context.retrieved_chunks),
        )
        return context

    def _bound(self, retrieved: List[RetrievedChunk]) -> List[RetrievedChunk]:
        """Keep retrieved chunks, in rank order, until the character budget is spent."""
        budget = self.settings.max_context_chars
        kept = []
        used = 0
        for chunk in retrieved:
            if kept and used + len(chunk.text) > budget:
                break
            kept.append(chunk)
            used += len(chunk.text)
        return kept
