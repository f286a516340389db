"""
Vector Store Service
Manages chunk vectors in a Pinecone index (the "collection"), connecting lazily on first use.
"""
from typing import Any, List, Optional
import structlog
from pinecone import Pinecone, ServerlessSpec

from app.config import get_settings
from app.errors import PersistenceError
from app.models.schemas import Chunk, RetrievedChunk
from app.services.embedding_service import EmbeddingService

logger = structlog.get_logger()


class VectorStore:
    """Lazily connected Pinecone gateway shared across requests."""

    # Pinecone has a 40KB metadata limit per vector
    MAX_METADATA_TEXT = 8000
    UPSERT_BATCH_SIZE = 100

    def __init__(self):
        self.settings = get_settings()
        self.collection_name = self.settings.vector_collection
        self.pc: Optional[Pinecone] = None
        self.index: Optional[Any] = None

    @property
    def is_connected(self) -> bool:
        return self.index is not None

    def ensure_connected(self, collection_name: Optional[str] = None) -> bool:
        """
        Connect to the configured endpoint and open the collection.

        Idempotent: an existing connection to the same collection is reused.
        The collection is created when it does not exist yet.

        Returns:
            True if connected, False if the store is unavailable
        """
        name = collection_name or self.collection_name
        if self.index is not None and name == self.collection_name:
            return True

        try:
            if self.pc is None:
                self.pc = Pinecone(
                    api_key=self.settings.pinecone_api_key,
                    host=self.settings.vector_store_url or None,
                )

            if not self.pc.has_index(name):
                logger.info(
                    "Creating vector collection",
                    collection=name,
                    dimension=self.settings.embedding_dimensions,
                )
                self.pc.create_index(
                    name=name,
                    dimension=self.settings.embedding_dimensions,
                    metric="cosine",
                    spec=ServerlessSpec(
                        cloud=self.settings.pinecone_cloud,
                        region=self.settings.pinecone_region,
                    ),
                )

            self.index = self.pc.Index(name)
            self.collection_name = name
        except Exception as e:
            logger.warning(
                "Failed to initialize vector store",
                endpoint=self.settings.vector_store_url,
                collection=name,
                error=str(e),
            )
            self.index = None
            return False

        logger.info("Vector store initialized", endpoint=self.settings.vector_store_url, collection=name)
        return True

    def reset(self):
        """Drop the cached connection."""
        self.pc = None
        self.index = None

    def _require_index(self):
        if not self.ensure_connected():
            raise PersistenceError("Failed to initialize vector store")
        return self.index

    async def upsert(self, chunks: List[Chunk], embedder: EmbeddingService) -> int:
        """
        Embed chunks and store them with their metadata.

        Args:
            chunks: Chunks from one or more processed documents
            embedder: Embedding service bound to the caller's API key

        Returns:
            Number of vectors stored

        Raises:
            PersistenceError: If the store is unavailable or the write fails
            EmbeddingError: If embedding fails
        """
        if not chunks:
            raise PersistenceError("No chunks to store")

        index = self._require_index()
        embeddings = await embedder.embed_chunks(chunks)

        logger.info("Upserting vectors", collection=self.collection_name, count=len(chunks))

        vectors = []
        for chunk, embedding in zip(chunks, embeddings):
            text = chunk.text
            if len(text) > self.MAX_METADATA_TEXT:
                text = text[:self.MAX_METADATA_TEXT] + "..."

            vectors.append({
                "id": chunk.vector_id,
                "values": embedding,
                "metadata": {
                    "text": text,
                    "source_id": chunk.source_id,
                    "source_name": chunk.source_name,
                    "chunk_index": chunk.index,
                    "media_type": chunk.media_type,
                    "created_at": chunk.created_at.isoformat(),
                },
            })

        total_upserted = 0
        try:
            for i in range(0, len(vectors), self.UPSERT_BATCH_SIZE):
                batch = vectors[i:i + self.UPSERT_BATCH_SIZE]
                index.upsert(vectors=batch)
                total_upserted += len(batch)

                logger.info(
                    "Batch upserted",
                    batch_num=i // self.UPSERT_BATCH_SIZE + 1,
                    count=len(batch),
                )
        except Exception as e:
            logger.error("Vector upsert failed", error=str(e), stored=total_upserted)
            raise PersistenceError(f"Failed to store documents: {e}") from e

        logger.info("Vectors upserted successfully", total=total_upserted, collection=self.collection_name)
        return total_upserted

    async def similarity_search(self, query: str, embedder: EmbeddingService, k: int = 5) -> List[RetrievedChunk]:
        """
        Find the k chunks most similar to the query.

        Returns:
            RetrievedChunk list ranked 1..k by descending score

        Raises:
            PersistenceError: If the store is unavailable or the query fails
            EmbeddingError: If the query cannot be embedded
        """
        index = self._require_index()
        query_embedding = await embedder.embed_query(query)

        logger.info("Querying vectors", collection=self.collection_name, top_k=k)

        try:
            results = index.query(vector=query_embedding, top_k=k, include_metadata=True)
        except Exception as e:
            logger.error("Vector query failed", error=str(e))
            raise PersistenceError(f"Search failed: {e}") from e

        matches = sorted(results.matches, key=lambda m: m.score or 0.0, reverse=True)
        chunk_results = []
        for rank, match in enumerate(matches, start=1):
            metadata = match.metadata or {}
            chunk_results.append(RetrievedChunk(
                rank=rank,
                text=metadata.get("text", ""),
                score=match.score or 0.0,
                source_id=metadata.get("source_id", ""),
                source_name=metadata.get("source_name", ""),
                chunk_index=int(metadata.get("chunk_index", 0)),
            ))

        logger.info("Query complete", results=len(chunk_results))
        return chunk_results

    async def delete_document(self, source_id: str) -> bool:
        """
        Delete all vectors for a specific document.

        Raises:
            PersistenceError: If the store is unavailable or the delete fails
        """
        index = self._require_index()
        logger.info("Deleting document vectors", collection=self.collection_name, source_id=source_id)

        try:
            index.delete(filter={"source_id": {"$eq": source_id}})
        except Exception as e:
            raise PersistenceError(f"Failed to delete document vectors: {e}") from e

        logger.info("Document vectors deleted", source_id=source_id)
        return True


# Singleton instance
_vector_store: Optional[VectorStore] = None


def get_vector_store() -> VectorStore:
    """Get singleton vector store instance."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore()
    return _vector_store
