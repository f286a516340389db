"""
Embedding Service
Embeds chunk and query text with the caller's OpenAI key; transient provider errors are retried.
"""
from typing import List
import openai
import structlog
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import get_settings
from app.errors import EmbeddingError
from app.models.schemas import Chunk

logger = structlog.get_logger()

# Rate limits and dropped connections are worth another try; bad keys are not
TRANSIENT_ERRORS = (openai.RateLimitError, openai.APIConnectionError)


class EmbeddingService:
    """Generates embeddings with the caller's API key."""

    # Maximum tokens per request (model limit)
    MAX_TOKENS_PER_REQUEST = 8191
    # Batch size for embedding requests
    BATCH_SIZE = 100

    def __init__(self, api_key: str):
        self.settings = get_settings()
        self.client = AsyncOpenAI(api_key=api_key, timeout=self.settings.llm_timeout)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create(self, inputs: List[str]) -> List[List[float]]:
        response = await self.client.embeddings.create(
            model=self.settings.embedding_model,
            input=inputs,
            dimensions=self.settings.embedding_dimensions,
        )
        return [item.embedding for item in response.data]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts efficiently.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            EmbeddingError: If the provider rejects a batch
        """
        logger.info("Generating embeddings", count=len(texts))

        max_chars = self.MAX_TOKENS_PER_REQUEST * 4
        all_embeddings = []

        for i in range(0, len(texts), self.BATCH_SIZE):
            # Truncate long texts (rough estimate: 4 chars per token)
            batch = [t[:max_chars] for t in texts[i:i + self.BATCH_SIZE]]

            try:
                all_embeddings.extend(await self._create(batch))
            except openai.OpenAIError as e:
                logger.error("Batch embedding failed", error=str(e))
                raise EmbeddingError(f"Embedding request failed: {e}") from e

            logger.info(
                "Batch embedded",
                batch_num=i // self.BATCH_SIZE + 1,
                batch_size=len(batch),
            )

        logger.info(
            "Embeddings complete",
            total=len(all_embeddings),
            dimensions=self.settings.embedding_dimensions,
        )

        return all_embeddings

    async def embed_chunks(self, chunks: List[Chunk]) -> List[List[float]]:
        """Generate embeddings for document chunks (one per chunk)."""
        return await self.embed_texts([chunk.text for chunk in chunks])

    async def embed_query(self, query: str) -> List[float]:
        """Generate embedding for a search query."""
        embeddings = await self.embed_texts([query])
        return embeddings[0]
