"""
Application Configuration
Loads environment variables and provides typed configuration.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App Settings
    environment: str = "development"
    log_level: str = "INFO"

    # Vector store (Pinecone, local endpoint by default)
    pinecone_api_key: str = "pclocal"
    vector_store_url: str = "http://localhost:5080"
    vector_collection: str = "rag-documents"
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"

    # Embedding Settings
    embedding_model: str = "text-embedding-3-large"
    embedding_dimensions: int = 3072

    # Chat completion Settings
    chat_model: str = "gpt-4o-mini"
    groq_chat_model: str = "llama-3.1-8b-instant"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    chat_temperature: float = 0.0
    chat_max_tokens: int = 1000

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Retrieval
    retrieval_k: int = 5
    max_context_chars: int = 24000

    # Request limits
    max_sources: int = 50
    preview_chars: int = 500

    # Timeouts (seconds)
    http_timeout: float = 30.0
    extraction_timeout: float = 120.0
    llm_timeout: float = 60.0

    # YouTube
    youtube_language: str = "en"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
