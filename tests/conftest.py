"""
Shared Test Fixtures for RAG Pipeline Tests

This file contains:
- FastAPI TestClient setup
- Mock fixtures for external services (OpenAI, Pinecone, unstructured)
- Test data generators
- Singleton reset between tests
"""
import base64
import pytest
from typing import Generator, List, Optional
from unittest.mock import Mock, AsyncMock, patch
from fastapi.testclient import TestClient
import os
import sys

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.main import app
from app.models.schemas import (
    PDF_TYPE,
    TEXT_TYPE,
    ExplicitSource,
    RetrievalContext,
    RetrievedChunk,
    VideoMetadata,
    YouTubeTranscript,
)
import app.services.batch_processor as batch_processor_module
import app.services.chunking_service as chunking_module
import app.services.content_extractor as extractor_module
import app.services.source_normalizer as normalizer_module
import app.services.vector_store as vector_store_module
import app.services.youtube_service as youtube_module


# ═══════════════════════════════════════════════════════════════
# SINGLETON RESET
# ═══════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def reset_singletons():
    """Every test starts with fresh service singletons (no cached connections)."""
    modules = [
        (vector_store_module, "_vector_store"),
        (batch_processor_module, "_batch_processor"),
        (extractor_module, "_content_extractor"),
        (chunking_module, "_chunking_service"),
        (normalizer_module, "_source_normalizer"),
        (youtube_module, "_youtube_service"),
    ]
    for module, attr in modules:
        setattr(module, attr, None)
    yield
    for module, attr in modules:
        setattr(module, attr, None)


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Synchronous FastAPI test client."""
    with TestClient(app) as c:
        yield c


# ═══════════════════════════════════════════════════════════════
# MOCK FIXTURES
# ═══════════════════════════════════════════════════════════════

def fake_embeddings(**kwargs):
    """One small vector per input text."""
    return Mock(data=[Mock(embedding=[0.1] * 8) for _ in kwargs["input"]])


@pytest.fixture
def mock_openai():
    """Mock OpenAI clients for embeddings and chat completions."""
    with patch("app.services.embedding_service.AsyncOpenAI") as embed_mock, \
         patch("app.services.answer_generator.AsyncOpenAI") as chat_mock:

        embed_mock.return_value.embeddings.create = AsyncMock(side_effect=fake_embeddings)

        chat_mock.return_value.chat.completions.create = AsyncMock(
            return_value=Mock(choices=[Mock(message=Mock(content="Test answer from the sources"))])
        )

        yield {"embedding": embed_mock, "chat": chat_mock}


@pytest.fixture
def mock_pinecone():
    """Mock Pinecone client for vector store tests."""
    with patch("app.services.vector_store.Pinecone") as mock:
        mock.return_value.has_index.return_value = True
        mock.return_value.Index.return_value.upsert.return_value = {"upserted_count": 10}
        mock.return_value.Index.return_value.delete.return_value = {}
        mock.return_value.Index.return_value.query.return_value = Mock(matches=[])
        yield mock


@pytest.fixture
def pinecone_down():
    """Pinecone endpoint that refuses connections."""
    with patch("app.services.vector_store.Pinecone", side_effect=ConnectionError("connection refused")) as mock:
        yield mock


def make_element(text: str, page_number: Optional[int] = 1) -> Mock:
    """Stand-in for an unstructured Element."""
    return Mock(text=text, metadata=Mock(page_number=page_number))


class FakeChatStream:
    """Async iterable mimicking an OpenAI streaming response."""

    def __init__(self, deltas: List[Optional[str]], error: Optional[Exception] = None):
        self.deltas = deltas
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._events()

    async def _events(self):
        for delta in self.deltas:
            yield Mock(choices=[Mock(delta=Mock(content=delta))])
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


# ═══════════════════════════════════════════════════════════════
# TEST DATA FIXTURES
# ═══════════════════════════════════════════════════════════════

def data_url(content: bytes, media_type: str) -> str:
    """Encode bytes the way the browser sends uploaded files."""
    return f"data:{media_type};base64,{base64.b64encode(content).decode('ascii')}"


@pytest.fixture
def api_key() -> str:
    return "sk-test-key"


@pytest.fixture
def sample_text() -> str:
    """Multi-paragraph text long enough to produce several chunks."""
    paragraph = (
        "Retrieval augmented generation combines a search step with a language model. "
        "Documents are split into chunks, embedded, and stored for similarity search. "
    )
    return "\n\n".join(paragraph * 3 for _ in range(12))


@pytest.fixture
def sample_text_document(sample_text) -> dict:
    return {
        "id": "doc-text-1",
        "name": "notes.txt",
        "type": TEXT_TYPE,
        "size": len(sample_text),
        "content": data_url(sample_text.encode("utf-8"), TEXT_TYPE),
    }


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal valid PDF bytes for testing."""
    return b"""%PDF-1.4
1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj
2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj
3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >> endobj
trailer << /Size 4 /Root 1 0 R >>
%%EOF"""


@pytest.fixture
def sample_pdf_document(sample_pdf_bytes) -> dict:
    return {
        "id": "doc-pdf-1",
        "name": "report.pdf",
        "type": PDF_TYPE,
        "size": len(sample_pdf_bytes),
        "content": data_url(sample_pdf_bytes, PDF_TYPE),
    }


@pytest.fixture
def sample_transcript() -> YouTubeTranscript:
    return YouTubeTranscript(
        url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        title="Test Video",
        transcript="hello everyone\nwelcome to the talk",
        metadata=VideoMetadata(language="en", video_id="dQw4w9WgXcQ", duration=212, author="Test Channel"),
    )


@pytest.fixture
def explicit_sources() -> List[ExplicitSource]:
    return [
        ExplicitSource(id="s1", type="file", name="report.pdf", content="Revenue grew 12% in 2023."),
        ExplicitSource(id="s2", type="file", name="plan.docx", content="Hire two engineers."),
        ExplicitSource(id="s3", type="text", name="Pasted Text", content="The launch is in May."),
    ]


@pytest.fixture
def retrieval_context(explicit_sources) -> RetrievalContext:
    return RetrievalContext(
        explicit_sources=explicit_sources,
        retrieved_chunks=[RetrievedChunk(rank=1, text="Q3 revenue was flat.", score=0.91, source_id="s1")],
    )
