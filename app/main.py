"""
FastAPI Application
Source ingestion (files, links, YouTube, pasted text) and question answering over them.
"""
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Tuple
import logging
import structlog

from app.config import get_settings
from app.errors import (
    EmbeddingError,
    ExtractionError,
    InputValidationError,
    NoTranscriptAvailableError,
    PersistenceError,
    UnsupportedMediaTypeError,
)
from app.models.schemas import BatchResult, ExplicitSource, ProcessedDocument, RawSource, utc_now
from app.services.answer_generator import AnswerGenerator
from app.services.batch_processor import get_batch_processor
from app.services.embedding_service import EmbeddingService
from app.services.retriever import Retriever
from app.services.source_normalizer import PASTED_TEXT_NAME, get_source_normalizer, is_valid_url, is_youtube_url
from app.services.vector_store import get_vector_store
from app.services.youtube_service import get_youtube_service

settings = get_settings()

# Configure logging for terminal readability
logging.basicConfig(level=settings.log_level.upper(), format="%(message)s")
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.ConsoleRenderer()  # Human-readable format in terminal
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title="RAG Sources API",
    description="Add sources, then ask questions grounded in them",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────

class DocumentInput(BaseModel):
    id: Optional[str] = None
    name: str = "untitled"
    type: Optional[str] = None      # MIME type declared by the browser
    size: Optional[int] = None
    content: Optional[str] = None   # data: URL (base64) or plain text


class DocumentsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    documents: List[DocumentInput] = []
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    provider: str = "openai"


class UrlsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    urls: List[str] = []
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    provider: str = "openai"


class TextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    name: str = PASTED_TEXT_NAME
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    provider: str = "openai"


class YouTubeRequest(BaseModel):
    url: str = ""
    language: Optional[str] = None


class RAGRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    sources: List[ExplicitSource] = []
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    provider: str = "openai"
    stream: bool = True
    k: Optional[int] = Field(default=None, ge=1)


class DocumentSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: str
    size: int
    processed: bool
    chunks: int                     # chunk count
    summary: str
    timestamp: str
    content: str                    # truncated preview
    vector_stored: Optional[bool] = Field(default=None, alias="vectorStored")


class VectorStoreResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    stored_chunks: int = Field(alias="storedChunks")
    message: str


class IngestResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    documents: List[DocumentSummary]
    vector_store_result: Optional[VectorStoreResult] = Field(default=None, alias="vectorStoreResult")
    warning: Optional[str] = None
    failures: Dict[str, str] = {}
    timestamp: str


def timestamp() -> str:
    return utc_now().isoformat()


# ─────────────────────────────────────────────────────────────
# Ingestion helpers
# ─────────────────────────────────────────────────────────────

def to_summary(document: ProcessedDocument) -> DocumentSummary:
    limit = settings.preview_chars
    preview = document.full_text[:limit] + ("..." if len(document.full_text) > limit else "")
    return DocumentSummary(
        id=document.id,
        name=document.name,
        type=document.media_type,
        size=document.size_bytes,
        processed=document.processed,
        chunks=len(document.chunks),
        summary=document.summary,
        timestamp=document.created_at.isoformat(),
        content=preview,
        vector_stored=document.vector_stored,
    )


async def store_documents(documents: List[ProcessedDocument], api_key: str) -> Optional[VectorStoreResult]:
    """
    Embed and store all chunks of the processed documents.

    Vector store or embedding failures are logged and do not fail ingestion.
    """
    chunks = [chunk for document in documents for chunk in document.chunks]
    logger.info("Stage: Storing vectors in Vector Database...", chunks=len(chunks))

    try:
        stored = await get_vector_store().upsert(chunks, EmbeddingService(api_key))
    except (PersistenceError, EmbeddingError) as e:
        logger.warning("Failed to store in vector database, continuing without persistence", error=e.message)
        for document in documents:
            document.vector_stored = False
        return None

    for document in documents:
        document.vector_stored = True
    return VectorStoreResult(
        success=True,
        stored_chunks=stored,
        message=f"Successfully stored {stored} chunks in vector database",
    )


async def ingest_sources(
    sources: List[RawSource],
    rejected: List[Tuple[str, str]],
    api_key: str,
) -> IngestResponse:
    """Run the batch, persist what succeeded, and shape the response."""
    result = BatchResult()
    for name, message in rejected:
        result.add_failure(name, message)

    result = await get_batch_processor().process_batch(sources, result)

    if not result.succeeded:
        logger.error("Stage: All sources failed", failures=result.failures)
        raise HTTPException(
            status_code=400,
            detail=f"No sources were processed successfully: {result.error_summary}",
        )

    vector_result = await store_documents(result.succeeded, api_key)

    if result.has_failures:
        logger.warning("Stage: Ingestion finished with failures", warning=result.warning)
    else:
        logger.info("Stage: Ingestion complete", documents=len(result.succeeded))

    return IngestResponse(
        success=True,
        documents=[to_summary(document) for document in result.succeeded],
        vector_store_result=vector_result,
        warning=result.warning,
        failures=result.failures,
        timestamp=timestamp(),
    )


# ─────────────────────────────────────────────────────────────
# API 1: Documents (uploaded files)
# ─────────────────────────────────────────────────────────────

@app.post("/documents", response_model=IngestResponse)
async def process_documents(request: DocumentsRequest):
    """
    Extract, chunk and store uploaded files.
    """
    if not request.documents:
        raise HTTPException(status_code=400, detail="Documents are required")
    if len(request.documents) > settings.max_sources:
        raise HTTPException(status_code=400, detail=f"Too many sources: the limit is {settings.max_sources}")
    if not request.api_key:
        raise HTTPException(status_code=401, detail="API key is required")

    try:
        normalizer = get_source_normalizer()
        sources = []
        rejected = []
        for document in request.documents:
            try:
                sources.append(
                    normalizer.from_file(document.name, document.content, document.type, document.id)
                )
            except (UnsupportedMediaTypeError, InputValidationError) as e:
                logger.warning("Document rejected", name=document.name, error=e.message)
                rejected.append((document.name, e.message))

        if not sources:
            raise HTTPException(
                status_code=400,
                detail="; ".join(message for _, message in rejected),
            )

        logger.info("Stage: Processing files", count=len(sources))
        return await ingest_sources(sources, rejected, request.api_key)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Document processing failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Document processing failed: {str(e)}")


# ─────────────────────────────────────────────────────────────
# API 2: URLs (web pages and YouTube links)
# ─────────────────────────────────────────────────────────────

@app.post("/urls", response_model=IngestResponse)
async def process_urls(request: UrlsRequest):
    """
    Fetch and ingest web pages; YouTube links are ingested as transcripts.
    """
    if not request.urls:
        raise HTTPException(status_code=400, detail="URLs are required")
    if len(request.urls) > settings.max_sources:
        raise HTTPException(status_code=400, detail=f"Too many sources: the limit is {settings.max_sources}")
    if not request.api_key:
        raise HTTPException(status_code=401, detail="API key is required")

    valid_urls = [url.strip() for url in request.urls if is_valid_url(url)]
    if not valid_urls:
        raise HTTPException(status_code=400, detail="No valid URLs provided")

    try:
        normalizer = get_source_normalizer()
        rejected = [(url, f"Invalid URL: {url}") for url in request.urls if not is_valid_url(url)]
        sources = []
        for url in valid_urls:
            try:
                sources.append(normalizer.classify_url(url))
            except InputValidationError as e:
                rejected.append((url, e.message))

        logger.info("Stage: Processing URLs", count=len(sources), filtered=len(rejected))
        return await ingest_sources(sources, rejected, request.api_key)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"URL processing failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"URL processing failed: {str(e)}")


# ─────────────────────────────────────────────────────────────
# API 3: Pasted text
# ─────────────────────────────────────────────────────────────

@app.post("/text", response_model=IngestResponse)
async def process_text(request: TextRequest):
    """
    Ingest pasted text as a source.
    """
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    if not request.api_key:
        raise HTTPException(status_code=401, detail="API key is required")

    try:
        source = get_source_normalizer().from_text(request.text, name=request.name)
        return await ingest_sources([source], [], request.api_key)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Text processing failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Text processing failed: {str(e)}")


# ─────────────────────────────────────────────────────────────
# API 4: YouTube transcript
# ─────────────────────────────────────────────────────────────

@app.post("/youtube")
async def youtube_transcript(request: YouTubeRequest):
    """
    Return the transcript and metadata of a YouTube video.
    """
    if not request.url:
        raise HTTPException(status_code=400, detail="YouTube URL is required")
    if not is_youtube_url(request.url):
        raise HTTPException(status_code=400, detail="Invalid YouTube URL format")

    try:
        video = await get_youtube_service().fetch_transcript(request.url, request.language)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except NoTranscriptAvailableError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ExtractionError as e:
        logger.error("YouTube transcript failed", url=request.url, error=e.message)
        raise HTTPException(status_code=500, detail="Failed to extract YouTube transcript")

    if not video.transcript.strip():
        raise HTTPException(status_code=404, detail="No transcript found for this video")

    return {"success": True, "data": video.model_dump(by_alias=True)}


# ─────────────────────────────────────────────────────────────
# API 5: Question answering
# ─────────────────────────────────────────────────────────────

@app.post("/rag")
async def ask_question(request: RAGRequest):
    """
    Answer a question from the attached sources plus vector search results.

    Streams plain text by default; set "stream": false for a JSON answer.
    """
    if not request.question.strip() or not request.sources:
        raise HTTPException(status_code=400, detail="Question and sources are required")
    if not request.api_key:
        raise HTTPException(status_code=401, detail="API key is required")

    try:
        generator = AnswerGenerator(request.api_key, request.provider)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    try:
        retriever = Retriever(EmbeddingService(request.api_key))
        context = await retriever.build_context(request.question, request.sources, k=request.k)

        if request.stream:
            return StreamingResponse(
                generator.stream_answer(request.question, context),
                media_type="text/plain; charset=utf-8",
                headers={"Cache-Control": "no-cache"},
            )

        answer = await generator.answer(request.question, context)
        return {
            "success": True,
            "answer": answer,
            "sources": [{"id": s.id, "type": s.type, "name": s.name} for s in request.sources],
            "timestamp": timestamp(),
        }

    except Exception as e:
        logger.error(f"RAG request failed: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")


# ─────────────────────────────────────────────────────────────
# Helper Endpoints
# ─────────────────────────────────────────────────────────────

@app.delete("/documents/{source_id}")
async def delete_document(source_id: str):
    """Remove a source's vectors from the knowledge base."""
    try:
        await get_vector_store().delete_document(source_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return {"success": True, "id": source_id}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "vector_store_connected": get_vector_store().is_connected}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
