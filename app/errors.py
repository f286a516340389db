"""
Pipeline Errors
Exception taxonomy shared by the ingestion and question-answering services.

    RAGPipelineError
    +-- InputValidationError
    |   +-- InvalidURLFormatError
    +-- UnsupportedMediaTypeError
    +-- ExtractionError
    |   +-- NoContentExtractedError
    |   +-- NoTranscriptAvailableError
    +-- EmbeddingError
    +-- PersistenceError
    +-- GenerationError

Empty extraction results are not errors: the batch processor substitutes
placeholder text instead.
"""
from typing import Optional


class RAGPipelineError(Exception):
    """Base class for all pipeline errors. Carries a human-readable message."""

    def __init__(self, message: str, source_name: Optional[str] = None):
        self.message = message
        self.source_name = source_name
        super().__init__(message)


class InputValidationError(RAGPipelineError):
    """Missing or malformed required input (API key, source list, URL)."""


class InvalidURLFormatError(InputValidationError):
    """A URL does not match any accepted shape (e.g. YouTube video links)."""


class UnsupportedMediaTypeError(RAGPipelineError):
    """File type is outside the supported set."""

    def __init__(self, media_type: str, source_name: Optional[str] = None):
        self.media_type = media_type
        label = f"{source_name} ({media_type})" if source_name else media_type
        super().__init__(f"Unsupported file type: {label}", source_name=source_name)


class ExtractionError(RAGPipelineError):
    """An extraction strategy failed (corrupt file, network failure, bad codec)."""


class NoContentExtractedError(ExtractionError):
    """A fetched web page produced no text."""


class NoTranscriptAvailableError(ExtractionError):
    """The video has no captions in the requested language."""


class EmbeddingError(RAGPipelineError):
    """The embedding provider rejected or failed a request."""


class PersistenceError(RAGPipelineError):
    """Vector store unavailable or a read/write against it failed."""


class GenerationError(RAGPipelineError):
    """Chat completion failed."""
