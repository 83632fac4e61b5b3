"""Error taxonomy shared by the docsearch components."""

from __future__ import annotations


class DocSearchError(RuntimeError):
    """Base class for all errors raised by docsearch."""


class NotFoundError(DocSearchError):
    """Raised when a requested document or chunk does not exist."""


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class ChunkNotFoundError(NotFoundError):
    def __init__(self, document_id: str, chunk_index: int, total_chunks: int) -> None:
        super().__init__(
            f"Chunk {chunk_index} not found in document {document_id} ({total_chunks} chunks)"
        )
        self.document_id = document_id
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks


class ValidationError(DocSearchError):
    """Raised when an operation receives malformed input, before any side effect."""


class EmbeddingError(DocSearchError):
    """Raised when the embedding provider fails to produce a vector."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class EmbeddingInitializationError(EmbeddingError):
    """Raised when the embedding model cannot be loaded."""


class InitializationTimeout(EmbeddingInitializationError):
    """Raised when the embedding model did not become ready in time."""


class EmbeddingDimensionMismatch(DocSearchError):
    """Raised when two vectors (or a vector and a provider) disagree on dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StorageError(DocSearchError):
    """Raised when persisting or removing on-disk state fails."""


class CorruptIndexError(StorageError):
    """Raised when the persisted index file cannot be parsed."""


class CorruptDocumentError(StorageError):
    """Raised when a persisted document record cannot be parsed."""


class ExtractionError(DocSearchError):
    """Raised when text extraction fails for a particular file."""


class UnsupportedFileTypeError(ExtractionError):
    """Raised when a file extension is not supported by the extractor."""
