"""Shared domain models used across the docsearch pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence, Tuple

from docsearch.errors import CorruptDocumentError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentChunk:
    """Contiguous slice of a document's text with its embedding."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    start_position: int
    end_position: int
    embedding: Tuple[float, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "start_position": self.start_position,
            "end_position": self.end_position,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentChunk":
        embedding = data.get("embedding")
        return cls(
            id=str(data["id"]),
            document_id=str(data["document_id"]),
            chunk_index=int(data["chunk_index"]),
            content=str(data["content"]),
            start_position=int(data["start_position"]),
            end_position=int(data["end_position"]),
            embedding=tuple(float(v) for v in embedding) if embedding is not None else None,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Document:
    """A stored document: normalized content, opaque metadata and its chunks."""

    id: str
    title: str
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    chunks: Tuple[DocumentChunk, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def content_type(self) -> str:
        return str(self.metadata.get("content_type", "text/plain"))

    def summary(self) -> "DocumentSummary":
        preview = self.content[:100]
        if len(self.content) > 100:
            preview += "..."
        return DocumentSummary(
            id=self.id,
            title=self.title,
            metadata=dict(self.metadata),
            created_at=self.created_at,
            updated_at=self.updated_at,
            size=self.size,
            chunk_count=len(self.chunks),
            content_preview=preview,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "metadata": dict(self.metadata),
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Document":
        """Parse a persisted record, raising CorruptDocumentError on any malformed field."""

        try:
            chunks = tuple(
                sorted(
                    (DocumentChunk.from_dict(item) for item in data.get("chunks") or []),
                    key=lambda chunk: chunk.chunk_index,
                )
            )
            metadata = data.get("metadata") or {}
            if not isinstance(metadata, Mapping):
                raise TypeError("metadata must be an object")
            return cls(
                id=str(data["id"]),
                title=str(data["title"]),
                content=str(data["content"]),
                metadata=dict(metadata),
                chunks=chunks,
                created_at=datetime.fromisoformat(str(data["created_at"])),
                updated_at=datetime.fromisoformat(str(data["updated_at"])),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CorruptDocumentError(f"Malformed document record: {exc}") from exc


@dataclass(frozen=True)
class DocumentSummary:
    """Listing view of a document without its chunks."""

    id: str
    title: str
    metadata: Mapping[str, Any]
    created_at: datetime
    updated_at: datetime
    size: int
    chunk_count: int
    content_preview: str = ""

    @property
    def content_type(self) -> str:
        return str(self.metadata.get("content_type", "text/plain"))

    @property
    def author(self) -> str | None:
        value = self.metadata.get("author")
        return str(value) if value is not None else None

    @property
    def tags(self) -> list[str]:
        value = self.metadata.get("tags")
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [str(tag) for tag in value]
        return []

    @property
    def description(self) -> str | None:
        value = self.metadata.get("description")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk returned from a similarity search with its cosine score."""

    chunk: DocumentChunk
    score: float


@dataclass(frozen=True)
class SearchResponse:
    document_id: str
    query: str
    results: Sequence[ScoredChunk]
    hint: str = ""


@dataclass(frozen=True)
class ContextWindow:
    """Contiguous run of chunks around a center chunk."""

    document_id: str
    window: Sequence[DocumentChunk]
    center: int
    total_chunks: int


@dataclass(frozen=True)
class UploadReport:
    processed: int
    errors: Sequence[str] = ()
    document_ids: Sequence[str] = ()
