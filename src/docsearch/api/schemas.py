"""Pydantic models for the docsearch API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from docsearch.config import get_settings
from docsearch.models import ContextWindow, Document, DocumentChunk, DocumentSummary, SearchResponse


class DocumentCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, description="Human readable document title")
    content: str = Field(..., min_length=1, description="Full text of the document")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque metadata stored with the document")
    author: Optional[str] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    content_type: Optional[str] = Field(default=None, description="Inferred from title and content when omitted")


class DocumentSummaryModel(BaseModel):
    id: str
    title: str
    size: int = Field(..., ge=0, description="Length of the normalized content in characters")
    content_type: str
    created_at: datetime
    updated_at: datetime
    chunk_count: int = Field(..., ge=0)
    content_preview: str
    author: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: DocumentSummary) -> "DocumentSummaryModel":
        return cls(
            id=summary.id,
            title=summary.title,
            size=summary.size,
            content_type=summary.content_type,
            created_at=summary.created_at,
            updated_at=summary.updated_at,
            chunk_count=summary.chunk_count,
            content_preview=summary.content_preview,
            author=summary.author,
            tags=summary.tags,
            description=summary.description,
            metadata=dict(summary.metadata),
        )


class ChunkModel(BaseModel):
    id: str
    chunk_index: int
    content: str
    start_position: int
    end_position: int

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk) -> "ChunkModel":
        return cls(
            id=chunk.id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            start_position=chunk.start_position,
            end_position=chunk.end_position,
        )


class DocumentDetail(BaseModel):
    id: str
    title: str
    content: str
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    chunks: List[ChunkModel]

    @classmethod
    def from_document(cls, document: Document) -> "DocumentDetail":
        return cls(
            id=document.id,
            title=document.title,
            content=document.content,
            metadata=dict(document.metadata),
            created_at=document.created_at,
            updated_at=document.updated_at,
            chunks=[ChunkModel.from_chunk(chunk) for chunk in document.chunks],
        )


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Text to compare against the document's chunks")
    limit: Optional[int] = Field(
        default=None,
        ge=1,
        le=get_settings().max_search_limit,
        description="Maximum number of chunks to return",
    )


class SearchResultModel(BaseModel):
    document_id: str
    chunk_index: int
    score: float
    content: str


class SearchResponseModel(BaseModel):
    document_id: str
    query: str
    results: List[SearchResultModel]
    hint: str

    @classmethod
    def from_response(cls, response: SearchResponse) -> "SearchResponseModel":
        return cls(
            document_id=response.document_id,
            query=response.query,
            results=[
                SearchResultModel(
                    document_id=item.chunk.document_id,
                    chunk_index=item.chunk.chunk_index,
                    score=item.score,
                    content=item.chunk.content,
                )
                for item in response.results
            ],
            hint=response.hint,
        )


class ContextChunkModel(BaseModel):
    chunk_index: int
    content: str


class ContextWindowResponse(BaseModel):
    document_id: str
    window: List[ContextChunkModel]
    center: int
    total_chunks: int

    @classmethod
    def from_window(cls, window: ContextWindow) -> "ContextWindowResponse":
        return cls(
            document_id=window.document_id,
            window=[ContextChunkModel(chunk_index=c.chunk_index, content=c.content) for c in window.window],
            center=window.center,
            total_chunks=window.total_chunks,
        )


class KeywordSearchRequest(BaseModel):
    terms: List[str] = Field(..., min_length=1, description="Documents containing any of these words are returned")


class UploadReportModel(BaseModel):
    processed: int
    errors: List[str]
    document_ids: List[str]


class UploadsListing(BaseModel):
    path: str
    files: List[str]


class CacheStatsResponse(BaseModel):
    enabled: bool
    size: Optional[int] = None
    capacity: Optional[int] = None
    hits: Optional[int] = None
    misses: Optional[int] = None
    hit_rate: Optional[float] = None
    total_requests: Optional[int] = None
    memory_bytes: Optional[int] = None
