"""Similarity scoring and search over the chunks of a single document."""

from __future__ import annotations

import math
import time
from typing import Iterable, List, Protocol, Sequence

from docsearch.errors import ChunkNotFoundError, DocumentNotFoundError, EmbeddingDimensionMismatch, ValidationError
from docsearch.metrics.observability import PipelineMetrics, get_logger
from docsearch.models import ContextWindow, Document, DocumentChunk, ScoredChunk, SearchResponse

SEARCH_HINT = (
    "Call get_context_window with a result's chunk_index to read the text around it."
)
NO_MATCH_HINT = "No chunks matched the query."


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*; 0.0 when either has zero norm."""

    if len(a) != len(b):
        raise EmbeddingDimensionMismatch(expected=len(a), actual=len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_chunks(query_vector: Sequence[float], chunks: Iterable[DocumentChunk], limit: int) -> List[ScoredChunk]:
    """Score chunks against the query; highest score first, ties by chunk_index."""

    scored = [
        ScoredChunk(chunk=chunk, score=cosine_similarity(query_vector, chunk.embedding))
        for chunk in chunks
        if chunk.embedding is not None
    ]
    scored.sort(key=lambda item: (-item.score, item.chunk.chunk_index))
    return scored[:limit]


class ChunkSource(Protocol):
    def get(self, document_id: str) -> Document | None:
        """Return the document or None."""

    async def search_chunks(self, document_id: str, query: str, limit: int = 10) -> List[ScoredChunk]:
        """Return ranked chunks of one document."""


class SearchEngine:
    """Query-time entry point: ranked chunk search and context windows."""

    def __init__(
        self,
        source: ChunkSource,
        *,
        default_limit: int = 10,
        max_limit: int = 50,
        context_before: int = 1,
        context_after: int = 1,
    ) -> None:
        self._source = source
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._context_before = context_before
        self._context_after = context_after
        self._logger = get_logger("retrieval")

    async def search(self, document_id: str, query: str, limit: int | None = None) -> SearchResponse:
        effective = self._default_limit if limit is None else limit
        if effective < 1:
            raise ValidationError("limit must be >= 1")
        effective = min(effective, self._max_limit)

        start = time.perf_counter()
        results = await self._source.search_chunks(document_id, query, effective)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_search(duration, (item.score for item in results))
        self._logger.info(
            "search.complete",
            document_id=document_id,
            result_count=len(results),
            limit=effective,
            duration_seconds=duration,
        )
        return SearchResponse(
            document_id=document_id,
            query=query,
            results=tuple(results),
            hint=SEARCH_HINT if results else NO_MATCH_HINT,
        )

    def context_window(
        self,
        document_id: str,
        chunk_index: int,
        before: int | None = None,
        after: int | None = None,
    ) -> ContextWindow:
        before = self._context_before if before is None else before
        after = self._context_after if after is None else after
        if before < 0 or after < 0:
            raise ValidationError("before and after must be >= 0")

        document = self._source.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        total = len(document.chunks)
        if chunk_index < 0 or chunk_index >= total:
            raise ChunkNotFoundError(document_id, chunk_index, total)

        lower = max(0, chunk_index - before)
        upper = min(total, chunk_index + after + 1)
        return ContextWindow(
            document_id=document_id,
            window=document.chunks[lower:upper],
            center=chunk_index,
            total_chunks=total,
        )
