"""Sentence-aware chunking with overlap and per-chunk embeddings."""

from __future__ import annotations

import asyncio
import re
import time
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

from docsearch.embeddings.service import EmbeddingProvider, check_dimensions
from docsearch.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingError,
    EmbeddingInitializationError,
    ValidationError,
)
from docsearch.metrics.observability import get_logger
from docsearch.models import DocumentChunk

# A sentence ends at ., ! or ? followed by whitespace or end of text; the
# trailing whitespace stays with the sentence so spans tile the text.
_SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)\s*")

_STRUCTURAL_CHARS = frozenset("{}[]()<>;=#*|`\\/_$&%^~")


@dataclass(frozen=True)
class ChunkingOptions:
    """Options for a single chunk() call."""

    max_size: int = 1000
    overlap: int = 100
    adaptive_size: bool = False
    parallel: bool = True
    workers: int = 4
    max_retries: int = 2
    retry_backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ValidationError("max_size must be > 0")
        if self.overlap < 0:
            raise ValidationError("overlap must be >= 0")
        if self.overlap >= self.max_size:
            raise ValidationError("overlap must be smaller than max_size")
        if self.workers < 1:
            raise ValidationError("workers must be >= 1")
        if self.max_retries < 0:
            raise ValidationError("max_retries must be >= 0")


@dataclass(frozen=True)
class TextSpan:
    """A slice of the source text: ``text == source[start:end]``."""

    start: int
    end: int
    text: str


class DensityPolicy(Protocol):
    """Chooses the target chunk size for the text starting at the current position."""

    def target_size(self, window: str, max_size: int) -> int:
        """Return a size in ``[1, max_size]`` for *window*."""


class StructuralDensityPolicy:
    """Shrinks chunks over code-like or markup-heavy text.

    Density is the share of structural characters (brackets, operators,
    markup) plus twice the share of newlines in the look-ahead window.
    Fenced code or density >= 0.15 halves the size, density >= 0.08 takes
    three quarters, prose keeps the full size.
    """

    def __init__(self, dense_threshold: float = 0.15, mixed_threshold: float = 0.08) -> None:
        self.dense_threshold = dense_threshold
        self.mixed_threshold = mixed_threshold

    def density(self, window: str) -> float:
        if not window:
            return 0.0
        structural = sum(1 for char in window if char in _STRUCTURAL_CHARS)
        return (structural + 2 * window.count("\n")) / len(window)

    def target_size(self, window: str, max_size: int) -> int:
        density = self.density(window)
        if "```" in window or density >= self.dense_threshold:
            factor = 0.5
        elif density >= self.mixed_threshold:
            factor = 0.75
        else:
            factor = 1.0
        return max(1, int(max_size * factor))


def sentence_boundaries(text: str) -> List[int]:
    """Offsets just past each sentence end; always includes ``len(text)``."""

    bounds = [match.end() for match in _SENTENCE_END.finditer(text)]
    if not bounds or bounds[-1] != len(text):
        bounds.append(len(text))
    return bounds


class Chunker:
    """Split text into overlapping, sentence-respecting chunks and embed each one."""

    def __init__(self, provider: EmbeddingProvider, density_policy: DensityPolicy | None = None) -> None:
        self._provider = provider
        self._density_policy = density_policy or StructuralDensityPolicy()
        self._logger = get_logger("ingestion.chunker")

    def split(self, text: str, options: ChunkingOptions | None = None) -> List[TextSpan]:
        """Return the chunk spans for *text* in order.

        A chunk ends at the last sentence boundary that fits its size limit;
        only a sentence longer than the limit is cut, at the last space past
        the middle of the window when there is one. Each following chunk
        starts ``overlap`` characters before the previous end, or later when
        the full overlap would leave no room for the next whole sentence.
        """

        options = options or ChunkingOptions()
        total = len(text)
        if total == 0:
            return []

        bounds = sentence_boundaries(text)
        spans: List[TextSpan] = []
        start = 0
        prev_end = 0
        while True:
            limit = self._limit_for(text, start, options)
            window_end = min(start + limit, total)
            index = bisect_right(bounds, window_end) - 1
            following = bounds[bisect_right(bounds, prev_end)]
            if index >= 0 and bounds[index] > prev_end:
                end = bounds[index]
            elif following - prev_end <= limit:
                # Shrink the overlap so the next sentence still fits whole
                start = max(start, following - limit)
                end = following
            else:
                end = window_end
                if end < total:
                    space = text.rfind(" ", max(prev_end, start + limit // 2), window_end)
                    if space >= prev_end:
                        end = space + 1
            spans.append(TextSpan(start=start, end=end, text=text[start:end]))
            if end >= total:
                break
            prev_end = end
            start = max(end - options.overlap, start + 1)
        return spans

    def _limit_for(self, text: str, start: int, options: ChunkingOptions) -> int:
        if not options.adaptive_size:
            return options.max_size
        window = text[start : start + options.max_size]
        target = self._density_policy.target_size(window, options.max_size)
        # The limit must exceed the overlap so every chunk adds new text
        return min(options.max_size, max(target, options.overlap + 1))

    async def chunk(
        self,
        document_id: str,
        text: str,
        options: ChunkingOptions | None = None,
    ) -> List[DocumentChunk]:
        """Split *text* and attach an embedding to every chunk.

        The result is all-or-nothing: if any chunk still fails after its
        retries, the whole call raises and no chunks are returned.
        """

        options = options or ChunkingOptions()
        start_time = time.perf_counter()
        spans = self.split(text, options)
        if not spans:
            return []

        vectors = await self._embed_spans(spans, options)
        model_id = self._provider.model_id
        chunks = [
            DocumentChunk(
                id=f"{document_id}_chunk_{index}",
                document_id=document_id,
                chunk_index=index,
                content=span.text,
                start_position=span.start,
                end_position=span.end,
                embedding=vector,
                metadata={"embedding_model": model_id},
            )
            for index, (span, vector) in enumerate(zip(spans, vectors, strict=True))
        ]
        self._logger.info(
            "chunking.complete",
            document_id=document_id,
            chunk_count=len(chunks),
            parallel=options.parallel,
            adaptive=options.adaptive_size,
            duration_seconds=time.perf_counter() - start_time,
        )
        return chunks

    async def _embed_spans(self, spans: Sequence[TextSpan], options: ChunkingOptions) -> List[Tuple[float, ...]]:
        if not options.parallel or options.workers == 1 or len(spans) == 1:
            return [await self._embed_with_retry(index, span.text, options) for index, span in enumerate(spans)]

        semaphore = asyncio.Semaphore(options.workers)

        async def bounded(index: int, span: TextSpan) -> Tuple[float, ...]:
            async with semaphore:
                return await self._embed_with_retry(index, span.text, options)

        # gather() keeps submission order, so vectors line up with spans
        # regardless of which embedding finishes first.
        tasks = [asyncio.ensure_future(bounded(index, span)) for index, span in enumerate(spans)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _embed_with_retry(self, index: int, text: str, options: ChunkingOptions) -> Tuple[float, ...]:
        attempt = 0
        while True:
            try:
                vector = await self._provider.embed(text)
                return check_dimensions(vector, self._provider.dimensions)
            except (EmbeddingDimensionMismatch, EmbeddingInitializationError):
                raise
            except Exception as exc:
                if attempt >= options.max_retries:
                    raise EmbeddingError(
                        f"Embedding failed for chunk {index} after {attempt + 1} attempt(s): {exc}",
                        provider=self._provider.model_id,
                    ) from exc
                attempt += 1
                self._logger.warning("chunking.embed.retry", chunk_index=index, attempt=attempt, detail=str(exc))
                await asyncio.sleep(options.retry_backoff_seconds * attempt)
