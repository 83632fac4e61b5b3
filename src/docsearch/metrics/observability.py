"""Observability helpers for docsearch."""

from __future__ import annotations

import logging
from typing import Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "docsearch") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < -1.0:
        return -1.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for ingestion, search and the embedding cache."""

    ingestion_latency = Histogram(
        "docsearch_ingestion_duration_seconds",
        "Time spent chunking and embedding a document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "docsearch_ingestion_chunk_count",
        "Chunks produced per document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    search_latency = Histogram(
        "docsearch_search_duration_seconds",
        "Time spent scoring the chunks of one document.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    search_score = Histogram(
        "docsearch_search_score",
        "Cosine similarity of returned chunks.",
        buckets=(-1.0, -0.5, 0.0, 0.25, 0.5, 0.75, 1.0),
    )
    cache_hits = Counter(
        "docsearch_embedding_cache_hits_total",
        "Embedding cache lookups served from memory.",
    )
    cache_misses = Counter(
        "docsearch_embedding_cache_misses_total",
        "Embedding cache lookups that required the provider.",
    )
    document_count = Gauge(
        "docsearch_document_count",
        "Number of stored documents.",
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_search(cls, duration_seconds: float, scores: Iterable[float]) -> None:
        cls.search_latency.observe(duration_seconds)
        for score in scores:
            cls.search_score.observe(_clamp_score(score))

    @classmethod
    def observe_cache(cls, hit: bool) -> None:
        if hit:
            cls.cache_hits.inc()
        else:
            cls.cache_misses.inc()


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
