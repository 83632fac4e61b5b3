"""Embedding providers and the embedding cache."""

from .cache import CacheStats, EmbeddingCache, fingerprint
from .service import (
    CachedEmbeddingProvider,
    EmbeddingConfig,
    EmbeddingProvider,
    FallbackEmbeddingProvider,
    HashEmbeddingBackend,
    TransformersEmbeddingProvider,
    create_embedding_provider,
)

__all__ = [
    "CacheStats",
    "CachedEmbeddingProvider",
    "EmbeddingCache",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "FallbackEmbeddingProvider",
    "HashEmbeddingBackend",
    "TransformersEmbeddingProvider",
    "create_embedding_provider",
    "fingerprint",
]
