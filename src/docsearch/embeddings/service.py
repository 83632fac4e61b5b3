"""Embedding providers for docsearch."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from docsearch.embeddings.cache import EmbeddingCache
from docsearch.errors import (
    EmbeddingDimensionMismatch,
    EmbeddingError,
    EmbeddingInitializationError,
    InitializationTimeout,
)
from docsearch.metrics.observability import get_logger

LOGGER = get_logger("embeddings")

_TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding providers."""

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dim: int = 384
    use_model: bool = False
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None
    init_timeout_seconds: float = 300.0


class EmbeddingProvider(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def model_id(self) -> str:
        """Identifier of the model producing the vectors."""

    @property
    def dimensions(self) -> int:
        """Length of every vector returned by embed()."""

    def is_ready(self) -> bool:
        """Return True when embed() will not need to load a model first."""

    async def embed(self, text: str) -> Tuple[float, ...]:
        """Return the embedding vector for *text*."""


def check_dimensions(vector: Sequence[float], expected: int) -> Tuple[float, ...]:
    if len(vector) != expected:
        raise EmbeddingDimensionMismatch(expected=expected, actual=len(vector))
    return tuple(float(value) for value in vector)


def _normalize(vector: Sequence[float]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return tuple(vector)
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic bag-of-words hashing embeddings.

    Each lowercase token is hashed into one of ``dim`` buckets and the counts
    are L2-normalized. Texts sharing words get positive similarity, which is
    enough for graceful degradation but carries no real semantics.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def model_id(self) -> str:
        return f"hash-bow-{self._config.dim}"

    @property
    def dimensions(self) -> int:
        return self._config.dim

    def is_ready(self) -> bool:
        return True

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        vector = [0.0] * self._config.dim
        for token in _TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest, "big") % self._config.dim] += 1.0
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_sync(self, text: str) -> Tuple[float, ...]:
        return self._hash_to_vector(text)

    async def embed(self, text: str) -> Tuple[float, ...]:
        return self._hash_to_vector(text)


class TransformersEmbeddingProvider:
    """Sentence-transformers embeddings loaded lazily through LangChain.

    The model is not loaded until the first embed() call. Concurrent callers
    share one in-flight load, which is bounded by ``init_timeout_seconds``;
    after a timeout or failure the next call starts a fresh load.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        loader: Callable[[], LangChainEmbeddings] | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig(use_model=True)
        self._loader = loader or self._load_client
        self._client: LangChainEmbeddings | None = None
        self._init_task: asyncio.Task | None = None
        self._load_attempts = 0

    @property
    def model_id(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dim

    @property
    def load_attempts(self) -> int:
        return self._load_attempts

    def is_ready(self) -> bool:
        return self._client is not None

    def _load_client(self) -> LangChainEmbeddings:
        model_kwargs = {"device": self._config.device} if self._config.device else {}
        return HuggingFaceEmbeddings(
            model_name=self._config.model,
            cache_folder=self._config.cache_folder,
            model_kwargs=model_kwargs,
            encode_kwargs={"normalize_embeddings": self._config.normalize},
        )

    def _start_load(self) -> asyncio.Task:
        self._load_attempts += 1
        LOGGER.info("embedding.init.start", model=self._config.model, attempt=self._load_attempts)
        task = asyncio.ensure_future(asyncio.to_thread(self._loader))
        task.add_done_callback(self._on_loaded)
        return task

    def _on_loaded(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("embedding.init.failed", model=self._config.model, detail=str(exc))
            return
        # A load abandoned by a timed-out caller may still finish later
        if self._client is None:
            self._client = task.result()
            LOGGER.info("embedding.init.complete", model=self._config.model)

    async def initialize(self) -> None:
        if self._client is not None:
            return
        if self._init_task is None or self._init_task.done():
            self._init_task = self._start_load()
        task = self._init_task
        try:
            client = await asyncio.wait_for(asyncio.shield(task), timeout=self._config.init_timeout_seconds)
        except asyncio.TimeoutError as exc:
            if self._init_task is task:
                self._init_task = None
            LOGGER.error(
                "embedding.init.timeout",
                model=self._config.model,
                timeout_seconds=self._config.init_timeout_seconds,
            )
            raise InitializationTimeout(
                f"Embedding model {self._config.model} was not ready after "
                f"{self._config.init_timeout_seconds}s",
                provider=self.model_id,
            ) from exc
        except Exception as exc:
            if self._init_task is task:
                self._init_task = None
            raise EmbeddingInitializationError(
                f"Failed to initialize embedding model {self._config.model}: {exc}",
                provider=self.model_id,
            ) from exc
        if client is None:
            if self._init_task is task:
                self._init_task = None
            raise EmbeddingInitializationError(
                f"Loader for embedding model {self._config.model} returned no client",
                provider=self.model_id,
            )
        if self._client is None:
            self._client = client

    def pre_initialize(self) -> None:
        """Start loading the model in the background without waiting for it."""

        if self._client is not None or self._init_task is not None:
            return
        LOGGER.info("embedding.preinit", model=self._config.model)
        self._init_task = self._start_load()

    async def embed(self, text: str) -> Tuple[float, ...]:
        await self.initialize()
        client = self._client
        if client is None:
            raise EmbeddingInitializationError(
                f"Embedding model {self._config.model} is not loaded", provider=self.model_id
            )
        try:
            raw = await asyncio.to_thread(client.embed_query, text)
        except Exception as exc:
            raise EmbeddingError(f"Failed to generate embedding: {exc}", provider=self.model_id) from exc
        vector = check_dimensions(raw, self._config.dim)
        return _normalize(vector) if self._config.normalize else vector


class FallbackEmbeddingProvider:
    """Use the primary provider until it fails to initialize, then hash embeddings."""

    def __init__(self, primary: EmbeddingProvider, fallback: EmbeddingProvider) -> None:
        if primary.dimensions != fallback.dimensions:
            raise EmbeddingDimensionMismatch(expected=primary.dimensions, actual=fallback.dimensions)
        self._primary = primary
        self._fallback = fallback
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def model_id(self) -> str:
        return self._fallback.model_id if self._degraded else self._primary.model_id

    @property
    def dimensions(self) -> int:
        return self._primary.dimensions

    def is_ready(self) -> bool:
        return self._degraded or self._primary.is_ready()

    def pre_initialize(self) -> None:
        pre_initialize = getattr(self._primary, "pre_initialize", None)
        if pre_initialize is not None and not self._degraded:
            pre_initialize()

    async def embed(self, text: str) -> Tuple[float, ...]:
        if not self._degraded:
            try:
                return await self._primary.embed(text)
            except EmbeddingInitializationError as exc:
                self._degraded = True
                LOGGER.warning(
                    "embedding.fallback",
                    primary=self._primary.model_id,
                    fallback=self._fallback.model_id,
                    detail=str(exc),
                )
        return await self._fallback.embed(text)


class CachedEmbeddingProvider:
    """Cache-backed view of a provider; misses delegate to the wrapped provider."""

    def __init__(self, provider: EmbeddingProvider, cache: EmbeddingCache) -> None:
        self._provider = provider
        self._cache = cache

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    @property
    def dimensions(self) -> int:
        return self._provider.dimensions

    def is_ready(self) -> bool:
        return self._provider.is_ready()

    def pre_initialize(self) -> None:
        pre_initialize = getattr(self._provider, "pre_initialize", None)
        if pre_initialize is not None:
            pre_initialize()

    async def embed(self, text: str) -> Tuple[float, ...]:
        cached = self._cache.get(text)
        if cached is not None and len(cached) == self._provider.dimensions:
            return cached
        vector = check_dimensions(await self._provider.embed(text), self._provider.dimensions)
        self._cache.put(text, vector)
        return vector


def create_embedding_provider(config: EmbeddingConfig, *, fallback: bool = True) -> EmbeddingProvider:
    """Return the cache-free provider described by *config*."""

    if not config.use_model:
        LOGGER.info("embedding.hash_only", dim=config.dim)
        return HashEmbeddingBackend(config)
    primary = TransformersEmbeddingProvider(config)
    if not fallback:
        return primary
    return FallbackEmbeddingProvider(primary, HashEmbeddingBackend(config))

