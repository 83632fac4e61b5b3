from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import List, Sequence, Tuple

import pytest

from docsearch.embeddings.cache import EmbeddingCache
from docsearch.ingestion.chunker import Chunker, ChunkingOptions
from docsearch.ingestion.extractors import LangChainTextExtractor
from docsearch.retrieval.service import SearchEngine
from docsearch.services.documents import DocumentService, UploadsConfig
from docsearch.storage.documents import FileDocumentStore

VOCABULARY = ("cat", "dog", "bird", "alpha", "beta", "gamma", "delta", "fish")

_WORDS = re.compile(r"[a-z]+")


class VocabularyProvider:
    """One dimension per vocabulary word; the value is the word count."""

    def __init__(self, vocabulary: Sequence[str] = VOCABULARY, *, delay: float = 0.0) -> None:
        self.vocabulary = tuple(vocabulary)
        self.delay = delay
        self.calls: List[str] = []

    @property
    def model_id(self) -> str:
        return "vocabulary-test"

    @property
    def dimensions(self) -> int:
        return len(self.vocabulary)

    def is_ready(self) -> bool:
        return True

    def vector_for(self, text: str) -> Tuple[float, ...]:
        words = _WORDS.findall(text.lower())
        return tuple(float(words.count(word)) for word in self.vocabulary)

    async def embed(self, text: str) -> Tuple[float, ...]:
        self.calls.append(text)
        if self.delay:
            # Longer texts finish first so completion order differs from submission order
            await asyncio.sleep(self.delay / max(len(text), 1))
        return self.vector_for(text)


class FlakyProvider(VocabularyProvider):
    """Fails the first ``failures`` calls, then behaves like VocabularyProvider."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def embed(self, text: str) -> Tuple[float, ...]:
        self.calls.append(text)
        if len(self.calls) <= self.failures:
            raise RuntimeError("provider unavailable")
        return self.vector_for(text)


class PoisonProvider(VocabularyProvider):
    """Always fails for text containing the word ``boom``."""

    async def embed(self, text: str) -> Tuple[float, ...]:
        self.calls.append(text)
        if "boom" in text.lower():
            raise RuntimeError("cannot embed this chunk")
        return self.vector_for(text)


class ShortVectorProvider(VocabularyProvider):
    """Declares more dimensions than it returns."""

    @property
    def dimensions(self) -> int:
        return len(self.vocabulary) + 1


@pytest.fixture()
def provider() -> VocabularyProvider:
    return VocabularyProvider()


@pytest.fixture()
def sentence_options() -> ChunkingOptions:
    return ChunkingOptions(max_size=15, overlap=0, parallel=False)


def make_store(
    root: Path,
    provider,
    options: ChunkingOptions | None = None,
    *,
    index_enabled: bool = True,
    max_document_size: int = 1_048_576,
) -> FileDocumentStore:
    store = FileDocumentStore(
        root,
        Chunker(provider),
        provider,
        options=options or ChunkingOptions(max_size=200, overlap=20),
        index_enabled=index_enabled,
        max_document_size=max_document_size,
    )
    store.open()
    return store


@pytest.fixture()
def store(tmp_path: Path, provider: VocabularyProvider, sentence_options: ChunkingOptions) -> FileDocumentStore:
    return make_store(tmp_path / "data", provider, sentence_options)


def make_service(
    tmp_path: Path,
    provider,
    options: ChunkingOptions | None = None,
    *,
    cache: EmbeddingCache | None = None,
    cache_path: Path | None = None,
) -> DocumentService:
    store = FileDocumentStore(
        tmp_path / "data",
        Chunker(provider),
        provider,
        options=options or ChunkingOptions(max_size=15, overlap=0, parallel=False),
    )
    engine = SearchEngine(store, default_limit=10, max_limit=50)
    return DocumentService(
        store,
        engine,
        provider,
        extractor=LangChainTextExtractor(),
        uploads=UploadsConfig(directory=tmp_path / "uploads"),
        cache=cache,
        cache_path=cache_path,
    )


@pytest.fixture()
def service(tmp_path: Path, provider: VocabularyProvider) -> DocumentService:
    service = make_service(tmp_path, provider)
    service.store.open()
    (tmp_path / "uploads").mkdir(parents=True, exist_ok=True)
    return service
