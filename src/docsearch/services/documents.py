"""Document operations: the entry points used by the HTTP layer and by callers embedding the library."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from docsearch.config import Settings, get_settings
from docsearch.embeddings.cache import EmbeddingCache
from docsearch.embeddings.service import (
    CachedEmbeddingProvider,
    EmbeddingConfig,
    EmbeddingProvider,
    create_embedding_provider,
)
from docsearch.errors import DocSearchError, DocumentNotFoundError
from docsearch.ingestion.chunker import Chunker, ChunkingOptions, StructuralDensityPolicy
from docsearch.ingestion.extractors import ExtractionConfig, LangChainTextExtractor, TextExtractor, infer_content_type
from docsearch.metrics.observability import get_logger
from docsearch.models import ContextWindow, Document, DocumentSummary, SearchResponse, UploadReport
from docsearch.retrieval.service import SearchEngine
from docsearch.storage.documents import FileDocumentStore


@dataclass(frozen=True)
class UploadsConfig:
    directory: Path
    allowed_extensions: Sequence[str] = (".txt", ".md", ".markdown", ".pdf")


class DocumentService:
    """Wires the store, search engine, embedding cache and uploads inbox together."""

    def __init__(
        self,
        store: FileDocumentStore,
        engine: SearchEngine,
        provider: EmbeddingProvider,
        *,
        extractor: TextExtractor | None = None,
        uploads: UploadsConfig | None = None,
        cache: EmbeddingCache | None = None,
        cache_path: Path | None = None,
        preload_model: bool = False,
    ) -> None:
        self._store = store
        self._engine = engine
        self._provider = provider
        self._extractor = extractor or LangChainTextExtractor()
        self._uploads = uploads or UploadsConfig(directory=Path("./uploads"))
        self._cache = cache
        self._cache_path = cache_path
        self._preload_model = preload_model
        self._logger = get_logger("services.documents")

    @property
    def store(self) -> FileDocumentStore:
        return self._store

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def cache(self) -> EmbeddingCache | None:
        return self._cache

    async def startup(self) -> None:
        self._store.open()
        self._uploads.directory.mkdir(parents=True, exist_ok=True)
        if self._cache is not None and self._cache_path is not None:
            self._cache.load(self._cache_path)
        if self._preload_model:
            pre_initialize = getattr(self._provider, "pre_initialize", None)
            if pre_initialize is not None:
                pre_initialize()
        self._logger.info(
            "service.startup",
            documents=self._store.count(),
            model=self._provider.model_id,
            cache_enabled=self._cache is not None,
        )

    async def shutdown(self) -> None:
        if self._cache is not None and self._cache_path is not None:
            self._cache.save(self._cache_path)
        self._logger.info("service.shutdown")

    # ------------------------------------------------------------------
    # documents

    async def add_document(
        self,
        title: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        author: str | None = None,
        tags: Sequence[str] | None = None,
        description: str | None = None,
        content_type: str | None = None,
    ) -> DocumentSummary:
        merged: Dict[str, Any] = dict(metadata or {})
        if author is not None:
            merged["author"] = author
        if tags is not None:
            merged["tags"] = list(tags)
        if description is not None:
            merged["description"] = description
        if content_type is not None:
            merged["content_type"] = content_type
        document = await self._store.create(title, content, merged)
        return document.summary()

    def get_document(self, document_id: str) -> Document:
        document = self._store.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(
        self,
        *,
        tags: Iterable[str] | None = None,
        author: str | None = None,
        content_type: str | None = None,
    ) -> List[DocumentSummary]:
        """List summaries newest first; a document matches ``tags`` when it carries any of them."""

        wanted_tags = {tag.lower() for tag in tags} if tags else set()
        summaries = []
        for summary in self._store.list():
            if wanted_tags and not wanted_tags & {tag.lower() for tag in summary.tags}:
                continue
            if author is not None and (summary.author or "").lower() != author.lower():
                continue
            if content_type is not None and summary.content_type != content_type:
                continue
            summaries.append(summary)
        return summaries

    def delete_document(self, document_id: str) -> bool:
        return self._store.delete(document_id)

    # ------------------------------------------------------------------
    # search

    async def search_documents(self, document_id: str, query: str, limit: int | None = None) -> SearchResponse:
        return await self._engine.search(document_id, query, limit)

    def get_context_window(
        self,
        document_id: str,
        chunk_index: int,
        before: int | None = None,
        after: int | None = None,
    ) -> ContextWindow:
        return self._engine.context_window(document_id, chunk_index, before, after)

    def keyword_search(self, terms: Iterable[str]) -> List[DocumentSummary]:
        summaries = []
        for document_id in self._store.keyword_search(terms):
            document = self._store.get(document_id)
            if document is not None:
                summaries.append(document.summary())
        return summaries

    # ------------------------------------------------------------------
    # uploads

    def uploads_path(self) -> Path:
        return self._uploads.directory.resolve()

    def list_uploads(self) -> List[Path]:
        directory = self._uploads.directory
        if not directory.exists():
            return []
        allowed = {ext.lower() for ext in self._uploads.allowed_extensions}
        return sorted(
            path
            for path in directory.iterdir()
            if path.is_file() and path.suffix.lower() in allowed and self._extractor.supports(path)
        )

    async def process_uploads(self) -> UploadReport:
        """Add every supported file in the uploads inbox.

        The document title is the file stem; documents that already carry that
        title are replaced by the new one. A file whose content is already stored
        under another title is reported and changes nothing. A failing file is
        reported and does not stop the others.
        """

        processed = 0
        errors: List[str] = []
        document_ids: List[str] = []
        for path in self.list_uploads():
            title = path.stem
            try:
                text = await asyncio.to_thread(self._extractor.extract, path)
                metadata = {
                    "source_file": path.name,
                    "content_type": infer_content_type(path.name, text),
                }
                document = await self._store.create(title, text, metadata, original_path=path)
                if document.title != title:
                    # Same content already stored under another title; keep both as they are
                    self._logger.warning("upload.duplicate", file=path.name, document_id=document.id)
                    errors.append(f"{path.name}: content duplicates document {document.id} ({document.title!r})")
                    continue
                for summary in self._store.list():
                    if summary.title == title and summary.id != document.id:
                        self._store.delete(summary.id)
                        self._logger.info("upload.replaced", title=title, document_id=summary.id)
            except DocSearchError as exc:
                self._logger.warning("upload.failed", file=path.name, detail=str(exc))
                errors.append(f"{path.name}: {exc}")
                continue
            processed += 1
            document_ids.append(document.id)
        self._logger.info("upload.complete", processed=processed, errors=len(errors))
        return UploadReport(processed=processed, errors=tuple(errors), document_ids=tuple(document_ids))

    # ------------------------------------------------------------------
    # cache and health

    def cache_stats(self) -> Dict[str, Any]:
        if self._cache is None:
            return {"enabled": False}
        stats = self._cache.stats().to_dict()
        stats["memory_bytes"] = self._cache.memory_usage()
        stats["enabled"] = True
        return stats

    def health(self) -> Dict[str, Any]:
        return {
            "model": self._provider.model_id,
            "ready": self._provider.is_ready(),
            "documents": self._store.count(),
        }


def build_service(settings: Settings | None = None) -> DocumentService:
    """Construct a DocumentService from settings."""

    settings = settings or get_settings()
    base_provider = create_embedding_provider(
        EmbeddingConfig(
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            use_model=settings.use_model_embeddings,
            device=settings.embedding_device,
            cache_folder=settings.embedding_cache_folder,
            init_timeout_seconds=settings.embedding_init_timeout_seconds,
        ),
        fallback=settings.embedding_fallback,
    )
    cache: EmbeddingCache | None = None
    provider: EmbeddingProvider = base_provider
    if settings.cache_enabled:
        cache = EmbeddingCache(settings.cache_size)
        provider = CachedEmbeddingProvider(base_provider, cache)

    options = ChunkingOptions(
        max_size=settings.chunk_size,
        overlap=settings.chunk_overlap,
        adaptive_size=settings.adaptive_chunking,
        parallel=settings.parallel_chunking,
        workers=settings.parallel_workers,
        max_retries=settings.embed_max_retries,
        retry_backoff_seconds=settings.embed_retry_backoff_seconds,
    )
    store = FileDocumentStore(
        settings.data_dir,
        Chunker(provider, StructuralDensityPolicy()),
        provider,
        options=options,
        index_enabled=settings.index_enabled,
        max_document_size=settings.max_document_size,
    )
    engine = SearchEngine(
        store,
        default_limit=settings.default_search_limit,
        max_limit=settings.max_search_limit,
        context_before=settings.context_before,
        context_after=settings.context_after,
    )
    extractor = LangChainTextExtractor(
        ExtractionConfig(
            streaming_enabled=settings.streaming_enabled,
            streaming_threshold_bytes=settings.streaming_threshold_bytes,
        )
    )
    return DocumentService(
        store,
        engine,
        provider,
        extractor=extractor,
        uploads=UploadsConfig(directory=settings.uploads_dir, allowed_extensions=settings.allowed_extensions_tuple),
        cache=cache,
        cache_path=settings.cache_path if cache is not None and settings.cache_persist else None,
        preload_model=settings.embedding_preload,
    )
