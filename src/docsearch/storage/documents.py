"""File-backed document store.

Each document is one JSON record under ``<root>/documents/<id>.json``. The
optional original upload is kept under ``<root>/originals/<id><suffix>``.
The :class:`DocumentIndex` is a derived cache over these files.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple
from uuid import uuid4

from docsearch.embeddings.service import EmbeddingProvider
from docsearch.errors import (
    CorruptDocumentError,
    DocumentNotFoundError,
    StorageError,
    ValidationError,
)
from docsearch.ingestion.chunker import Chunker, ChunkingOptions
from docsearch.ingestion.extractors import content_hash, infer_content_type, normalize_text
from docsearch.metrics.observability import PipelineMetrics, get_logger
from docsearch.models import Document, DocumentSummary, ScoredChunk, utcnow
from docsearch.retrieval.service import rank_chunks
from docsearch.storage.index import DocumentIndex, document_keywords, extract_keywords

_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class FileDocumentStore:
    """Owns persisted documents and keeps the index in step with them."""

    def __init__(
        self,
        root: Path,
        chunker: Chunker,
        provider: EmbeddingProvider,
        *,
        options: ChunkingOptions | None = None,
        index_enabled: bool = True,
        max_document_size: int = 1_048_576,
    ) -> None:
        self._documents_dir = root / "documents"
        self._originals_dir = root / "originals"
        self._chunker = chunker
        self._provider = provider
        self._options = options or ChunkingOptions()
        self._max_document_size = max_document_size
        self._index: DocumentIndex | None = (
            DocumentIndex(root / "index.json", self._scan) if index_enabled else None
        )
        self._pending: Dict[str, asyncio.Future] = {}
        self._logger = get_logger("storage.documents")

    @property
    def documents_dir(self) -> Path:
        return self._documents_dir

    @property
    def originals_dir(self) -> Path:
        return self._originals_dir

    @property
    def index(self) -> DocumentIndex | None:
        return self._index

    def open(self) -> None:
        """Create the storage directories and load (or rebuild) the index."""

        self._documents_dir.mkdir(parents=True, exist_ok=True)
        self._originals_dir.mkdir(parents=True, exist_ok=True)
        if self._index is not None:
            self._index.load()
        PipelineMetrics.document_count.set(self.count())

    def count(self) -> int:
        if self._index is not None:
            return len(self._index)
        return sum(1 for _ in self._documents_dir.glob("*.json"))

    # ------------------------------------------------------------------
    # create

    async def create(
        self,
        title: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        options: ChunkingOptions | None = None,
        original_path: Path | None = None,
    ) -> Document:
        """Persist a new document, or return the live document with the same content.

        Input is validated and the duplicate check runs before any chunking or
        embedding work. Concurrent creates of identical content share one build.
        """

        title, normalized, metadata = self._validate(title, content, metadata)
        digest = content_hash(normalized)

        existing = self._find_by_content_hash(digest)
        if existing is not None:
            self._logger.info("document.duplicate", document_id=existing.id, title=title)
            return existing

        pending = self._pending.get(digest)
        if pending is not None:
            self._logger.info("document.duplicate.pending", title=title)
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[digest] = future
        try:
            document = await self._create_new(title, normalized, metadata, options or self._options, original_path)
        except Exception as exc:
            future.set_exception(exc)
            # Waiters re-raise it; nobody else needs to observe it
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            future.set_result(document)
            return document
        finally:
            self._pending.pop(digest, None)

    def _validate(
        self,
        title: str,
        content: str,
        metadata: Mapping[str, Any] | None,
    ) -> Tuple[str, str, Dict[str, Any]]:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title must be a non-empty string")
        if not isinstance(content, str):
            raise ValidationError("content must be a string")
        if len(content) > self._max_document_size:
            raise ValidationError(
                f"content is {len(content)} characters; the maximum is {self._max_document_size}"
            )
        normalized = normalize_text(content)
        if not normalized:
            raise ValidationError("content must not be empty")
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, Mapping) or not all(isinstance(key, str) for key in metadata):
            raise ValidationError("metadata must be a mapping with string keys")
        try:
            json.dumps(dict(metadata))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"metadata must be JSON serializable: {exc}") from exc
        return title.strip(), normalized, dict(metadata)

    def _find_by_content_hash(self, digest: str) -> Document | None:
        if self._index is not None:
            document_id = self._index.exists_by_content_hash(digest)
            return self.get(document_id) if document_id is not None else None
        for _, document in self._scan():
            if content_hash(document.content) == digest:
                return document
        return None

    async def _create_new(
        self,
        title: str,
        normalized: str,
        metadata: Dict[str, Any],
        options: ChunkingOptions,
        original_path: Path | None,
    ) -> Document:
        start = time.perf_counter()
        document_id = uuid4().hex
        metadata.setdefault("content_type", infer_content_type(title, normalized))
        if original_path is not None:
            metadata["original_file"] = f"{document_id}{original_path.suffix.lower()}"

        chunks = await self._chunker.chunk(document_id, normalized, options)
        now = utcnow()
        document = Document(
            id=document_id,
            title=title,
            content=normalized,
            metadata=metadata,
            chunks=tuple(chunks),
            created_at=now,
            updated_at=now,
        )

        self._documents_dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(document_id)
        try:
            _write_json_atomic(path, document.to_dict())
            if original_path is not None:
                self._originals_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(original_path, self._originals_dir / metadata["original_file"])
        except OSError as exc:
            self._remove_files(document_id, path)
            raise StorageError(f"Failed to persist document {document_id}: {exc}") from exc

        if self._index is not None:
            try:
                self._index.put(document, path)
                self._index.persist()
            except OSError as exc:
                self._index.remove(document_id)
                self._remove_files(document_id, path)
                raise StorageError(f"Failed to index document {document_id}: {exc}") from exc

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        PipelineMetrics.document_count.set(self.count())
        self._logger.info(
            "document.created",
            document_id=document_id,
            title=title,
            size=document.size,
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return document

    # ------------------------------------------------------------------
    # read

    def _path_for(self, document_id: str) -> Path:
        return self._documents_dir / f"{document_id}.json"

    def _read(self, path: Path) -> Document | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptDocumentError(f"Invalid JSON in {path.name}: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptDocumentError(f"{path.name} does not hold a document object")
        return Document.from_dict(data)

    def get(self, document_id: str) -> Document | None:
        """Return the document, or None when it is absent or its record is corrupt."""

        if not isinstance(document_id, str) or not _DOCUMENT_ID.match(document_id):
            return None
        path = None
        if self._index is not None:
            path = self._index.lookup(document_id)
        path = path or self._path_for(document_id)
        try:
            document = self._read(path)
        except CorruptDocumentError as exc:
            self._logger.warning("document.corrupt", document_id=document_id, detail=str(exc))
            return None
        if document is not None and document.id != document_id:
            self._logger.warning("document.corrupt", document_id=document_id, detail="id does not match file name")
            return None
        return document

    def _scan(self) -> Iterator[Tuple[Path, Document]]:
        if not self._documents_dir.exists():
            return
        for path in sorted(self._documents_dir.glob("*.json")):
            try:
                document = self._read(path)
            except CorruptDocumentError as exc:
                self._logger.warning("document.corrupt", path=str(path), detail=str(exc))
                continue
            if document is not None:
                yield path, document

    def iter_documents(self) -> Iterator[Document]:
        if self._index is None:
            for _, document in self._scan():
                yield document
            return
        for document_id, _ in self._index.iter_entries():
            document = self.get(document_id)
            if document is not None:
                yield document

    def list(self) -> List[DocumentSummary]:
        """Summaries of every live document, newest first."""

        summaries = [document.summary() for document in self.iter_documents()]
        summaries.sort(key=lambda summary: (summary.created_at, summary.id), reverse=True)
        return summaries

    # ------------------------------------------------------------------
    # delete

    def _original_files(self, document_id: str) -> Iterable[Path]:
        if not self._originals_dir.exists():
            return []
        return [path for path in self._originals_dir.glob(f"{document_id}.*") if path.stem == document_id]

    def _remove_files(self, document_id: str, path: Path) -> None:
        path.unlink(missing_ok=True)
        for original in self._original_files(document_id):
            original.unlink(missing_ok=True)

    def delete(self, document_id: str) -> bool:
        """Remove a document, its original file and its index entries.

        Returns False when the document does not exist. Raises StorageError
        when an existing document cannot be fully removed.
        """

        if not isinstance(document_id, str) or not _DOCUMENT_ID.match(document_id):
            return False
        path = self._path_for(document_id)
        if self._index is not None:
            path = self._index.lookup(document_id) or path
            indexed = document_id in self._index
        else:
            indexed = False
        if not path.exists() and not indexed:
            return False

        try:
            self._remove_files(document_id, path)
        except OSError as exc:
            raise StorageError(f"Failed to remove files for document {document_id}: {exc}") from exc

        if self._index is not None:
            self._index.remove(document_id)
            try:
                self._index.persist()
            except OSError as exc:
                raise StorageError(f"Document {document_id} removed but the index could not be saved: {exc}") from exc

        PipelineMetrics.document_count.set(self.count())
        self._logger.info("document.deleted", document_id=document_id)
        return True

    # ------------------------------------------------------------------
    # search

    async def search_chunks(self, document_id: str, query: str, limit: int = 10) -> List[ScoredChunk]:
        """Score every chunk of one document against *query*, best first."""

        document = self.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not query or not query.strip():
            raise ValidationError("query must not be empty")
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        query_vector = await self._provider.embed(query)
        return rank_chunks(query_vector, document.chunks, limit)

    def keyword_search(self, terms: Iterable[str]) -> List[str]:
        """Ids of documents containing any keyword derived from *terms*."""

        terms = list(terms)
        if self._index is not None:
            return sorted(self._index.keyword_search(terms))
        wanted = set()
        for term in terms:
            wanted |= extract_keywords(term)
        return sorted(
            document.id for _, document in self._scan() if wanted & document_keywords(document)
        )
