"""In-memory document index persisted as a single JSON file.

The index is a derived cache over the document files: it maps document ids
to file paths, normalized-content hashes to document ids, and keywords to
the documents containing them. It can always be rebuilt from a full scan.
"""

from __future__ import annotations

import json
import os
import re
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Set, Tuple

from docsearch.errors import CorruptIndexError
from docsearch.ingestion.extractors import content_hash
from docsearch.metrics.observability import get_logger
from docsearch.models import Document

INDEX_FORMAT_VERSION = 1

MIN_KEYWORD_LENGTH = 3

# Keep this list stable: persisted posting lists depend on it.
STOPWORDS = frozenset(
    """
    a about above after again against all also am an and any are as at be because been
    before being below between both but by can could did do does doing down during each
    few for from further had has have having he her here hers herself him himself his how
    i if in into is it its itself just me more most my myself no nor not now of off on
    once only or other our ours ourselves out over own same she should so some such than
    that the their theirs them themselves then there these they this those through to too
    under until up very was we were what when where which while who whom why will with
    would you your yours yourself yourselves
    """.split()
)

_SPLIT_PATTERN = re.compile(r"[^0-9a-z]+")

DocumentScanner = Callable[[], Iterable[Tuple[Path, Document]]]


def extract_keywords(text: str) -> Set[str]:
    """Lowercase, split on non-alphanumerics, drop short tokens and stopwords."""

    return {
        token
        for token in _SPLIT_PATTERN.split(text.lower())
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOPWORDS
    }


def document_keywords(document: Document) -> Set[str]:
    return extract_keywords(f"{document.title}\n{document.content}")


class DocumentIndex:
    """O(1) id lookup, content-hash dedup and keyword postings for stored documents."""

    def __init__(self, index_path: Path, scanner: DocumentScanner) -> None:
        self._index_path = index_path
        self._scanner = scanner
        self._lock = threading.RLock()
        self._paths: Dict[str, Path] = {}
        self._hash_to_id: Dict[str, str] = {}
        self._id_to_hash: Dict[str, str] = {}
        self._postings: Dict[str, Set[str]] = {}
        self._id_to_keywords: Dict[str, Set[str]] = {}
        self._logger = get_logger("storage.index")

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._paths

    def put(self, document: Document, path: Path) -> None:
        """Index *document*; re-indexing the same id replaces its previous entries."""

        digest = content_hash(document.content)
        keywords = document_keywords(document)
        with self._lock:
            self._remove_locked(document.id)
            self._paths[document.id] = path
            self._hash_to_id[digest] = document.id
            self._id_to_hash[document.id] = digest
            self._id_to_keywords[document.id] = keywords
            for keyword in keywords:
                self._postings.setdefault(keyword, set()).add(document.id)

    def remove(self, document_id: str) -> bool:
        with self._lock:
            return self._remove_locked(document_id)

    def _remove_locked(self, document_id: str) -> bool:
        if document_id not in self._paths:
            return False
        del self._paths[document_id]
        digest = self._id_to_hash.pop(document_id, None)
        if digest is not None and self._hash_to_id.get(digest) == document_id:
            del self._hash_to_id[digest]
        for keyword in self._id_to_keywords.pop(document_id, set()):
            posting = self._postings.get(keyword)
            if posting is None:
                continue
            posting.discard(document_id)
            if not posting:
                del self._postings[keyword]
        return True

    def lookup(self, document_id: str) -> Path | None:
        with self._lock:
            return self._paths.get(document_id)

    def exists_by_content_hash(self, digest: str) -> str | None:
        with self._lock:
            return self._hash_to_id.get(digest)

    def keyword_search(self, terms: Iterable[str]) -> Set[str]:
        """Return ids of documents containing any keyword derived from *terms*."""

        keywords: Set[str] = set()
        for term in terms:
            keywords |= extract_keywords(term)
        with self._lock:
            matches: Set[str] = set()
            for keyword in keywords:
                matches |= self._postings.get(keyword, set())
            return matches

    def keywords_for(self, document_id: str) -> Set[str]:
        with self._lock:
            return set(self._id_to_keywords.get(document_id, set()))

    def clear(self) -> None:
        with self._lock:
            self._paths.clear()
            self._hash_to_id.clear()
            self._id_to_hash.clear()
            self._postings.clear()
            self._id_to_keywords.clear()

    def rebuild(self) -> int:
        """Discard all entries and re-index every document the scanner yields."""

        with self._lock:
            self.clear()
            for path, document in self._scanner():
                self.put(document, path)
            count = len(self._paths)
        self._logger.info("index.rebuild", documents=count)
        return count

    def persist(self) -> None:
        with self._lock:
            payload = {
                "version": INDEX_FORMAT_VERSION,
                "documents": {doc_id: str(path) for doc_id, path in self._paths.items()},
                "content_hashes": dict(self._hash_to_id),
                "keywords": {keyword: sorted(ids) for keyword, ids in sorted(self._postings.items())},
            }
        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._index_path.with_suffix(self._index_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_path, self._index_path)

    def load(self) -> bool:
        """Load the index file; fall back to rebuild() if it is missing or corrupt.

        Returns True when the persisted file was used.
        """

        try:
            self._load_file()
        except FileNotFoundError:
            self._logger.info("index.missing", path=str(self._index_path))
        except CorruptIndexError as exc:
            self._logger.warning("index.corrupt", path=str(self._index_path), detail=str(exc))
        else:
            self._logger.info("index.load", path=str(self._index_path), documents=len(self._paths))
            return True
        self.rebuild()
        self.persist()
        return False

    def _load_file(self) -> None:
        try:
            raw = self._index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise CorruptIndexError(f"Unreadable index file: {exc}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptIndexError(f"Invalid JSON: {exc}") from exc
        if not isinstance(data, dict) or data.get("version") != INDEX_FORMAT_VERSION:
            raise CorruptIndexError("Unsupported index format")

        documents = data.get("documents")
        hashes = data.get("content_hashes")
        keywords = data.get("keywords")
        if not isinstance(documents, dict) or not isinstance(hashes, dict) or not isinstance(keywords, dict):
            raise CorruptIndexError("Index file is missing required sections")

        paths = {str(doc_id): Path(str(path)) for doc_id, path in documents.items()}
        hash_to_id = {str(digest): str(doc_id) for digest, doc_id in hashes.items()}
        postings: Dict[str, Set[str]] = {}
        for keyword, ids in keywords.items():
            if not isinstance(ids, list):
                raise CorruptIndexError(f"Posting list for {keyword!r} is not a list")
            postings[str(keyword)] = {str(doc_id) for doc_id in ids}

        dangling = {doc_id for doc_id in hash_to_id.values() if doc_id not in paths}
        for ids in postings.values():
            dangling |= ids - paths.keys()
        if dangling:
            raise CorruptIndexError(f"Entries reference unknown documents: {sorted(dangling)[:5]}")

        id_to_keywords: Dict[str, Set[str]] = {}
        for keyword, ids in postings.items():
            for doc_id in ids:
                id_to_keywords.setdefault(doc_id, set()).add(keyword)

        with self._lock:
            self._paths = paths
            self._hash_to_id = hash_to_id
            self._id_to_hash = {doc_id: digest for digest, doc_id in hash_to_id.items()}
            self._postings = postings
            self._id_to_keywords = id_to_keywords

    def iter_entries(self) -> Iterator[Tuple[str, Path]]:
        with self._lock:
            items = list(self._paths.items())
        yield from items
