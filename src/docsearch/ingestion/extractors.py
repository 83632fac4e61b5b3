"""Text extraction and normalization for ingested files."""

from __future__ import annotations

import codecs
import hashlib
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Protocol

from langchain_community.document_loaders import PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from docsearch.errors import ExtractionError, UnsupportedFileTypeError
from docsearch.metrics.observability import get_logger

_MARKDOWN_HEADING = re.compile(r"^#{1,6}\s+\S", re.MULTILINE)


def normalize_text(raw: str) -> str:
    """Canonical form used for storage, chunking and content hashing.

    Unicode is NFKC-normalized, line endings become ``\\n``, trailing spaces
    are dropped from each line, runs of blank lines collapse to one blank
    line and the result is stripped.
    """

    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = re.sub(r"[ \t]+\n", "\n", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def content_hash(normalized: str) -> str:
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def infer_content_type(title: str, content: str) -> str:
    lowered = title.lower()
    if lowered.endswith((".md", ".markdown")) or _MARKDOWN_HEADING.search(content):
        return "text/markdown"
    if lowered.endswith(".pdf"):
        return "application/pdf"
    return "text/plain"


class TextExtractor(Protocol):
    """Turns a file into plain text."""

    def supports(self, path: Path) -> bool:
        """Return True when the file type can be extracted."""

    def extract(self, path: Path) -> str:
        """Return the plain text of *path*."""


@dataclass(frozen=True)
class ExtractionConfig:
    encoding: str = "utf-8"
    streaming_enabled: bool = True
    streaming_threshold_bytes: int = 5 * 1024 * 1024
    block_size: int = 1024 * 1024


class LangChainTextExtractor:
    """Extract text via LangChain loaders; large text files are read block by block."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".txt": TextLoader,
        ".md": TextLoader,
        ".markdown": TextLoader,
    }

    _logger = get_logger("ingestion.extractors")

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self._config = config or ExtractionConfig()

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self._LOADERS

    def extract(self, path: Path) -> str:
        suffix = path.suffix.lower()
        loader_cls = self._LOADERS.get(suffix)
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")

        if loader_cls is TextLoader and self._should_stream(path):
            return self._read_streaming(path)

        try:
            loader = self._build_loader(loader_cls, path)
            documents = loader.load()
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise ExtractionError(f"Failed to load {path}: {exc}") from exc
        return "\n\n".join(document.page_content for document in documents)

    def _should_stream(self, path: Path) -> bool:
        if not self._config.streaming_enabled:
            return False
        try:
            return path.stat().st_size > self._config.streaming_threshold_bytes
        except OSError as exc:
            raise ExtractionError(f"Failed to stat {path}: {exc}") from exc

    def _read_streaming(self, path: Path) -> str:
        decoder = codecs.getincrementaldecoder(self._config.encoding)(errors="replace")
        parts: List[str] = []
        bytes_read = 0
        try:
            with path.open("rb") as handle:
                while True:
                    block = handle.read(self._config.block_size)
                    if not block:
                        break
                    bytes_read += len(block)
                    parts.append(decoder.decode(block))
                parts.append(decoder.decode(b"", final=True))
        except OSError as exc:
            raise ExtractionError(f"Failed to read {path}: {exc}") from exc
        self._logger.info("extraction.streamed", path=str(path), bytes_read=bytes_read)
        return "".join(parts)

    def _build_loader(self, loader_cls: type[BaseLoader], path: Path) -> BaseLoader:
        if loader_cls is TextLoader:
            return loader_cls(str(path), encoding=self._config.encoding)
        return loader_cls(str(path))
