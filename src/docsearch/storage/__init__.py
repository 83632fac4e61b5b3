"""On-disk document storage and its index."""

from .documents import FileDocumentStore
from .index import STOPWORDS, DocumentIndex, extract_keywords

__all__ = ["DocumentIndex", "FileDocumentStore", "STOPWORDS", "extract_keywords"]
