"""Text extraction and chunking."""

from .chunker import Chunker, ChunkingOptions, DensityPolicy, StructuralDensityPolicy
from .extractors import ExtractionConfig, LangChainTextExtractor, TextExtractor, content_hash, normalize_text

__all__ = [
    "Chunker",
    "ChunkingOptions",
    "DensityPolicy",
    "ExtractionConfig",
    "LangChainTextExtractor",
    "StructuralDensityPolicy",
    "TextExtractor",
    "content_hash",
    "normalize_text",
]
