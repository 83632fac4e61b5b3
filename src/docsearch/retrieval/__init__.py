"""Chunk scoring and search."""

from .service import SearchEngine, cosine_similarity, rank_chunks

__all__ = ["SearchEngine", "cosine_similarity", "rank_chunks"]
