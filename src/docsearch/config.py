"""Runtime configuration for the docsearch services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="docsearch_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    data_dir: Path = Path("./data")
    uploads_dir: Path = Path("./uploads")

    # Embedding model; hash embeddings are used unless use_model_embeddings is set
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dim: int = Field(default=384, ge=1)
    use_model_embeddings: bool = False
    embedding_device: str | None = None
    embedding_cache_folder: str | None = None
    embedding_fallback: bool = True
    embedding_init_timeout_seconds: float = Field(default=300.0, gt=0)
    embedding_preload: bool = False

    # Embedding cache
    cache_enabled: bool = True
    cache_size: int = Field(default=1000, ge=1)
    cache_persist: bool = False

    # Chunking
    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=100, ge=0)
    adaptive_chunking: bool = False
    parallel_chunking: bool = True
    parallel_workers: int = Field(default=4, ge=1)
    embed_max_retries: int = Field(default=2, ge=0)
    embed_retry_backoff_seconds: float = Field(default=0.05, ge=0)

    # Large text uploads are read incrementally above this size
    streaming_enabled: bool = True
    streaming_threshold_mb: float = Field(default=5.0, gt=0)

    index_enabled: bool = True

    default_search_limit: int = Field(default=10, ge=1)
    max_search_limit: int = Field(default=50, ge=1)
    max_document_size: int = Field(default=1_048_576, ge=1)
    context_before: int = Field(default=1, ge=0)
    context_after: int = Field(default=1, ge=0)

    allowed_extensions: tuple[str, ...] | str = (".txt", ".md", ".markdown", ".pdf")

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @property
    def cache_path(self) -> Path:
        return self.data_dir / "embedding_cache.json"

    @property
    def streaming_threshold_bytes(self) -> int:
        return int(self.streaming_threshold_mb * 1024 * 1024)

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_extensions
        if isinstance(value, tuple):
            return tuple(ext.lower() for ext in value)
        if isinstance(value, str):
            parts = [p.strip().lower() for p in value.split(",") if p.strip()]
            return tuple(parts) if parts else (".txt", ".md", ".pdf")
        return (".txt", ".md", ".pdf")


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
