from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from docsearch.config import get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({})
    assert settings.embedding_model == "sentence-transformers/all-MiniLM-L6-v2"
    assert settings.embedding_dim == 384
    assert not settings.use_model_embeddings


def test_chunking_and_cache_defaults():
    settings = get_settings({})
    assert settings.chunk_size == 1000
    assert settings.chunk_overlap == 100
    assert settings.cache_size == 1000
    assert settings.parallel_workers >= 1
    assert settings.index_enabled


def test_override_builds_fresh_instance(tmp_path: Path):
    settings = get_settings({"data_dir": tmp_path, "environment": "test"})
    assert settings.environment == "test"
    assert settings.data_dir == tmp_path
    assert settings.cache_path == tmp_path / "embedding_cache.json"
    assert get_settings() is get_settings()


def test_overlap_must_be_smaller_than_chunk_size():
    with pytest.raises(ValidationError):
        get_settings({"chunk_size": 100, "chunk_overlap": 100})


def test_allowed_extensions_accepts_comma_string():
    settings = get_settings({"allowed_extensions": ".TXT, .md"})
    assert settings.allowed_extensions_tuple == (".txt", ".md")


def test_streaming_threshold_in_bytes():
    settings = get_settings({"streaming_threshold_mb": 2})
    assert settings.streaming_threshold_bytes == 2 * 1024 * 1024
