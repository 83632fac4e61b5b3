from __future__ import annotations

import json
from pathlib import Path

import pytest

from docsearch.embeddings.cache import CACHE_FORMAT_VERSION, EmbeddingCache, fingerprint


def test_fingerprint_ignores_case_and_padding():
    assert fingerprint("  Hello World ") == fingerprint("hello world")
    assert fingerprint("hello") != fingerprint("world")
    assert len(fingerprint("hello")) == 16


def test_inserting_past_capacity_evicts_least_recently_used():
    cache = EmbeddingCache(capacity=3)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("c", [3.0])
    cache.put("d", [4.0])
    assert "a" not in cache
    assert all(text in cache for text in ("b", "c", "d"))
    assert len(cache) == 3


def test_access_protects_entry_from_eviction():
    cache = EmbeddingCache(capacity=3)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("c", [3.0])
    assert cache.get("a") == (1.0,)
    cache.put("d", [4.0])
    assert "a" in cache
    assert "b" not in cache


def test_put_refreshes_recency():
    cache = EmbeddingCache(capacity=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.put("a", [1.5])
    cache.put("c", [3.0])
    assert cache.get("a") == (1.5,)
    assert "b" not in cache


def test_stats_track_hits_and_misses():
    cache = EmbeddingCache(capacity=4)
    assert cache.get("missing") is None
    cache.put("x", [0.5, 0.5])
    cache.get("x")
    cache.get("X ")
    stats = cache.stats()
    assert (stats.size, stats.capacity, stats.hits, stats.misses) == (1, 4, 2, 1)
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.to_dict()["total_requests"] == 3


def test_resize_shrinks_by_evicting_oldest():
    cache = EmbeddingCache(capacity=4)
    for name in "abcd":
        cache.put(name, [1.0])
    cache.resize(2)
    assert cache.capacity == 2
    assert [name for name in "abcd" if name in cache] == ["c", "d"]
    with pytest.raises(ValueError):
        cache.resize(0)


def test_clear_resets_entries_and_counters():
    cache = EmbeddingCache(capacity=2)
    cache.put("a", [1.0])
    cache.get("a")
    cache.clear()
    assert len(cache) == 0
    assert cache.stats().hits == 0


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        EmbeddingCache(capacity=0)


def test_memory_usage_estimate():
    cache = EmbeddingCache(capacity=4)
    cache.put("a", [0.0] * 10)
    cache.put("b", [0.0] * 5)
    assert cache.memory_usage() == (10 * 8 + 100) + (5 * 8 + 100)


def test_preload_warms_entries():
    cache = EmbeddingCache(capacity=4)
    assert cache.preload([("one", [1.0]), ("two", [2.0])]) == 2
    assert cache.get("two") == (2.0,)


def test_export_omits_original_text():
    cache = EmbeddingCache(capacity=4)
    cache.put("secret sentence", [0.25, 0.75])
    exported = cache.export()
    assert exported["version"] == CACHE_FORMAT_VERSION
    assert "secret sentence" not in json.dumps(exported)
    entry = exported["entries"][0]
    assert set(entry) == {"key", "vector", "last_access", "access_count"}
    assert entry["key"] == fingerprint("secret sentence")


def test_import_rejects_unknown_version():
    cache = EmbeddingCache(capacity=4)
    cache.put("keep", [1.0])
    assert cache.import_({"version": "2.0", "entries": []}) == 0
    assert "keep" in cache


def test_save_and_load_preserve_entries_and_order(tmp_path: Path):
    path = tmp_path / "cache" / "embedding_cache.json"
    cache = EmbeddingCache(capacity=3)
    cache.put("a", [1.0, 0.0])
    cache.put("b", [0.0, 1.0])
    cache.get("a")
    cache.save(path)

    restored = EmbeddingCache(capacity=3)
    assert restored.load(path) == 2
    assert restored.get("a") == (1.0, 0.0)
    restored.put("c", [1.0, 1.0])
    restored.put("d", [2.0, 2.0])
    # "b" was least recently used when saved
    assert "b" not in restored


def test_load_ignores_missing_or_corrupt_file(tmp_path: Path):
    cache = EmbeddingCache(capacity=2)
    assert cache.load(tmp_path / "absent.json") == 0
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    assert cache.load(broken) == 0
