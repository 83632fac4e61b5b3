"""Bounded LRU cache mapping normalized text fingerprints to embedding vectors."""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Tuple

from docsearch.metrics.observability import PipelineMetrics, get_logger

CACHE_FORMAT_VERSION = "1.0"

LOGGER = get_logger("embeddings.cache")


def fingerprint(text: str) -> str:
    """Return the cache key for *text*.

    Texts that differ only in case or surrounding whitespace share a key.
    """

    return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()[:16]


@dataclass
class _CacheEntry:
    vector: Tuple[float, ...]
    last_access: float
    access_count: int


@dataclass(frozen=True)
class CacheStats:
    size: int
    capacity: int
    hits: int
    misses: int

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "total_requests": self.total_requests,
        }


class EmbeddingCache:
    """Strict LRU cache; every hit and every put marks the entry most recently used."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and fingerprint(text) in self._entries

    def get(self, text: str) -> Tuple[float, ...] | None:
        key = fingerprint(text)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                PipelineMetrics.observe_cache(hit=False)
                return None
            entry.last_access = time.time()
            entry.access_count += 1
            self._entries.move_to_end(key)
            self._hits += 1
        PipelineMetrics.observe_cache(hit=True)
        return entry.vector

    def put(self, text: str, vector: Sequence[float]) -> None:
        key = fingerprint(text)
        with self._lock:
            self._store(key, tuple(float(v) for v in vector), time.time(), 1)

    def _store(self, key: str, vector: Tuple[float, ...], last_access: float, access_count: int) -> None:
        existing = self._entries.get(key)
        if existing is not None:
            existing.vector = vector
            existing.last_access = last_access
            existing.access_count += 1
            self._entries.move_to_end(key)
            return
        self._entries[key] = _CacheEntry(vector=vector, last_access=last_access, access_count=access_count)
        self._evict_over(self._capacity)

    def _evict_over(self, bound: int) -> None:
        while len(self._entries) > bound:
            key, _ = self._entries.popitem(last=False)
            LOGGER.debug("cache.evict", key=key)

    def resize(self, capacity: int) -> None:
        """Change the capacity, evicting least recently used entries when shrinking."""

        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        with self._lock:
            self._capacity = capacity
            self._evict_over(capacity)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(size=len(self._entries), capacity=self._capacity, hits=self._hits, misses=self._misses)

    def memory_usage(self) -> int:
        """Rough estimate of the bytes held by cached vectors."""

        with self._lock:
            return sum(len(entry.vector) * 8 + 100 for entry in self._entries.values())

    def preload(self, pairs: Iterable[tuple[str, Sequence[float]]]) -> int:
        count = 0
        for text, vector in pairs:
            self.put(text, vector)
            count += 1
        LOGGER.info("cache.preload", entries=count, size=len(self._entries))
        return count

    def export(self) -> dict[str, Any]:
        """Return a serializable snapshot in LRU order (oldest first).

        The original texts are never part of the snapshot, only their fingerprints.
        """

        with self._lock:
            entries = [
                {
                    "key": key,
                    "vector": list(entry.vector),
                    "last_access": entry.last_access,
                    "access_count": entry.access_count,
                }
                for key, entry in self._entries.items()
            ]
            capacity = self._capacity
        return {
            "version": CACHE_FORMAT_VERSION,
            "capacity": capacity,
            "entries": entries,
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }

    def import_(self, data: Mapping[str, Any]) -> int:
        """Replace the cache contents with a snapshot produced by export().

        Snapshots with an unknown version are ignored; returns the number of imported entries.
        """

        version = data.get("version") if isinstance(data, Mapping) else None
        if version != CACHE_FORMAT_VERSION:
            LOGGER.warning("cache.import.unsupported_version", version=version)
            return 0
        imported = 0
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            capacity = data.get("capacity")
            if isinstance(capacity, int) and capacity >= 1:
                self._capacity = capacity
            for item in data.get("entries") or []:
                try:
                    key = str(item["key"])
                    vector = tuple(float(v) for v in item["vector"])
                    last_access = float(item.get("last_access", time.time()))
                    access_count = int(item.get("access_count", 1))
                except (KeyError, TypeError, ValueError):
                    continue
                self._entries[key] = _CacheEntry(vector=vector, last_access=last_access, access_count=access_count)
                self._entries.move_to_end(key)
                imported += 1
            self._evict_over(self._capacity)
        LOGGER.info("cache.import", entries=imported)
        return imported

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self.export()), encoding="utf-8")
        os.replace(tmp_path, path)
        LOGGER.info("cache.save", path=str(path), size=len(self._entries))

    def load(self, path: Path) -> int:
        if not path.exists():
            return 0
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("cache.load.failed", path=str(path), detail=str(exc))
            return 0
        return self.import_(data)
