"""LRU + TTL cache in front of a LangChain embeddings backend."""

from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict

from langchain_core.embeddings.embeddings import Embeddings


class CachedEmbeddings(Embeddings):
    """
    Drop-in `Embeddings` wrapper that memoizes vectors by text.

    Re-embedding the same chunk after a restart or a duplicate ingestion is a
    cache hit. Entries expire after `ttl_seconds`; the least recently used
    entry is evicted once `max_size` is reached.
    """

    def __init__(self, embedder: Embeddings, max_size: int = 2048, ttl_seconds: float = 3600.0):
        self.embedder = embedder
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: OrderedDict[str, tuple[float, list[float]]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.md5(text.encode("utf-8")).hexdigest()

    def _lookup(self, text: str) -> list[float] | None:
        key = self._key(text)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                stored_at, vector = entry
                if time.monotonic() - stored_at < self.ttl_seconds:
                    self._cache.move_to_end(key)
                    self._hits += 1
                    return vector
                del self._cache[key]
            self._misses += 1
            return None

    def _store(self, text: str, vector: list[float]) -> None:
        key = self._key(text)
        with self._lock:
            self._cache[key] = (time.monotonic(), list(vector))
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    def embed_query(self, text: str) -> list[float]:
        cached = self._lookup(text)
        if cached is not None:
            return cached
        vector = self.embedder.embed_query(text)
        self._store(text, vector)
        return vector

    async def aembed_query(self, text: str) -> list[float]:
        cached = self._lookup(text)
        if cached is not None:
            return cached
        vector = await self.embedder.aembed_query(text)
        self._store(text, vector)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        results, missing = self._partition(texts)
        if missing:
            vectors = self.embedder.embed_documents([texts[i] for i in missing])
            self._fill(texts, results, missing, vectors)
        return results  # type: ignore[return-value]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        results, missing = self._partition(texts)
        if missing:
            vectors = await self.embedder.aembed_documents([texts[i] for i in missing])
            self._fill(texts, results, missing, vectors)
        return results  # type: ignore[return-value]

    def _partition(self, texts: list[str]) -> tuple[list[list[float] | None], list[int]]:
        results: list[list[float] | None] = []
        missing: list[int] = []
        for index, text in enumerate(texts):
            cached = self._lookup(text)
            results.append(cached)
            if cached is None:
                missing.append(index)
        return results, missing

    def _fill(
        self,
        texts: list[str],
        results: list[list[float] | None],
        missing: list[int],
        vectors: list[list[float]],
    ) -> None:
        for index, vector in zip(missing, vectors, strict=True):
            results[index] = vector
            self._store(texts[index], vector)

    @property
    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total else 0.0

    @property
    def stats(self) -> dict[str, float]:
        with self._lock:
            size = len(self._cache)
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate,
            "size": size,
            "max_size": self.max_size,
        }

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
