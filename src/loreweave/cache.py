"""TTL key/value cache shared by every engine component."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .utils.serialization import json_dumps_safe

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]

_MISSING = object()


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    created_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    keys: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "keys": self.keys,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TTLCache:
    """
    In-memory TTL cache with insertion-ordered eviction.

    Entries expire lazily on read and eagerly in `optimize()`. When the key
    count passes `max_keys`, the oldest `evict_fraction` of entries is dropped.

    Warning:
        Not thread-safe. All access is expected from a single event loop.
    """

    def __init__(
        self,
        default_ttl: float = 600.0,
        *,
        max_keys: int = 1000,
        evict_fraction: float = 0.1,
        counter_reset: int = 10000,
        clock: Clock | None = None,
    ):
        self.default_ttl = default_ttl
        self.max_keys = max_keys
        self.evict_fraction = evict_fraction
        self.counter_reset = counter_reset
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._peek(key) is not _MISSING

    def has(self, key: str) -> bool:
        return key in self

    def get(self, key: str, default: Any = None) -> Any:
        value = self._peek(key)
        if value is _MISSING:
            self._misses += 1
            return default
        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        effective_ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=now + effective_ttl,
            created_at=now,
        )
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_keys:
            self.optimize()

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | Callable[[T], float] | None = None,
    ) -> T:
        """Return the cached value or await `producer` once and cache its result.

        Concurrent callers for the same key share a lock so the producer runs at
        most once per TTL window. Producer errors propagate and nothing is cached.
        `ttl` may be a callable that picks the lifetime from the produced value.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                value = self._peek(key)
                if value is not _MISSING:
                    return value
                value = await producer()
                self.set(key, value, ttl(value) if callable(ttl) else ttl)
                return value
        finally:
            if not lock.locked():
                self._locks.pop(key, None)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        """Remove every key containing `pattern` (prefix matches included)."""
        doomed = [key for key in self._entries if pattern in key]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("cache invalidated pattern=%s removed=%d", pattern, len(doomed))
        return len(doomed)

    def keys(self) -> list[str]:
        now = self._clock()
        return [key for key, entry in self._entries.items() if not entry.expired(now)]

    def ttl_remaining(self, key: str) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry.expires_at - self._clock()
        return remaining if remaining > 0 else None

    def touch(self, key: str, ttl: float | None = None) -> bool:
        """Extend an existing entry's lifetime without changing its value."""
        value = self._peek(key)
        if value is _MISSING:
            return False
        entry = self._entries[key]
        entry.expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        return CacheStats(keys=len(self._entries), hits=self._hits, misses=self._misses)

    def optimize(self) -> int:
        """Purge expired entries, then trim the oldest entries past the soft ceiling.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        removed = len(expired)

        if len(self._entries) > self.max_keys:
            evict_count = max(1, int(len(self._entries) * self.evict_fraction))
            for _ in range(evict_count):
                self._entries.popitem(last=False)
            removed += evict_count
            logger.info(
                "cache trimmed evicted=%d remaining=%d", evict_count, len(self._entries)
            )

        if self._hits > self.counter_reset or self._misses > self.counter_reset:
            self._hits = 0
            self._misses = 0
        return removed

    def _peek(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.expired(self._clock()):
            del self._entries[key]
            return _MISSING
        return entry.value


def content_hash(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def generate_key(*parts: Any) -> str:
    """Stable md5 key over JSON-safe parts."""
    return content_hash(json_dumps_safe(list(parts)))


class CacheKeys:
    """Namespaced key builders so related entries can be invalidated by prefix."""

    @staticmethod
    def analysis(content: str, project_id: str | None, profile_signature: str = "") -> str:
        return f"rag:analysis:{generate_key(content, profile_signature)}:{project_id or 'none'}"

    @staticmethod
    def query_analysis(query: str, profile_signature: str = "") -> str:
        return f"rag:query:{generate_key(query.strip().lower(), profile_signature)}"

    @staticmethod
    def project_context(project_id: str) -> str:
        return f"project:context:{project_id}"

    @staticmethod
    def project_stats(project_id: str) -> str:
        return f"project:stats:{project_id}"

    @staticmethod
    def project_data(project_id: str) -> str:
        return f"project:data:{project_id}"

    @staticmethod
    def search(query: str, project_id: str | None, filters: Any) -> str:
        return f"search:{project_id or 'all'}:{generate_key(query, filters)}"

