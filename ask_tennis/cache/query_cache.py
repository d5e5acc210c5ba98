# ask_tennis/cache/query_cache.py
"""
Bounded, time-expiring answer cache for the query pipeline.

Entries are keyed by a normalization of (question text, query type, data
source tag). Eviction is by insertion order once capacity is exceeded, and
entries independently expire on read after a fixed TTL. Reads do not
refresh an entry's position.

The cache is owned by a QueryPipeline instance; there is no module-level
instance.
"""

import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    """
    Normalize question text for cache keys.

    Lowercases, drops punctuation and collapses whitespace, so
    "Who is #1?" and "who is  1" share a key.
    """
    text = _NON_WORD.sub("", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def generate_cache_key(question: str, query_type: str, data_source: str) -> str:
    """
    Build the cache key for a question.

    Args:
        question: Raw question text
        query_type: Routed query type (live_data, historical_data, ...)
        data_source: Data source tag for the route

    Returns:
        Key of the form "{query_type}:{data_source}:{normalized question}"
    """
    return f"{query_type}:{data_source}:{normalize_question(question)}"


@dataclass(frozen=True)
class CacheEntry:
    """Stored value plus the time it was inserted."""

    key: str
    value: Any
    stored_at: float


class QueryCache:
    """
    In-memory answer cache with insertion-order eviction and TTL.

    Thread-safe: all map operations happen under a single lock, so a
    concurrent insert during eviction cannot push the cache past max_size.
    """

    def __init__(
        self,
        max_size: int = 200,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of answers to keep
            ttl: Seconds an entry stays readable after insertion
            clock: Time source, replaceable in tests
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        logger.info(f"Query cache initialized (max_size={max_size}, ttl={ttl}s)")

    def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value or None if missing or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._clock() - entry.stored_at > self.ttl:
                del self._entries[key]
                self.misses += 1
                logger.debug(f"Cache entry expired: {key}")
                return None

            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        """
        Store a value, evicting the oldest insertions if over capacity.

        Re-setting an existing key counts as a fresh insertion.
        """
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

            while len(self._entries) > self.max_size:
                oldest_key, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Cache evicted oldest entry: {oldest_key}")

    def delete(self, key: str) -> None:
        """Delete key from cache."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()
        logger.info("Query cache cleared")

    def size(self) -> int:
        """Get current number of stored entries (expired ones included)."""
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics for status reporting and metrics."""
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "stored_items": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "hit_rate": self.hits / lookups if lookups else 0.0,
            }
