# ask_tennis/cache/__init__.py
"""
Answer cache for Ask Tennis.

In-process, bounded and time-expired. Owned by one QueryPipeline; nothing
is persisted across restarts.
"""

from .query_cache import CacheEntry, QueryCache, generate_cache_key, normalize_question

__all__ = [
    "CacheEntry",
    "QueryCache",
    "generate_cache_key",
    "normalize_question",
]
