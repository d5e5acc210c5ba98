# ask_tennis/rate_limit/__init__.py
"""
Rate limiting for Ask Tennis.

Token buckets for per-client API limits and the shared LLM budget.
"""

from .token_bucket import (
    RateLimiter,
    TokenBucket,
    get_rate_limiter,
    initialize_rate_limiter,
    rate_limited,
    reset_rate_limiter,
)

__all__ = [
    "RateLimiter",
    "TokenBucket",
    "get_rate_limiter",
    "initialize_rate_limiter",
    "rate_limited",
    "reset_rate_limiter",
]
