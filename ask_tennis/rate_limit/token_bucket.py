# ask_tennis/rate_limit/token_bucket.py
"""
Token bucket rate limiting for Ask Tennis.

Two kinds of limits are managed:
- Named limits (one shared bucket), e.g. "llm_completion" to keep the
  local model from being flooded.
- Per-client policies (one bucket per client id, created on first use),
  e.g. "api_query" allowing 100 questions per 15 minutes per client.

Example:
    limiter = initialize_rate_limiter(requests=100, window=900)
    allowed, retry_after = limiter.check_client("api_query", "127.0.0.1")
    if not allowed:
        return 429
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


# ============================================================================
# TOKEN BUCKET
# ============================================================================


@dataclass
class TokenBucket:
    """
    Thread-safe token bucket.

    Allows bursts up to capacity while holding the long-term rate at
    refill_rate tokens per second.
    """

    capacity: float
    refill_rate: float  # tokens per second
    tokens: float = field(init=False)
    last_refill: float = field(default_factory=time.monotonic)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self):
        self.tokens = self.capacity

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """
        Try to take tokens from the bucket.

        Returns:
            True if the request is allowed, False if rate limited
        """
        with self.lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    def get_remaining(self) -> float:
        """Get number of remaining tokens."""
        with self.lock:
            self._refill()
            return self.tokens

    def is_full(self) -> bool:
        """True once the bucket has refilled to capacity."""
        with self.lock:
            self._refill()
            return self.tokens >= self.capacity

    def get_wait_time(self, tokens: int = 1) -> float:
        """Seconds until `tokens` are available (0 if available now)."""
        with self.lock:
            self._refill()
            if self.tokens >= tokens:
                return 0.0
            return (tokens - self.tokens) / self.refill_rate

    def reset(self):
        """Reset bucket to full capacity."""
        with self.lock:
            self.tokens = self.capacity
            self.last_refill = time.monotonic()


@dataclass
class ClientPolicy:
    """
    Per-client limit: `requests` allowed per `window` seconds.

    Buckets are created on first use. A bucket that has refilled to capacity
    is indistinguishable from a new one, so such buckets are dropped every
    `prune_interval` seconds to keep the client map bounded by active callers.
    """

    requests: int
    window: float
    prune_interval: float = 60.0
    buckets: Dict[str, TokenBucket] = field(default_factory=dict)
    last_pruned: float = field(default_factory=time.monotonic)

    def bucket_for(self, client_id: str) -> TokenBucket:
        if time.monotonic() - self.last_pruned >= self.prune_interval:
            self.prune()
        bucket = self.buckets.get(client_id)
        if bucket is None:
            bucket = TokenBucket(
                capacity=self.requests, refill_rate=self.requests / self.window
            )
            self.buckets[client_id] = bucket
        return bucket

    def prune(self) -> int:
        """Forget clients whose bucket is full again; returns how many."""
        idle = [client_id for client_id, bucket in self.buckets.items() if bucket.is_full()]
        for client_id in idle:
            del self.buckets[client_id]
        self.last_pruned = time.monotonic()
        if idle:
            logger.debug(f"Pruned {len(idle)} idle client buckets")
        return len(idle)


# ============================================================================
# RATE LIMITER (manages named buckets and client policies)
# ============================================================================


class RateLimiter:
    """Registry of named token buckets and per-client policies."""

    def __init__(self):
        self.buckets: Dict[str, TokenBucket] = {}
        self.policies: Dict[str, ClientPolicy] = {}
        self.lock = threading.Lock()

    def add_limit(self, name: str, capacity: float, refill_rate: float):
        """
        Add a shared limit.

        Args:
            name: Limit name
            capacity: Max tokens (burst capacity)
            refill_rate: Tokens per second

        Example:
            limiter.add_limit("llm_completion", capacity=30, refill_rate=0.5)
            # 30 completions/minute
        """
        with self.lock:
            self.buckets[name] = TokenBucket(capacity, refill_rate)
        logger.info(f"Added rate limit: {name} ({capacity} tokens, {refill_rate}/s)")

    def add_client_policy(self, name: str, requests: int, window: float):
        """Add a per-client limit of `requests` per `window` seconds."""
        with self.lock:
            self.policies[name] = ClientPolicy(requests=requests, window=window)
        logger.info(f"Added client policy: {name} ({requests} per {window:.0f}s)")

    def check_limit(self, name: str, tokens: int = 1) -> Tuple[bool, Optional[float]]:
        """
        Check a shared limit.

        Returns:
            (allowed, retry_after) - retry_after is None when allowed.
            Unknown names are always allowed.
        """
        bucket = self.buckets.get(name)
        if bucket is None:
            return True, None
        if bucket.consume(tokens):
            return True, None
        wait_time = bucket.get_wait_time(tokens)
        logger.warning(f"Rate limit exceeded for {name}, retry after {wait_time:.1f}s")
        return False, wait_time

    def check_client(
        self, policy_name: str, client_id: str
    ) -> Tuple[bool, Optional[float]]:
        """
        Check a per-client policy for one client.

        Returns:
            (allowed, retry_after) tuple, as for check_limit
        """
        policy = self.policies.get(policy_name)
        if policy is None:
            return True, None
        with self.lock:
            bucket = policy.bucket_for(client_id)
            allowed = bucket.consume()
        if allowed:
            return True, None
        wait_time = bucket.get_wait_time()
        logger.warning(
            f"Client {client_id} exceeded {policy_name}, retry after {wait_time:.1f}s"
        )
        return False, wait_time

    def get_stats(self) -> Dict[str, Any]:
        """Remaining tokens per named limit and client counts per policy."""
        stats: Dict[str, Any] = {}
        for name, bucket in self.buckets.items():
            stats[name] = {
                "capacity": bucket.capacity,
                "remaining": bucket.get_remaining(),
                "refill_rate": bucket.refill_rate,
            }
        for name, policy in self.policies.items():
            stats[name] = {
                "requests": policy.requests,
                "window_seconds": policy.window,
                "clients": len(policy.buckets),
            }
        return stats

    def reset_all(self):
        """Reset all limits and forget every client bucket."""
        with self.lock:
            for bucket in self.buckets.values():
                bucket.reset()
            for policy in self.policies.values():
                policy.buckets.clear()
        logger.info("All rate limits reset")


# ============================================================================
# GLOBAL RATE LIMITER
# ============================================================================

_rate_limiter: Optional[RateLimiter] = None


def initialize_rate_limiter(
    requests: int = 100, window: float = 900.0, llm_per_minute: int = 30
) -> RateLimiter:
    """
    Initialize the global rate limiter.

    Args:
        requests: Questions allowed per client per window on /api/query
        window: Window length in seconds
        llm_per_minute: Shared budget of LLM completions per minute

    Returns:
        RateLimiter instance
    """
    global _rate_limiter
    _rate_limiter = RateLimiter()
    _rate_limiter.add_client_policy("api_query", requests=requests, window=window)
    _rate_limiter.add_limit(
        "llm_completion", capacity=llm_per_minute, refill_rate=llm_per_minute / 60
    )
    logger.info("Rate limiter initialized")
    return _rate_limiter


def get_rate_limiter() -> Optional[RateLimiter]:
    """Get global rate limiter instance."""
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the global rate limiter (used between tests)."""
    global _rate_limiter
    _rate_limiter = None


# ============================================================================
# RATE LIMIT DECORATOR
# ============================================================================


def rate_limited(limit_name: str):
    """
    Decorator enforcing a shared limit on an async function.

    Raises RateLimitError when the global limiter blocks the call. Does
    nothing if no global limiter has been initialized.

    Example:
        @rate_limited("llm_completion")
        async def complete(self, system_prompt, user_prompt):
            ...
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            limiter = get_rate_limiter()
            if limiter:
                allowed, retry_after = limiter.check_limit(limit_name)
                if not allowed:
                    from ..api.errors import RateLimitError

                    raise RateLimitError(
                        retry_after=int(retry_after) + 1 if retry_after else 60,
                        scope=limit_name,
                    )
            return await func(*args, **kwargs)

        return wrapper

    return decorator
