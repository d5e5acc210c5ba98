"""
Prometheus metrics for the Ask Tennis service.

Tracks:
- Answered questions by query type, and HTTP requests by route
- Pipeline state durations
- Answer cache hits and misses
- Degraded-path events (build, validation, execution, LLM failures)
- Database query latency and slow queries
- Rate limit decisions
"""

import functools
import logging
import time
from typing import Any, Callable, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

logger = logging.getLogger(__name__)

# METRIC DEFINITIONS

REQUEST_COUNT = Counter(
    "ask_tennis_requests_total",
    "Total number of HTTP/MCP requests by route",
    ["route", "status"],  # status: success, error, rate_limited, invalid
)

REQUEST_DURATION = Histogram(
    "ask_tennis_request_duration_seconds",
    "Request duration in seconds",
    ["route"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

ANSWER_COUNT = Counter(
    "ask_tennis_answers_total",
    "Answers produced by the pipeline",
    ["query_type", "cached"],
)

PIPELINE_STAGE_DURATION = Histogram(
    "ask_tennis_pipeline_stage_duration_seconds",
    "Time spent in each pipeline state",
    ["stage"],  # cache_check, classify, build, validate, execute, compose, ...
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)

DEGRADED_EVENTS = Counter(
    "ask_tennis_degraded_events_total",
    "Failures converted into a lower-confidence path",
    ["reason"],  # classification, build, validation, execution, compose, unrecoverable
)

LLM_CALLS = Counter(
    "ask_tennis_llm_calls_total",
    "LLM completion attempts",
    ["purpose", "status"],  # purpose: classify, build, compose; status: success, failure
)

CACHE_OPERATIONS = Counter(
    "ask_tennis_cache_operations_total",
    "Answer cache operations",
    ["operation", "result"],  # operation: get, set; result: hit, miss, success
)

CACHE_HIT_RATE = Gauge("ask_tennis_cache_hit_rate", "Current cache hit rate (0-1)")

CACHE_SIZE = Gauge("ask_tennis_cache_size_items", "Number of answers in cache")

DB_QUERY_DURATION = Histogram(
    "ask_tennis_db_query_duration_seconds",
    "Relational store query duration",
    ["source"],  # live, historical
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0),
)

SLOW_QUERIES = Counter(
    "ask_tennis_slow_queries_total", "Queries over the slow-query threshold"
)

RATE_LIMIT_EVENTS = Counter(
    "ask_tennis_rate_limit_events_total",
    "Rate limit decisions",
    ["limit_name", "event_type"],  # event_type: allowed, blocked
)

SERVER_INFO = Info("ask_tennis_server", "Ask Tennis server information")

SERVER_START_TIME = Gauge(
    "ask_tennis_server_start_time_seconds", "Server start time in unix timestamp"
)

# METRICS MANAGER


class MetricsManager:
    """
    Convenience wrapper for recording metrics.

    Components receive an optional MetricsManager; when none is given they
    record nothing.
    """

    def __init__(self):
        self.start_time = time.time()
        SERVER_START_TIME.set(self.start_time)
        logger.info("Metrics manager initialized")

    # ────────────────────────────────────────────────────────────────────
    # Requests and answers
    # ────────────────────────────────────────────────────────────────────

    def record_request(self, route: str, duration: float, status: str = "success"):
        """
        Record a request with duration and status.

        Args:
            route: Route or tool name
            duration: Request duration in seconds
            status: success, error, rate_limited or invalid
        """
        REQUEST_COUNT.labels(route=route, status=status).inc()
        REQUEST_DURATION.labels(route=route).observe(duration)

    def record_answer(self, query_type: str, cached: bool):
        ANSWER_COUNT.labels(query_type=query_type, cached=str(cached).lower()).inc()

    # ────────────────────────────────────────────────────────────────────
    # Pipeline
    # ────────────────────────────────────────────────────────────────────

    def record_stage(self, stage: str, duration: float):
        """
        Record time spent in a pipeline state.

        Args:
            stage: Lowercase state name
            duration: Seconds spent in the state
        """
        PIPELINE_STAGE_DURATION.labels(stage=stage).observe(duration)

    def record_degraded(self, reason: str):
        DEGRADED_EVENTS.labels(reason=reason).inc()

    def record_llm_call(self, purpose: str, success: bool):
        LLM_CALLS.labels(purpose=purpose, status="success" if success else "failure").inc()

    # ────────────────────────────────────────────────────────────────────
    # Cache
    # ────────────────────────────────────────────────────────────────────

    def record_cache_hit(self):
        CACHE_OPERATIONS.labels(operation="get", result="hit").inc()

    def record_cache_miss(self):
        CACHE_OPERATIONS.labels(operation="get", result="miss").inc()

    def record_cache_set(self):
        CACHE_OPERATIONS.labels(operation="set", result="success").inc()

    def update_cache_stats(self, stats: Dict[str, Any]):
        """
        Update cache gauges from QueryCache.get_stats().

        Args:
            stats: Cache statistics dict with hit_rate and stored_items
        """
        if "hit_rate" in stats:
            CACHE_HIT_RATE.set(stats["hit_rate"])
        if "stored_items" in stats:
            CACHE_SIZE.set(stats["stored_items"])

    # ────────────────────────────────────────────────────────────────────
    # Database
    # ────────────────────────────────────────────────────────────────────

    def record_db_query(self, source: str, duration: float, slow: bool = False):
        DB_QUERY_DURATION.labels(source=source).observe(duration)
        if slow:
            SLOW_QUERIES.inc()

    # ────────────────────────────────────────────────────────────────────
    # Rate limits
    # ────────────────────────────────────────────────────────────────────

    def record_rate_limit(self, limit_name: str, allowed: bool):
        event_type = "allowed" if allowed else "blocked"
        RATE_LIMIT_EVENTS.labels(limit_name=limit_name, event_type=event_type).inc()

    # ────────────────────────────────────────────────────────────────────
    # Server info and export
    # ────────────────────────────────────────────────────────────────────

    def set_server_info(self, version: str, environment: str = "production"):
        SERVER_INFO.info({"version": version, "environment": environment})

    def get_metrics(self) -> bytes:
        """
        Get metrics in Prometheus format.

        Returns:
            Metrics in Prometheus text format
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# GLOBAL METRICS MANAGER

_metrics_manager: Optional[MetricsManager] = None


def initialize_metrics() -> MetricsManager:
    """
    Initialize global metrics manager.

    Returns:
        Initialized metrics manager
    """
    global _metrics_manager
    _metrics_manager = MetricsManager()
    return _metrics_manager


def get_metrics_manager() -> MetricsManager:
    """
    Get global metrics manager.

    Raises:
        RuntimeError: If metrics not initialized
    """
    if _metrics_manager is None:
        raise RuntimeError("Metrics not initialized. Call initialize_metrics() first.")
    return _metrics_manager


# DECORATORS


def track_metrics(route: Optional[str] = None):
    """
    Decorator recording request count and duration for an async handler.

    Args:
        route: Route or tool name (defaults to function name)
    """

    def decorator(func: Callable) -> Callable:
        route_name = route or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                return await func(*args, **kwargs)
            except Exception:
                status = "error"
                raise
            finally:
                if _metrics_manager is not None:
                    _metrics_manager.record_request(
                        route=route_name,
                        duration=time.time() - start_time,
                        status=status,
                    )

        return wrapper

    return decorator
