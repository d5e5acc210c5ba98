"""
Observability module for Ask Tennis.

Provides Prometheus metrics for requests, pipeline states, cache and database.
"""

from ask_tennis.observability.metrics import (
    MetricsManager,
    get_metrics_manager,
    initialize_metrics,
    track_metrics,
)

__all__ = [
    "MetricsManager",
    "get_metrics_manager",
    "initialize_metrics",
    "track_metrics",
]
