# ask_tennis/config.py
"""
Process configuration for Ask Tennis.

Values come from environment variables (optionally loaded from a .env file
by the entry points). Components never read the environment themselves;
they receive these values through their constructors.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings, one instance per process."""

    # Relational store
    db_path: str = ":memory:"
    db_pool_size: int = 4
    db_timeout: float = 30.0  # seconds
    slow_query_ms: float = 1000.0

    # Answer cache
    cache_max_size: int = 200
    cache_ttl: float = 300.0  # seconds

    # Routing for questions that match no rule ("historical" or "live")
    default_source: str = "historical"

    # Third-party providers
    http_timeout: float = 10.0
    sportradar_api_key: str = ""

    # HTTP boundary
    host: str = "0.0.0.0"
    port: int = 3001
    rate_limit_requests: int = 100
    rate_limit_window: float = 900.0  # seconds
    # Key rate limits on X-Forwarded-For only when a trusted proxy sets it
    trust_forwarded_for: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from ASK_TENNIS_* environment variables with defaults."""
        origins = os.getenv("ASK_TENNIS_CORS_ORIGINS", "*")
        settings = cls(
            db_path=os.getenv("ASK_TENNIS_DB_PATH", ":memory:"),
            db_pool_size=int(os.getenv("ASK_TENNIS_DB_POOL_SIZE", "4")),
            db_timeout=float(os.getenv("ASK_TENNIS_DB_TIMEOUT", "30")),
            slow_query_ms=float(os.getenv("ASK_TENNIS_SLOW_QUERY_MS", "1000")),
            cache_max_size=int(os.getenv("ASK_TENNIS_CACHE_MAX_SIZE", "200")),
            cache_ttl=float(os.getenv("ASK_TENNIS_CACHE_TTL", "300")),
            default_source=os.getenv("ASK_TENNIS_DEFAULT_SOURCE", "historical")
            .strip()
            .lower(),
            http_timeout=float(os.getenv("ASK_TENNIS_HTTP_TIMEOUT", "10")),
            sportradar_api_key=os.getenv("SPORTRADAR_API_KEY", ""),
            host=os.getenv("ASK_TENNIS_HOST", "0.0.0.0"),
            port=int(os.getenv("ASK_TENNIS_PORT", "3001")),
            rate_limit_requests=int(os.getenv("ASK_TENNIS_RATE_LIMIT_REQUESTS", "100")),
            rate_limit_window=float(os.getenv("ASK_TENNIS_RATE_LIMIT_WINDOW", "900")),
            trust_forwarded_for=_env_bool("ASK_TENNIS_TRUST_FORWARDED_FOR", "false"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("ASK_TENNIS_LOG_LEVEL", "INFO").upper(),
        )
        if settings.default_source not in ("historical", "live"):
            logger.warning(
                f"Unknown ASK_TENNIS_DEFAULT_SOURCE={settings.default_source!r}, "
                "using 'historical'"
            )
            settings.default_source = "historical"
        return settings
