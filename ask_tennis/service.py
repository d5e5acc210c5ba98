# ask_tennis/service.py
"""
Process wiring: one QueryPipeline per process.

The HTTP server, the MCP server and the CLI all go through
initialize_pipeline() / get_pipeline(), so they share the same store,
cache and LLM client.
"""

import logging
from typing import Any, Dict, Optional

from .cache.query_cache import QueryCache
from .config import Settings
from .nlq.builder import QueryBuilder
from .nlq.classifier import DataSource, IntentClassifier, Question
from .nlq.composer import Answer, AnswerComposer
from .nlq.executor import QueryExecutor
from .nlq.llm import LLMConfig, OllamaCompletion, TextCompletion
from .nlq.pipeline import QueryPipeline
from .nlq.validator import SQLValidator
from .observability.metrics import MetricsManager, initialize_metrics
from .rate_limit.token_bucket import get_rate_limiter, initialize_rate_limiter
from .store.duckdb_store import DuckDBStore, RelationalStore
from .store.loader import create_tables

logger = logging.getLogger(__name__)


def build_pipeline(
    settings: Settings,
    store: RelationalStore,
    completion: Optional[TextCompletion] = None,
    metrics: Optional[MetricsManager] = None,
) -> QueryPipeline:
    """Assemble a pipeline from explicit collaborators."""
    return QueryPipeline(
        classifier=IntentClassifier(
            completion=completion, default_source=DataSource(settings.default_source)
        ),
        builder=QueryBuilder(completion=completion),
        validator=SQLValidator(),
        executor=QueryExecutor(
            store,
            timeout=settings.db_timeout,
            slow_query_ms=settings.slow_query_ms,
            metrics=metrics,
        ),
        composer=AnswerComposer(completion=completion),
        cache=QueryCache(max_size=settings.cache_max_size, ttl=settings.cache_ttl),
        metrics=metrics,
    )


# ============================================================================
# GLOBAL PIPELINE
# ============================================================================

_pipeline: Optional[QueryPipeline] = None
_store: Optional[DuckDBStore] = None


def initialize_pipeline(
    settings: Optional[Settings] = None,
    completion: Optional[TextCompletion] = None,
) -> QueryPipeline:
    """
    Open the store and build the process-wide pipeline.

    Args:
        settings: Settings (defaults to Settings.from_env())
        completion: LLM capability (defaults to Ollama from LLMConfig.from_env())

    Returns:
        The global QueryPipeline
    """
    global _pipeline, _store
    settings = settings or Settings.from_env()

    _store = DuckDBStore(settings.db_path, pool_size=settings.db_pool_size)
    create_tables(_store.connection)

    if completion is None:
        completion = OllamaCompletion(LLMConfig.from_env())

    if get_rate_limiter() is None:
        initialize_rate_limiter(
            requests=settings.rate_limit_requests, window=settings.rate_limit_window
        )

    metrics = initialize_metrics()
    metrics.set_server_info(version="1.0.0")

    _pipeline = build_pipeline(settings, _store, completion=completion, metrics=metrics)
    logger.info(
        f"Pipeline initialized (db={settings.db_path}, llm_enabled={completion.enabled}, "
        f"default_source={settings.default_source})"
    )
    return _pipeline


def get_pipeline() -> QueryPipeline:
    """
    Get the global pipeline.

    Raises:
        RuntimeError: If initialize_pipeline() has not been called
    """
    if _pipeline is None:
        raise RuntimeError("Pipeline not initialized. Call initialize_pipeline() first.")
    return _pipeline


def get_store() -> Optional[DuckDBStore]:
    return _store


def shutdown() -> None:
    """Close the store and drop the global pipeline."""
    global _pipeline, _store
    if _store is not None:
        _store.close()
    _pipeline = None
    _store = None


# ============================================================================
# CONVENIENCE
# ============================================================================


async def answer_tennis_question(text: Optional[str], user_id: Optional[str] = None) -> Answer:
    """
    Answer one question with the global pipeline.

    Raises:
        InvalidQuestionError: If text is blank (the pipeline is never entered)
    """
    question = Question.create(text, user_id=user_id)
    return await get_pipeline().process(question)


def get_pipeline_status() -> Dict[str, Any]:
    if _pipeline is None:
        return {"status": "not_initialized"}
    return _pipeline.get_status()
