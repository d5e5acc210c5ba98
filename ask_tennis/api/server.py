# ask_tennis/api/server.py
"""
FastAPI server for the Ask Tennis web client.

Endpoints:
- POST /api/query         answer a question (400 blank, 429 rate limited)
- GET  /api/health        liveness
- GET  /api/status        pipeline, cache and rate limit statistics
- POST /api/clear-cache   drop every cached answer
- GET  /metrics           Prometheus text format

Usage:
    python -m ask_tennis serve --port 3001
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from ..config import Settings
from ..nlq.classifier import Question
from ..nlq.pipeline import QueryPipeline
from ..observability.metrics import MetricsManager, get_metrics_manager
from ..rate_limit.token_bucket import get_rate_limiter, initialize_rate_limiter
from .errors import AskTennisError, InvalidQuestionError, RateLimitError
from .models import ErrorDetail, HealthResponse, QueryRequest, QueryResponse, StatusResponse

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
QUERY_POLICY = "api_query"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _client_id(request: Request, trust_forwarded_for: bool = False) -> str:
    """
    Rate-limit key for a request.

    The body's userId is caller-chosen and never used. Behind a trusted proxy
    the key is the last X-Forwarded-For hop, the address that proxy saw;
    earlier hops can be forged by the client.
    """
    if trust_forwarded_for:
        hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",")]
        if hops[-1]:
            return hops[-1]
    return request.client.host if request.client else "anonymous"


def _metrics() -> Optional[MetricsManager]:
    try:
        return get_metrics_manager()
    except RuntimeError:
        return None


def _error(status_code: int, error: AskTennisError) -> JSONResponse:
    headers = {}
    if error.retry_after is not None:
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(
        status_code=status_code,
        content=ErrorDetail(
            error=error.message, code=error.code, retryAfter=error.retry_after
        ).model_dump(),
        headers=headers,
    )


def create_app(
    pipeline: Optional[QueryPipeline] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        pipeline: Pipeline to serve (defaults to the global one from service)
        settings: Settings for CORS and rate limits (defaults to Settings.from_env())
    """
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Ask Tennis API",
        description="Natural language questions about tennis rankings, matches and players",
        version=VERSION,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if get_rate_limiter() is None:
        initialize_rate_limiter(
            requests=settings.rate_limit_requests, window=settings.rate_limit_window
        )

    def current_pipeline() -> QueryPipeline:
        if pipeline is not None:
            return pipeline
        from ..service import get_pipeline

        return get_pipeline()

    def record(route: str, started: float, status: str) -> None:
        manager = _metrics()
        if manager is not None:
            manager.record_request(route, time.time() - started, status)

    @app.post(
        "/api/query",
        response_model=QueryResponse,
        responses={400: {"model": ErrorDetail}, 429: {"model": ErrorDetail}},
    )
    async def query(body: QueryRequest, request: Request):
        """Answer one tennis question."""
        started = time.time()

        limiter = get_rate_limiter()
        if limiter is not None:
            client_id = _client_id(request, settings.trust_forwarded_for)
            allowed, retry_after = limiter.check_client(QUERY_POLICY, client_id)
            manager = _metrics()
            if manager is not None:
                manager.record_rate_limit(QUERY_POLICY, allowed)
            if not allowed:
                logger.warning(f"Rate limit exceeded for {client_id}")
                record("/api/query", started, "rate_limited")
                return _error(429, RateLimitError(retry_after=math.ceil(retry_after or 1)))

        try:
            question = Question.create(body.question, user_id=body.userId)
        except InvalidQuestionError as e:
            record("/api/query", started, "invalid")
            return _error(400, e)

        try:
            answer = await current_pipeline().process(question)
        except Exception as e:
            logger.exception(f"Query endpoint failed for question={question.text!r}: {e}")
            record("/api/query", started, "error")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to process query", "code": "INTERNAL_ERROR"},
            )

        record("/api/query", started, "success")
        return answer.to_dict()

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", timestamp=_now(), version=VERSION)

    @app.get("/api/status", response_model=StatusResponse)
    async def status():
        """Pipeline statistics passthrough."""
        try:
            stats = current_pipeline().get_status()
        except RuntimeError as e:
            return StatusResponse(status="not_initialized", timestamp=_now(), llm={"error": str(e)})
        limiter = get_rate_limiter()
        return StatusResponse(
            status=stats["status"],
            timestamp=_now(),
            cache=stats["cache"],
            executor=stats["executor"],
            llm=stats["llm"],
            rateLimits=limiter.get_stats() if limiter else {},
            defaultSource=stats["default_source"],
        )

    @app.post("/api/clear-cache")
    async def clear_cache():
        current_pipeline().clear_cache()
        return {"message": "Cache cleared successfully", "timestamp": _now()}

    @app.get("/metrics")
    async def metrics():
        manager = _metrics()
        if manager is None:
            return Response(content=b"", media_type="text/plain")
        return Response(content=manager.get_metrics(), media_type=manager.get_content_type())

    return app

