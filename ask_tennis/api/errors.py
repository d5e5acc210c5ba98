# ask_tennis/api/errors.py
"""
Error taxonomy and resilience helpers for Ask Tennis.

Provides:
1. Error code constants for consistent error reporting
2. Exception hierarchy for each pipeline failure mode
3. Retry logic with exponential backoff for third-party fetches

Pipeline failures (BuildFailure, ValidationRejected, ExecutionFailure,
LLMUnavailableError) never escape QueryPipeline; they are converted into
the degraded path there. InvalidQuestionError is the only one meant to
reach the HTTP boundary.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode:
    """Standard error codes for Ask Tennis."""

    # Client errors (4xx equivalent)
    INVALID_QUESTION = "INVALID_QUESTION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Pipeline errors
    BUILD_FAILED = "BUILD_FAILED"
    VALIDATION_REJECTED = "VALIDATION_REJECTED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"

    # Upstream errors
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"

    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# EXCEPTION HIERARCHY
# ============================================================================


class AskTennisError(Exception):
    """Base exception for all Ask Tennis errors."""

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.INTERNAL_ERROR,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after = retry_after
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for API error bodies."""
        return {
            "code": self.code,
            "message": self.message,
            "retry_after": self.retry_after,
            "details": self.details,
        }


class InvalidQuestionError(AskTennisError):
    """Raised when a question is missing or blank after trimming."""

    def __init__(self, reason: str = "Question is required"):
        super().__init__(
            message=reason,
            code=ErrorCode.INVALID_QUESTION,
        )


class BuildFailure(AskTennisError):
    """No template matched and the LLM failed or returned unusable text."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=ErrorCode.BUILD_FAILED, details=details)


class ValidationRejected(BuildFailure):
    """Candidate statement failed SQL validation. Handled like BuildFailure."""

    def __init__(self, reason: str, statement: str):
        super().__init__(
            message=f"Statement rejected: {reason}",
            details={"reason": reason, "statement": statement},
        )
        self.code = ErrorCode.VALIDATION_REJECTED
        self.reason = reason


class ExecutionFailure(AskTennisError):
    """Database-level error or timeout while running a validated statement."""

    def __init__(
        self,
        cause: BaseException,
        statement: str,
        duration_ms: Optional[float] = None,
    ):
        message = str(cause) or type(cause).__name__
        super().__init__(
            message=f"Query execution failed: {message}",
            code=ErrorCode.EXECUTION_FAILED,
            details={
                "statement": statement,
                "duration_ms": duration_ms,
                "cause": type(cause).__name__,
            },
        )
        self.cause = cause


class LLMUnavailableError(AskTennisError):
    """LLM completion disabled, timed out, failed, or returned nothing usable."""

    def __init__(self, message: str):
        super().__init__(message=message, code=ErrorCode.LLM_UNAVAILABLE)


class RateLimitError(AskTennisError):
    """Raised when a caller or an upstream quota is exhausted."""

    def __init__(self, retry_after: int = 60, scope: str = "api"):
        super().__init__(
            message=f"Rate limit exceeded for {scope}. Retry after {retry_after} seconds.",
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            retry_after=retry_after,
            details={"scope": scope},
        )


class ProviderError(AskTennisError):
    """Third-party data provider error (network, status, configuration)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            code=ErrorCode.PROVIDER_ERROR,
            details={"status_code": status_code},
        )
        self.status_code = status_code


# ============================================================================
# RETRY LOGIC WITH EXPONENTIAL BACKOFF
# ============================================================================


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    retry_on: tuple = (ProviderError, asyncio.TimeoutError),
):
    """
    Decorator for retrying async functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        retry_on: Tuple of exceptions to retry on

    Example:
        @retry_with_backoff(max_retries=2, base_delay=0.5)
        async def fetch_rankings():
            # Retries twice with delays: 0.5s, 1s
            pass
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retry_on as e:
                    if attempt == max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} retries: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base**attempt), max_delay)
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}). "
                        f"Retrying in {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
