# ask_tennis/nlq/llm.py
"""
Text-completion capability for the query pipeline.

The pipeline uses an LLM for three best-effort jobs:
1. Entity extraction during classification
2. SQL generation when no query template matches
3. Conversational answers when no answer template matches

Every call goes through TextCompletion.complete(), which either returns
non-empty text or raises LLMUnavailableError. Output is untrusted: SQL is
validated like user input and JSON is repaired before use.
"""

import asyncio
import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_ollama import ChatOllama

from ..api.errors import LLMUnavailableError
from ..rate_limit.token_bucket import rate_limited
from .validator import strip_code_fence

logger = logging.getLogger(__name__)


# ============================================================================
# ENVIRONMENT CONFIGURATION
# ============================================================================


@dataclass
class LLMConfig:
    """LLM configuration from environment variables."""

    model: str = "llama3.2:3b"
    url: str = "http://localhost:11434"
    enabled: bool = True
    timeout: float = 10.0  # seconds

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables with defaults."""
        return cls(
            model=os.getenv("ASK_TENNIS_LLM_MODEL", "llama3.2:3b"),
            url=os.getenv("ASK_TENNIS_LLM_URL", "http://localhost:11434"),
            enabled=os.getenv("ASK_TENNIS_ENABLE_LLM", "true").lower() == "true",
            timeout=float(os.getenv("ASK_TENNIS_LLM_TIMEOUT", "10")),
        )


# ============================================================================
# CAPABILITY
# ============================================================================


class TextCompletion(Protocol):
    """Fallible completion service. `enabled` False means never call it."""

    enabled: bool

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ) -> str:
        ...


@dataclass
class LLMMetrics:
    """Track LLM usage statistics."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    total_latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        stats = asdict(self)
        stats["avg_latency_ms"] = (
            self.total_latency_ms / self.successes if self.successes else 0.0
        )
        return stats


class OllamaCompletion:
    """
    TextCompletion backed by a local Ollama model through ChatOllama.

    One ChatOllama client is kept per (temperature, max_tokens) pair and
    created lazily on first use.
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self.metrics = LLMMetrics()
        self._clients: Dict[Tuple[float, int], ChatOllama] = {}

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _client_for(self, temperature: float, max_tokens: int) -> ChatOllama:
        key = (temperature, max_tokens)
        if key not in self._clients:
            self._clients[key] = ChatOllama(
                model=self.config.model,
                base_url=self.config.url,
                temperature=temperature,
                num_predict=max_tokens,
            )
            logger.info(
                f"Ollama client initialized: {self.config.model} at {self.config.url} "
                f"(temperature={temperature}, max_tokens={max_tokens})"
            )
        return self._clients[key]

    @rate_limited("llm_completion")
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ) -> str:
        """
        Run one chat completion.

        Returns:
            Stripped, non-empty response text

        Raises:
            LLMUnavailableError: disabled, timed out, failed or empty
            RateLimitError: shared LLM budget exhausted
        """
        if not self.config.enabled:
            raise LLMUnavailableError("LLM disabled via ASK_TENNIS_ENABLE_LLM")

        self.metrics.calls += 1
        start_time = time.time()
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]

        try:
            client = self._client_for(temperature, max_tokens)
            response = await asyncio.wait_for(
                client.ainvoke(messages), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            self.metrics.failures += 1
            self.metrics.timeouts += 1
            raise LLMUnavailableError(
                f"LLM call timed out after {self.config.timeout}s"
            ) from None
        except Exception as e:
            self.metrics.failures += 1
            raise LLMUnavailableError(f"LLM call failed: {e}") from e

        content = getattr(response, "content", response)
        if not isinstance(content, str) or not content.strip():
            self.metrics.failures += 1
            raise LLMUnavailableError("LLM returned an empty response")

        self.metrics.successes += 1
        self.metrics.total_latency_ms += (time.time() - start_time) * 1000
        return content.strip()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.metrics.to_dict()
        stats.update({"model": self.config.model, "enabled": self.config.enabled})
        return stats


# ============================================================================
# PROMPT TEMPLATES
# ============================================================================

ENTITY_EXTRACTION_PROMPT = """You are a tennis question analyzer. Extract the entities in the user's question.

Output JSON only (no explanation):
{
  "players": ["<full player name>"],
  "tournaments": ["<tournament name>"],
  "metrics": ["<ranking|points|titles|wins|aces|...>"],
  "timeframe": "<year, range or 'current', or null>",
  "surface": "<Clay|Grass|Hard|Carpet or null>",
  "confidence": 0.0-1.0,
  "intent": "<one short sentence describing what the user wants>"
}"""

SQL_GENERATION_PROMPT = """You write DuckDB SQL for a tennis statistics database.

Tables (only these exist):
{schema}

Rules:
- Output exactly one read-only SELECT statement and nothing else.
- No comments, no markdown, no explanation, no UNION.
- Use only the tables and columns listed above.
- Rows from the live rankings feed have data_source = 'sportsradar'; rows from the historical corpus have data_source = 'github'.
- Prefer the {source} data for this question.
- Always end with a LIMIT of 50 or fewer."""

ANSWER_PROMPT = """You are a friendly tennis statistics assistant.
Answer the user's question in one to three conversational sentences using only the rows provided.
State facts directly. Do not say "based on the data", "according to the data" or similar phrases.
If the rows do not answer the question, say what they do show."""


# ============================================================================
# OUTPUT CLEANUP
# ============================================================================

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def validate_and_correct_json(json_str: str) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of an LLM response, correcting common small-model
    mistakes.

    The first {...} span is taken, then progressively fixed:
        1. As-is
        2. Trailing commas removed
        3. Single quotes replaced with double quotes
        4. Unquoted keys quoted

    Returns:
        Parsed dict, or None if nothing usable could be recovered

    Examples:
        >>> validate_and_correct_json('Sure! {"players": ["Nadal"],}')
        {'players': ['Nadal']}
    """
    if not json_str:
        return None

    match = _JSON_OBJECT.search(strip_code_fence(json_str))
    if match is None:
        return None
    candidate = match.group(0)

    attempts = [
        lambda s: s,
        lambda s: re.sub(r",\s*([}\]])", r"\1", s),
        lambda s: re.sub(r",\s*([}\]])", r"\1", s.replace("'", '"')),
        lambda s: re.sub(
            r'([{,]\s*)([A-Za-z_]\w*)\s*:',
            r'\1"\2":',
            re.sub(r",\s*([}\]])", r"\1", s.replace("'", '"')),
        ),
    ]
    for fix in attempts:
        try:
            parsed = json.loads(fix(candidate))
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
        return None

    logger.warning(f"Could not correct JSON after all fixes: {candidate[:100]}...")
    return None
