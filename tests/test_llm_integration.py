"""
Tests for the Ollama completion wrapper and LLM output cleanup.

No Ollama server is needed: ChatOllama.ainvoke is patched.
"""

import asyncio
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from ask_tennis.api.errors import LLMUnavailableError, RateLimitError
from ask_tennis.nlq.llm import LLMConfig, OllamaCompletion, validate_and_correct_json
from ask_tennis.rate_limit.token_bucket import initialize_rate_limiter


# ============================================================================
# CONFIGURATION
# ============================================================================


@pytest.fixture
def mock_env_enabled():
    """Mock environment with LLM enabled."""
    with patch.dict(
        os.environ,
        {
            "ASK_TENNIS_ENABLE_LLM": "true",
            "ASK_TENNIS_LLM_MODEL": "qwen2.5:7b",
            "ASK_TENNIS_LLM_URL": "http://ollama:11434",
            "ASK_TENNIS_LLM_TIMEOUT": "2.5",
        },
    ):
        yield


@pytest.fixture
def mock_env_disabled():
    """Mock environment with LLM disabled."""
    with patch.dict(os.environ, {"ASK_TENNIS_ENABLE_LLM": "false"}):
        yield


def test_config_from_env(mock_env_enabled):
    config = LLMConfig.from_env()
    assert config.enabled is True
    assert config.model == "qwen2.5:7b"
    assert config.url == "http://ollama:11434"
    assert config.timeout == 2.5


def test_config_disabled(mock_env_disabled):
    assert LLMConfig.from_env().enabled is False


# ============================================================================
# COMPLETION
# ============================================================================


@pytest.mark.asyncio
async def test_complete_returns_stripped_text():
    completion = OllamaCompletion(LLMConfig(timeout=1.0))
    with patch(
        "langchain_ollama.ChatOllama.ainvoke",
        new=AsyncMock(return_value=SimpleNamespace(content="  Carlos Alcaraz  \n")),
    ) as ainvoke:
        text = await completion.complete("system", "user", temperature=0.3, max_tokens=100)

    assert text == "Carlos Alcaraz"
    messages = ainvoke.await_args.args[0]
    assert [m.content for m in messages] == ["system", "user"]
    stats = completion.get_stats()
    assert stats["calls"] == 1
    assert stats["successes"] == 1


@pytest.mark.asyncio
async def test_clients_are_reused_per_settings():
    completion = OllamaCompletion(LLMConfig())
    with patch(
        "langchain_ollama.ChatOllama.ainvoke",
        new=AsyncMock(return_value=SimpleNamespace(content="ok")),
    ):
        await completion.complete("s", "u", temperature=0.1, max_tokens=500)
        await completion.complete("s", "u", temperature=0.1, max_tokens=500)
        await completion.complete("s", "u", temperature=0.3, max_tokens=300)
    assert len(completion._clients) == 2


@pytest.mark.asyncio
async def test_disabled_never_calls_model():
    completion = OllamaCompletion(LLMConfig(enabled=False))
    with patch("langchain_ollama.ChatOllama.ainvoke", new=AsyncMock()) as ainvoke:
        with pytest.raises(LLMUnavailableError):
            await completion.complete("s", "u")
    ainvoke.assert_not_called()
    assert completion.enabled is False


@pytest.mark.asyncio
async def test_timeout_becomes_llm_unavailable():
    async def slow(*args, **kwargs):
        await asyncio.sleep(1)

    completion = OllamaCompletion(LLMConfig(timeout=0.01))
    with patch("langchain_ollama.ChatOllama.ainvoke", new=slow):
        with pytest.raises(LLMUnavailableError) as exc_info:
            await completion.complete("s", "u")
    assert "timed out" in exc_info.value.message
    assert completion.get_stats()["timeouts"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome",
    [
        AsyncMock(side_effect=ConnectionError("connection refused")),
        AsyncMock(return_value=SimpleNamespace(content="   ")),
        AsyncMock(return_value=SimpleNamespace(content=None)),
    ],
)
async def test_failures_become_llm_unavailable(outcome):
    completion = OllamaCompletion(LLMConfig())
    with patch("langchain_ollama.ChatOllama.ainvoke", new=outcome):
        with pytest.raises(LLMUnavailableError):
            await completion.complete("s", "u")
    assert completion.get_stats()["failures"] == 1


@pytest.mark.asyncio
async def test_shared_llm_budget():
    initialize_rate_limiter(llm_per_minute=1)
    completion = OllamaCompletion(LLMConfig())
    with patch(
        "langchain_ollama.ChatOllama.ainvoke",
        new=AsyncMock(return_value=SimpleNamespace(content="ok")),
    ):
        assert await completion.complete("s", "u") == "ok"
        with pytest.raises(RateLimitError):
            await completion.complete("s", "u")


# ============================================================================
# JSON CLEANUP
# ============================================================================


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('{"players": ["Nadal"]}', {"players": ["Nadal"]}),
        ('Sure! {"players": ["Nadal"],}', {"players": ["Nadal"]}),
        ("{'players': ['Nadal']}", {"players": ["Nadal"]}),
        ('{players: ["Nadal"], confidence: 0.7}', {"players": ["Nadal"], "confidence": 0.7}),
        ('```json\n{"intent": "rankings"}\n```', {"intent": "rankings"}),
    ],
)
def test_validate_and_correct_json(raw, expected):
    assert validate_and_correct_json(raw) == expected


@pytest.mark.parametrize("raw", ["", "no json here", "{broken: [}", "[1, 2]"])
def test_validate_and_correct_json_gives_up(raw):
    assert validate_and_correct_json(raw) is None
