# ask_tennis/nlq/mock_backends.py
"""
Test doubles for the pipeline's external capabilities.

Both doubles count their calls so tests can assert that a cached answer
issued no new LLM or database work.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from ..api.errors import LLMUnavailableError


class ScriptedCompletion:
    """
    TextCompletion that replays scripted responses.

    Each response is either a string (returned) or an exception (raised).
    The last response repeats once the script runs out. With no script and
    no `error`, every call raises LLMUnavailableError.
    """

    def __init__(
        self,
        responses: Optional[Sequence[Union[str, Exception]]] = None,
        error: Optional[Exception] = None,
        enabled: bool = True,
    ):
        self.responses: List[Union[str, Exception]] = list(responses or [])
        self.error = error
        self.enabled = enabled
        self.calls: List[Dict[str, Any]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise LLMUnavailableError("No scripted response")

        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


class FailingStore:
    """RelationalStore whose every query raises."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error or ConnectionError("database unreachable")
        self.calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def query(self, statement: str, params: Sequence[Any] = (), timeout=None):
        self.calls.append(statement)
        raise self.error


class CountingStore:
    """Wraps a real RelationalStore and records every statement it runs."""

    def __init__(self, store):
        self.store = store
        self.calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def query(self, statement: str, params: Sequence[Any] = (), timeout=None):
        self.calls.append(statement)
        return await self.store.query(statement, params, timeout=timeout)
