# ask_tennis/providers/base.py
"""
Shared pieces of the third-party data providers.

Providers populate the relational store ahead of time; the question
pipeline never calls them. Every row a provider returns carries the
data_source tag of its origin so the pipeline's source filters stay
consistent with whichever provider wrote the row.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..api.errors import ProviderError

logger = logging.getLogger(__name__)

USER_AGENT = "AskTennis/1.0.0"


class DataProvider(Protocol):
    """fetch(resource, params) -> rows; fallible."""

    source_tag: str

    async def fetch(
        self, resource: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        ...


async def get_response(
    client: httpx.AsyncClient, url: str, params: Optional[Dict[str, Any]] = None
) -> httpx.Response:
    """
    GET a URL, converting transport and status errors into ProviderError.

    4xx responses other than 429 are not worth retrying; their
    ProviderError carries the status code so callers can tell.
    """
    try:
        response = await client.get(url, params=params)
    except httpx.TimeoutException as e:
        raise ProviderError(f"Timed out fetching {url}") from e
    except httpx.HTTPError as e:
        raise ProviderError(f"Request to {url} failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"Provider returned HTTP {response.status_code} for {url}")
        raise ProviderError(
            f"Request to {url} failed with status {response.status_code}",
            status_code=response.status_code,
        )
    return response


def as_int(value: Any) -> Optional[int]:
    """Lenient integer parsing for provider payloads ("12", 12.0, "" -> None)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN from pandas
        return None
    return int(number)
