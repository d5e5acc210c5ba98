# ask_tennis/providers/sportradar.py
"""
Live tennis data from the Sportradar tennis API (v3, JSON).

Resources:
    rankings        ATP (default) or WTA singles rankings, params: {"tour": "WTA"}
    tournaments     current tournament list
    player_profile  one player, params: {"player_id": "sr:competitor:14882"}

Rows are normalized to the store's column names and tagged
data_source='sportsradar'.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from ..api.errors import ProviderError, retry_with_backoff
from ..store.schema import SOURCE_TAGS
from .base import USER_AGENT, as_int, get_response

logger = logging.getLogger(__name__)

BASE_URL = "https://api.sportradar.com/tennis/trial/v3/en"
PLACEHOLDER_KEY = "your_sportradar_api_key_here"


class SportradarProvider:
    """Async Sportradar client. One httpx.AsyncClient per provider instance."""

    source_tag = SOURCE_TAGS["live"]

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        base_url: str = BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": USER_AGENT}, transport=transport
        )
        if not self.is_configured:
            logger.warning("Sportradar API key not configured; live data is disabled")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_KEY

    async def fetch(
        self, resource: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch and normalize one resource.

        Raises:
            ProviderError: Unknown resource, missing API key, or request failure
        """
        if not self.is_configured:
            raise ProviderError("Sportradar API key not configured")
        params = params or {}
        if resource == "rankings":
            tour = str(params.get("tour", "ATP")).upper()
            query = {"type": "wta"} if tour == "WTA" else {}
            payload = await self._request("/rankings.json", query)
            return self._rankings(payload, tour)
        if resource == "tournaments":
            payload = await self._request("/tournaments.json")
            return self._tournaments(payload)
        if resource == "player_profile":
            player_id = params.get("player_id")
            if not player_id:
                raise ProviderError("player_profile requires a player_id")
            payload = await self._request(f"/players/{player_id}/profile.json")
            return self._player_profile(payload)
        raise ProviderError(f"Unknown Sportradar resource: {resource}")

    @retry_with_backoff(max_retries=2, base_delay=1.0)
    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = {"api_key": self.api_key, **(params or {})}
        logger.info(f"Fetching from Sportradar: {endpoint}")
        response = await get_response(self._client, f"{self.base_url}{endpoint}", query)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Sportradar returned invalid JSON for {endpoint}") from e

    def _rankings(self, payload: Any, tour: str) -> List[Dict[str, Any]]:
        entries = payload.get("rankings") if isinstance(payload, dict) else None
        if not entries:
            return []
        today = date.today().isoformat()
        rows = []
        for index, entry in enumerate(entries):
            player = entry.get("player") or entry.get("competitor") or {}
            if not player.get("name"):
                continue
            rows.append(
                {
                    "player_id": player.get("id"),
                    "name": player.get("name"),
                    "country": player.get("country_code"),
                    "ranking": as_int(entry.get("rank")) or index + 1,
                    "points": as_int(entry.get("points")) or 0,
                    "tour": tour,
                    "ranking_date": today,
                    "is_current": True,
                    "data_source": self.source_tag,
                }
            )
        logger.info(f"Normalized {len(rows)} {tour} ranking rows")
        return rows

    def _tournaments(self, payload: Any) -> List[Dict[str, Any]]:
        entries = payload.get("tournaments") if isinstance(payload, dict) else None
        columns = (
            "id", "name", "type", "surface", "level", "location",
            "start_date", "end_date", "prize_money", "status", "current_round",
        )
        return [{c: t.get(c) for c in columns} for t in entries or [] if t.get("name")]

    def _player_profile(self, payload: Any) -> List[Dict[str, Any]]:
        player = payload.get("player") if isinstance(payload, dict) else None
        if not player:
            return []
        return [
            {
                "id": player.get("id"),
                "name": player.get("name"),
                "country": player.get("country_code"),
                "birth_date": player.get("birth_date"),
                "height": as_int(player.get("height")),
                "weight": as_int(player.get("weight")),
                "playing_hand": player.get("playing_hand"),
                "turned_pro": as_int(player.get("turned_pro")),
                "current_ranking": as_int(player.get("current_ranking")),
                "career_prize_money": as_int(player.get("career_prize_money")),
                "data_source": self.source_tag,
            }
        ]

    async def aclose(self) -> None:
        await self._client.aclose()
