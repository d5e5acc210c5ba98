# ask_tennis/providers/github_csv.py
"""
Historical tennis data from Jeff Sackmann's public CSV repositories.

Resources:
    rankings   weekly rankings, params: {"tour": "ATP"|"WTA", "decade": "10s"|"20s"|"current"}
    matches    tour-level results, params: {"tour": ..., "year": 2023}
    players    player biographies, params: {"tour": ...}

Downloads go through httpx; parsing through pandas. Parsed frames are kept
in memory per URL for `cache_ttl` seconds.
"""

import io
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pandas as pd

from ..api.errors import ProviderError, retry_with_backoff
from ..store.schema import SOURCE_TAGS
from .base import USER_AGENT, as_int, get_response

logger = logging.getLogger(__name__)

BASE_URL = "https://raw.githubusercontent.com/JeffSackmann"
REPOSITORIES = {"ATP": "tennis_atp", "WTA": "tennis_wta"}
DEFAULT_MATCH_YEAR = 2024


def _date_text(value: Any) -> Optional[str]:
    """Sackmann dates are yyyymmdd integers."""
    number = as_int(value)
    if number is None:
        return None
    text = f"{number:08d}"
    return f"{text[:4]}-{text[4:6]}-{text[6:]}"


def _text(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and value != value):
        return None
    text = str(value).strip()
    return text or None


class GithubCsvProvider:
    """Async CSV downloader and normalizer for the historical corpus."""

    source_tag = SOURCE_TAGS["historical"]

    def __init__(
        self,
        timeout: float = 10.0,
        base_url: str = BASE_URL,
        cache_ttl: float = 24 * 60 * 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self._frames: Dict[str, Tuple[float, pd.DataFrame]] = {}
        self._client = httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": USER_AGENT}, transport=transport
        )

    def url_for(self, resource: str, params: Dict[str, Any]) -> str:
        tour = str(params.get("tour", "ATP")).upper()
        if tour not in REPOSITORIES:
            raise ProviderError(f"Unknown tour: {tour}")
        prefix = tour.lower()
        if resource == "rankings":
            file_name = f"{prefix}_rankings_{params.get('decade', 'current')}.csv"
        elif resource == "matches":
            file_name = f"{prefix}_matches_{int(params.get('year', DEFAULT_MATCH_YEAR))}.csv"
        elif resource == "players":
            file_name = f"{prefix}_players.csv"
        else:
            raise ProviderError(f"Unknown historical resource: {resource}")
        return f"{self.base_url}/{REPOSITORIES[tour]}/master/{file_name}"

    async def fetch(
        self, resource: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Download, parse and normalize one resource.

        Raises:
            ProviderError: Unknown resource/tour, download or parse failure
        """
        params = params or {}
        tour = str(params.get("tour", "ATP")).upper()
        frame = await self._frame(self.url_for(resource, params))
        if resource == "rankings":
            players = await self._player_names(tour)
            rows = self._rankings(frame, tour, players)
        elif resource == "matches":
            rows = self._matches(frame, tour)
        else:
            rows = self._players(frame, tour)
        logger.info(f"Normalized {len(rows)} {tour} {resource} rows from GitHub")
        return rows

    async def _frame(self, url: str) -> pd.DataFrame:
        cached = self._frames.get(url)
        if cached and time.time() - cached[0] < self.cache_ttl:
            logger.debug(f"Using cached CSV: {url}")
            return cached[1]
        frame = await self._download(url)
        self._frames[url] = (time.time(), frame)
        return frame

    @retry_with_backoff(max_retries=2, base_delay=1.0)
    async def _download(self, url: str) -> pd.DataFrame:
        logger.info(f"Fetching CSV from: {url}")
        response = await get_response(self._client, url)
        try:
            frame = pd.read_csv(io.StringIO(response.text), low_memory=False)
        except (ValueError, pd.errors.ParserError) as e:
            raise ProviderError(f"Could not parse CSV from {url}: {e}") from e
        logger.debug(f"Parsed {len(frame)} CSV rows from {url}")
        return frame

    async def _player_names(self, tour: str) -> Dict[int, str]:
        """player_id -> "First Last"; rankings files carry ids only."""
        try:
            frame = await self._frame(self.url_for("players", {"tour": tour}))
        except ProviderError as e:
            logger.warning(f"Player names unavailable for {tour} rankings: {e}")
            return {}
        names = {}
        for record in frame.to_dict("records"):
            player_id = as_int(record.get("player_id"))
            name = " ".join(
                p for p in (_text(record.get("name_first")), _text(record.get("name_last"))) if p
            )
            if player_id is not None and name:
                names[player_id] = name
        return names

    def _rankings(
        self, frame: pd.DataFrame, tour: str, names: Dict[int, str]
    ) -> List[Dict[str, Any]]:
        rows = []
        for record in frame.to_dict("records"):
            player_id = as_int(record.get("player"))
            ranking = as_int(record.get("rank"))
            ranking_date = _date_text(record.get("ranking_date"))
            if player_id is None or ranking is None or ranking_date is None:
                continue
            year = int(ranking_date[:4])
            rows.append(
                {
                    "player_id": player_id,
                    "player_name": names.get(player_id),
                    "ranking": ranking,
                    "points": as_int(record.get("points")),
                    "tour": tour,
                    "ranking_date": ranking_date,
                    "decade": year - year % 10,
                    "year": year,
                    "data_source": self.source_tag,
                }
            )
        return rows

    def _matches(self, frame: pd.DataFrame, tour: str) -> List[Dict[str, Any]]:
        rows = []
        for record in frame.to_dict("records"):
            winner, loser = _text(record.get("winner_name")), _text(record.get("loser_name"))
            if not (winner and loser):
                continue
            tournament_date = _date_text(record.get("tourney_date"))
            rows.append(
                {
                    "tournament_name": _text(record.get("tourney_name")),
                    "tournament_date": tournament_date,
                    "surface": _text(record.get("surface")),
                    "round": _text(record.get("round")),
                    "winner_name": winner,
                    "loser_name": loser,
                    "score": _text(record.get("score")),
                    "winner_rank": as_int(record.get("winner_rank")),
                    "loser_rank": as_int(record.get("loser_rank")),
                    "winner_points": as_int(record.get("winner_rank_points")),
                    "loser_points": as_int(record.get("loser_rank_points")),
                    "tour": tour,
                    "year": int(tournament_date[:4]) if tournament_date else None,
                    "data_source": self.source_tag,
                }
            )
        return rows

    def _players(self, frame: pd.DataFrame, tour: str) -> List[Dict[str, Any]]:
        rows = []
        for record in frame.to_dict("records"):
            name = " ".join(
                p for p in (_text(record.get("name_first")), _text(record.get("name_last"))) if p
            )
            if not name:
                continue
            rows.append(
                {
                    "player_id": as_int(record.get("player_id")),
                    "name": name,
                    "birth_date": _date_text(record.get("dob")),
                    "country": _text(record.get("ioc")),
                    "height": as_int(record.get("height")),
                    "playing_hand": _text(record.get("hand")),
                    "tour": tour,
                    "data_source": self.source_tag,
                }
            )
        return rows

    async def aclose(self) -> None:
        await self._client.aclose()
