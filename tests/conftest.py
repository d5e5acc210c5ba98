"""
Shared fixtures: an in-memory DuckDB store seeded with a small tennis
corpus, and a factory for pipelines wired to it.
"""

from datetime import date

import pytest

from ask_tennis.config import Settings
from ask_tennis.rate_limit.token_bucket import reset_rate_limiter
from ask_tennis.service import build_pipeline
from ask_tennis.store.duckdb_store import DuckDBStore
from ask_tennis.store.loader import create_tables, write_rows

LIVE_DATE = date(2023, 9, 4)

PLAYERS = [
    {"id": 1, "name": "Carlos Alcaraz", "country": "ESP", "birth_date": date(2003, 5, 5),
     "height": 183, "playing_hand": "R", "turned_pro": 2018, "current_ranking": 1, "tour": "ATP"},
    {"id": 2, "name": "Novak Djokovic", "country": "SRB", "birth_date": date(1987, 5, 22),
     "height": 188, "playing_hand": "R", "turned_pro": 2003, "current_ranking": 2, "tour": "ATP"},
    {"id": 3, "name": "Daniil Medvedev", "country": "RUS", "birth_date": date(1996, 2, 11),
     "height": 198, "playing_hand": "R", "turned_pro": 2014, "current_ranking": 3, "tour": "ATP"},
    {"id": 4, "name": "Jannik Sinner", "country": "ITA", "birth_date": date(2001, 8, 16),
     "height": 191, "playing_hand": "R", "turned_pro": 2018, "current_ranking": 4, "tour": "ATP"},
    {"id": 5, "name": "Andrey Rublev", "country": "RUS", "birth_date": date(1997, 10, 20),
     "height": 188, "playing_hand": "R", "turned_pro": 2014, "current_ranking": 5, "tour": "ATP"},
]

RANKINGS = [
    # current live snapshot
    {"id": 1, "player_id": 1, "ranking": 1, "points": 9255, "tour": "ATP",
     "ranking_date": LIVE_DATE, "is_current": True, "data_source": "sportsradar"},
    {"id": 2, "player_id": 2, "ranking": 2, "points": 8795, "tour": "ATP",
     "ranking_date": LIVE_DATE, "is_current": True, "data_source": "sportsradar"},
    {"id": 3, "player_id": 3, "ranking": 3, "points": 7200, "tour": "ATP",
     "ranking_date": LIVE_DATE, "is_current": True, "data_source": "sportsradar"},
    {"id": 4, "player_id": 4, "ranking": 4, "points": 5490, "tour": "ATP",
     "ranking_date": LIVE_DATE, "is_current": True, "data_source": "sportsradar"},
    {"id": 5, "player_id": 5, "ranking": 5, "points": 4805, "tour": "ATP",
     "ranking_date": LIVE_DATE, "is_current": True, "data_source": "sportsradar"},
    # superseded live snapshot
    {"id": 6, "player_id": 2, "ranking": 1, "points": 7595, "tour": "ATP",
     "ranking_date": date(2023, 6, 12), "is_current": False, "data_source": "sportsradar"},
    # historical corpus row
    {"id": 7, "player_id": 2, "ranking": 1, "points": 11245, "tour": "ATP",
     "ranking_date": date(2023, 11, 13), "is_current": False, "data_source": "github"},
]


def _match(tournament, day, round_, winner, loser, score, surface="Hard"):
    return {
        "tournament_name": tournament,
        "tournament_date": day,
        "surface": surface,
        "round": round_,
        "winner_name": winner,
        "loser_name": loser,
        "score": score,
        "tour": "ATP",
        "year": day.year,
        "data_source": "github",
    }


HISTORICAL_MATCHES = [
    _match("Wimbledon", date(2023, 7, 3), "F", "Carlos Alcaraz", "Novak Djokovic",
           "1-6 7-6(6) 6-1 3-6 6-4", "Grass"),
    _match("Wimbledon", date(2023, 7, 3), "SF", "Carlos Alcaraz", "Daniil Medvedev",
           "6-3 6-3 6-3", "Grass"),
    _match("Cincinnati Masters", date(2023, 8, 14), "F", "Novak Djokovic", "Carlos Alcaraz",
           "5-7 7-6(7) 7-6(4)"),
    _match("US Open", date(2023, 8, 28), "F", "Novak Djokovic", "Daniil Medvedev",
           "6-3 7-6(5) 6-3"),
    _match("Wimbledon", date(2019, 7, 1), "F", "Novak Djokovic", "Roger Federer",
           "7-6(5) 1-6 7-6(4) 4-6 13-12(3)", "Grass"),
    _match("Tour Finals", date(2019, 11, 10), "RR", "Roger Federer", "Novak Djokovic",
           "6-4 6-3"),
    _match("Australian Open", date(2020, 1, 20), "SF", "Novak Djokovic", "Roger Federer",
           "7-6(1) 6-4 6-3"),
]

HISTORICAL_RANKINGS = [
    {"player_id": 104925, "player_name": "Novak Djokovic", "ranking": 1, "points": 11245,
     "tour": "ATP", "ranking_date": date(2023, 11, 13), "decade": 2020, "year": 2023,
     "data_source": "github"},
    {"player_id": 104925, "player_name": "Novak Djokovic", "ranking": 8, "points": 4820,
     "tour": "ATP", "ranking_date": date(2022, 11, 14), "decade": 2020, "year": 2022,
     "data_source": "github"},
    {"player_id": 104925, "player_name": "Novak Djokovic", "ranking": 1, "points": 13630,
     "tour": "ATP", "ranking_date": date(2011, 7, 4), "decade": 2010, "year": 2011,
     "data_source": "github"},
]

HISTORICAL_PLAYERS = [
    {"player_id": 104745, "name": "Rafael Nadal", "birth_date": date(1986, 6, 3),
     "country": "ESP", "height": 185, "playing_hand": "L", "tour": "ATP", "data_source": "github"},
    {"player_id": 207989, "name": "Carlos Alcaraz", "birth_date": date(2003, 5, 5),
     "country": "ESP", "height": 183, "playing_hand": "R", "tour": "ATP", "data_source": "github"},
    {"player_id": 104925, "name": "Novak Djokovic", "birth_date": date(1987, 5, 22),
     "country": "SRB", "height": 188, "playing_hand": "R", "tour": "ATP", "data_source": "github"},
    {"player_id": 103819, "name": "Roger Federer", "birth_date": date(1981, 8, 8),
     "country": "SUI", "height": 185, "playing_hand": "R", "tour": "ATP", "data_source": "github"},
]


def seed(connection) -> None:
    create_tables(connection)
    write_rows(connection, "players", PLAYERS)
    write_rows(connection, "rankings", RANKINGS)
    write_rows(connection, "historical_matches", HISTORICAL_MATCHES)
    write_rows(connection, "historical_rankings", HISTORICAL_RANKINGS)
    write_rows(connection, "historical_players", HISTORICAL_PLAYERS)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_global_rate_limiter():
    """Every test starts without a process-wide rate limiter."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def empty_store():
    store = DuckDBStore(":memory:", pool_size=2)
    create_tables(store.connection)
    yield store
    store.close()


@pytest.fixture
def store():
    """In-memory store seeded with live rankings and the historical corpus."""
    store = DuckDBStore(":memory:", pool_size=2)
    seed(store.connection)
    yield store
    store.close()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def make_pipeline(settings):
    """Factory: make_pipeline(store, completion=None) -> QueryPipeline."""

    def factory(store, completion=None, **overrides):
        configured = Settings(**{**settings.__dict__, **overrides})
        return build_pipeline(configured, store, completion=completion)

    return factory
