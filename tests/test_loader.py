"""
Tests for table creation and provider-to-store loading.
"""

import pytest

from ask_tennis.api.errors import ProviderError
from ask_tennis.store.loader import (
    create_tables,
    insert_rows,
    load_live_rankings,
    refresh_store,
)
from ask_tennis.store.schema import TABLES


class FakeProvider:
    """Serves canned rows per resource; resources mapped to an exception raise it."""

    def __init__(self, source_tag, resources):
        self.source_tag = source_tag
        self.resources = resources
        self.calls = []

    async def fetch(self, resource, params=None):
        self.calls.append((resource, params))
        outcome = self.resources.get(resource, [])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def live_snapshot(*names_and_points, day="2023-09-04"):
    return [
        {"name": name, "country": "ESP", "ranking": rank, "points": points,
         "tour": "ATP", "ranking_date": day}
        for rank, (name, points) in enumerate(names_and_points, start=1)
    ]


def test_create_tables_is_idempotent(empty_store):
    create_tables(empty_store.connection)
    tables = {row[0] for row in empty_store.connection.execute("SHOW TABLES").fetchall()}
    assert set(TABLES) <= tables


@pytest.mark.asyncio
async def test_insert_rows_ignores_unknown_keys(empty_store):
    rows = [
        {"player_id": 1, "name": "Rafael Nadal", "country": "ESP", "favourite_surface": "Clay"},
        {"player_id": 2, "name": "Roger Federer"},
    ]
    assert await insert_rows(empty_store, "historical_players", rows) == 2

    loaded = await empty_store.query(
        "SELECT name, country FROM historical_players ORDER BY player_id"
    )
    assert loaded == [
        {"name": "Rafael Nadal", "country": "ESP"},
        {"name": "Roger Federer", "country": None},
    ]
    assert empty_store.available() == 2


@pytest.mark.asyncio
async def test_insert_rows_rejects_unknown_table(empty_store):
    with pytest.raises(KeyError):
        await insert_rows(empty_store, "secrets", [{"a": 1}])
    assert await insert_rows(empty_store, "players", []) == 0


@pytest.mark.asyncio
async def test_live_snapshot_replaces_current_rows(empty_store):
    await load_live_rankings(
        empty_store, live_snapshot(("Novak Djokovic", 11245), ("Carlos Alcaraz", 8805), day="2023-11-13")
    )
    count = await load_live_rankings(
        empty_store, live_snapshot(("Carlos Alcaraz", 9255), ("Novak Djokovic", 8795), ("", 0))
    )
    assert count == 2

    current = await empty_store.query(
        "SELECT p.name, r.ranking, r.id FROM rankings r JOIN players p ON r.player_id = p.id "
        "WHERE r.is_current = TRUE ORDER BY r.ranking"
    )
    assert [(r["name"], r["ranking"]) for r in current] == [
        ("Carlos Alcaraz", 1),
        ("Novak Djokovic", 2),
    ]
    assert {r["id"] for r in current} == {3, 4}

    stale = await empty_store.query("SELECT COUNT(*) AS n FROM rankings WHERE is_current = FALSE")
    assert stale[0]["n"] == 2

    players = await empty_store.query("SELECT id, name, current_ranking FROM players ORDER BY id")
    assert players == [
        {"id": 1, "name": "Novak Djokovic", "current_ranking": 2},
        {"id": 2, "name": "Carlos Alcaraz", "current_ranking": 1},
    ]


@pytest.mark.asyncio
async def test_refresh_store_loads_every_resource(empty_store):
    live = FakeProvider(
        "sportsradar",
        {
            "rankings": live_snapshot(("Carlos Alcaraz", 9255)),
            "tournaments": [{"id": "sr:tournament:2555", "name": "Wimbledon", "surface": "grass",
                             "start_date": "2023-07-03"}],
        },
    )
    historical = FakeProvider(
        "github",
        {
            "players": [{"player_id": 104745, "name": "Rafael Nadal", "data_source": "github"}],
            "rankings": [{"player_id": 104745, "player_name": "Rafael Nadal", "ranking": 2,
                          "ranking_date": "2023-01-02", "year": 2023, "data_source": "github"}],
            "matches": [{"tournament_name": "Wimbledon", "tournament_date": "2023-07-03",
                         "round": "F", "winner_name": "Carlos Alcaraz",
                         "loser_name": "Novak Djokovic", "year": 2023, "data_source": "github"}],
        },
    )

    loaded = await refresh_store(empty_store, live=live, historical=historical, match_years=(2022, 2023))

    assert loaded == {
        "rankings": 1,
        "historical_players": 1,
        "historical_rankings": 1,
        "historical_matches": 2,
        "tournaments": 1,
    }
    assert ("matches", {"tour": "ATP", "year": 2022}) in historical.calls
    tagged = await empty_store.query("SELECT DISTINCT data_source FROM rankings")
    assert tagged == [{"data_source": "sportsradar"}]


@pytest.mark.asyncio
async def test_refresh_store_skips_failing_resources(empty_store):
    live = FakeProvider(
        "sportsradar",
        {
            "rankings": ProviderError("Sportradar API key not configured"),
            "tournaments": ProviderError("Sportradar API key not configured"),
        },
    )
    historical = FakeProvider(
        "github",
        {
            "players": [{"player_id": 104745, "name": "Rafael Nadal"}],
            "rankings": ProviderError("HTTP 500", status_code=500),
            "matches": [],
        },
    )

    loaded = await refresh_store(empty_store, live=live, historical=historical)

    assert loaded == {"historical_players": 1, "historical_matches": 0}
    assert len(live.calls) == 2
