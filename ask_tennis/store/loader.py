# ask_tennis/store/loader.py
"""
Table creation and provider-to-store loading.

Providers return rows keyed by store column names; this module writes them
into DuckDB. Unknown keys are dropped and missing columns become NULL, so a
provider can never widen the schema the pipeline reads.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..api.errors import ProviderError
from ..providers.base import DataProvider
from .duckdb_store import DuckDBStore
from .schema import SOURCE_TAGS, TABLES

logger = logging.getLogger(__name__)


def create_tables(connection) -> None:
    """CREATE TABLE IF NOT EXISTS for every catalogued table."""
    for table, columns in TABLES.items():
        cols = ", ".join(f"{name} {col_type}" for name, col_type in columns)
        connection.execute(f"CREATE TABLE IF NOT EXISTS {table} ({cols})")
    logger.debug(f"Ensured {len(TABLES)} tables")


def write_rows(cursor, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
    """Synchronous insert on an open connection or cursor; returns the row count."""
    columns = [name for name, _ in TABLES[table]]
    placeholders = ", ".join("?" for _ in columns)
    values = [[row.get(c) for c in columns] for row in rows]
    if values:
        cursor.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", values
        )
    return len(values)


async def insert_rows(store: DuckDBStore, table: str, rows: Iterable[Mapping[str, Any]]) -> int:
    """
    Append rows to a catalogued table.

    Raises:
        KeyError: If the table is not in the catalogue
    """
    if table not in TABLES:
        raise KeyError(f"Unknown table: {table}")
    rows = list(rows)
    async with store.acquire() as cursor:
        count = await asyncio.to_thread(write_rows, cursor, table, rows)
    logger.info(f"Loaded {count} rows into {table}")
    return count


def _replace_live_rankings(cursor, rows: Sequence[Mapping[str, Any]]) -> int:
    tag = SOURCE_TAGS["live"]
    cursor.execute(
        "UPDATE rankings SET is_current = FALSE WHERE data_source = ?", [tag]
    )

    known = {name: pid for pid, name in cursor.execute("SELECT id, name FROM players").fetchall()}
    next_player = (cursor.execute("SELECT COALESCE(MAX(id), 0) FROM players").fetchone()[0]) + 1
    next_ranking = (cursor.execute("SELECT COALESCE(MAX(id), 0) FROM rankings").fetchone()[0]) + 1

    players: List[Dict[str, Any]] = []
    rankings: List[Dict[str, Any]] = []
    for row in rows:
        name = row.get("name")
        if not name:
            continue
        if name not in known:
            known[name] = next_player
            players.append(
                {
                    "id": next_player,
                    "name": name,
                    "country": row.get("country"),
                    "current_ranking": row.get("ranking"),
                    "tour": row.get("tour"),
                }
            )
            next_player += 1
        else:
            cursor.execute(
                "UPDATE players SET current_ranking = ? WHERE id = ?",
                [row.get("ranking"), known[name]],
            )
        rankings.append(
            {
                "id": next_ranking,
                "player_id": known[name],
                "ranking": row.get("ranking"),
                "points": row.get("points"),
                "tour": row.get("tour"),
                "ranking_date": row.get("ranking_date"),
                "is_current": True,
                "data_source": tag,
            }
        )
        next_ranking += 1

    write_rows(cursor, "players", players)
    return write_rows(cursor, "rankings", rankings)


async def load_live_rankings(store: DuckDBStore, rows: Sequence[Mapping[str, Any]]) -> int:
    """
    Replace the current live rankings with a fresh Sportradar snapshot.

    Previous live rows stay in the table with is_current = FALSE.
    """
    async with store.acquire() as cursor:
        count = await asyncio.to_thread(_replace_live_rankings, cursor, list(rows))
    logger.info(f"Loaded {count} live ranking rows")
    return count


async def refresh_store(
    store: DuckDBStore,
    live: Optional[DataProvider] = None,
    historical: Optional[DataProvider] = None,
    tours: Sequence[str] = ("ATP",),
    match_years: Sequence[int] = (2023,),
) -> Dict[str, int]:
    """
    Pull every resource the pipeline reads from the providers into the store.

    A failing resource is logged and skipped; the others still load.

    Returns:
        table -> number of rows loaded
    """
    loaded: Dict[str, int] = {}

    async def load(table: str, provider: DataProvider, resource: str, params: Dict[str, Any]):
        try:
            rows = await provider.fetch(resource, params)
        except ProviderError as e:
            logger.warning(f"Skipping {resource} {params}: {e}")
            return
        if table == "rankings":
            count = await load_live_rankings(store, rows)
        else:
            count = await insert_rows(store, table, rows)
        loaded[table] = loaded.get(table, 0) + count

    for tour in tours:
        if live is not None:
            await load("rankings", live, "rankings", {"tour": tour})
        if historical is not None:
            await load("historical_players", historical, "players", {"tour": tour})
            await load("historical_rankings", historical, "rankings", {"tour": tour})
            for year in match_years:
                await load("historical_matches", historical, "matches", {"tour": tour, "year": year})

    if live is not None:
        await load("tournaments", live, "tournaments", {})

    logger.info(f"Store refresh complete: {loaded}")
    return loaded
