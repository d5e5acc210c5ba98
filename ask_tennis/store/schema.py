# ask_tennis/store/schema.py
"""
Catalogue of the relational tables the pipeline may read.

The catalogue drives two things: the table allowlist enforced by
SQLValidator, and the schema description handed to the LLM when no query
template matches. store.loader creates and fills the tables.
"""

from typing import Dict, List, Tuple

# table -> [(column, type)]
TABLES: Dict[str, List[Tuple[str, str]]] = {
    "players": [
        ("id", "INTEGER"),
        ("name", "VARCHAR"),
        ("country", "VARCHAR"),
        ("birth_date", "DATE"),
        ("height", "INTEGER"),
        ("weight", "INTEGER"),
        ("playing_hand", "VARCHAR"),
        ("turned_pro", "INTEGER"),
        ("current_ranking", "INTEGER"),
        ("career_prize_money", "BIGINT"),
        ("tour", "VARCHAR"),
    ],
    "tournaments": [
        ("id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("type", "VARCHAR"),
        ("surface", "VARCHAR"),
        ("level", "VARCHAR"),
        ("location", "VARCHAR"),
        ("start_date", "DATE"),
        ("end_date", "DATE"),
        ("prize_money", "BIGINT"),
        ("status", "VARCHAR"),
        ("current_round", "VARCHAR"),
    ],
    "matches": [
        ("id", "INTEGER"),
        ("tournament_id", "INTEGER"),
        ("player1_id", "INTEGER"),
        ("player2_id", "INTEGER"),
        ("winner_id", "INTEGER"),
        ("score", "VARCHAR"),
        ("duration", "VARCHAR"),
        ("match_date", "DATE"),
        ("round", "VARCHAR"),
        ("surface", "VARCHAR"),
        ("status", "VARCHAR"),
    ],
    "match_stats": [
        ("match_id", "INTEGER"),
        ("player_id", "INTEGER"),
        ("aces", "INTEGER"),
        ("double_faults", "INTEGER"),
        ("first_serve_pct", "DOUBLE"),
        ("break_points_saved", "INTEGER"),
        ("break_points_faced", "INTEGER"),
    ],
    "rankings": [
        ("id", "INTEGER"),
        ("player_id", "INTEGER"),
        ("ranking", "INTEGER"),
        ("points", "INTEGER"),
        ("tour", "VARCHAR"),
        ("ranking_date", "DATE"),
        ("is_current", "BOOLEAN"),
        ("data_source", "VARCHAR"),
    ],
    "historical_rankings": [
        ("player_id", "INTEGER"),
        ("player_name", "VARCHAR"),
        ("ranking", "INTEGER"),
        ("points", "INTEGER"),
        ("tour", "VARCHAR"),
        ("ranking_date", "DATE"),
        ("decade", "INTEGER"),
        ("year", "INTEGER"),
        ("data_source", "VARCHAR"),
    ],
    "historical_matches": [
        ("tournament_name", "VARCHAR"),
        ("tournament_date", "DATE"),
        ("surface", "VARCHAR"),
        ("round", "VARCHAR"),
        ("winner_name", "VARCHAR"),
        ("loser_name", "VARCHAR"),
        ("score", "VARCHAR"),
        ("winner_rank", "INTEGER"),
        ("loser_rank", "INTEGER"),
        ("winner_points", "INTEGER"),
        ("loser_points", "INTEGER"),
        ("tour", "VARCHAR"),
        ("year", "INTEGER"),
        ("data_source", "VARCHAR"),
    ],
    "historical_players": [
        ("player_id", "INTEGER"),
        ("name", "VARCHAR"),
        ("birth_date", "DATE"),
        ("country", "VARCHAR"),
        ("height", "INTEGER"),
        ("playing_hand", "VARCHAR"),
        ("tour", "VARCHAR"),
        ("data_source", "VARCHAR"),
    ],
    "match_charting": [
        ("match_id", "VARCHAR"),
        ("tournament", "VARCHAR"),
        ("date", "DATE"),
        ("surface", "VARCHAR"),
        ("round", "VARCHAR"),
        ("player1", "VARCHAR"),
        ("player2", "VARCHAR"),
        ("winner", "VARCHAR"),
        ("score", "VARCHAR"),
    ],
    "match_charting_points": [
        ("match_id", "VARCHAR"),
        ("point_number", "INTEGER"),
        ("server", "VARCHAR"),
        ("point_winner", "VARCHAR"),
        ("rally_length", "INTEGER"),
    ],
}

ALLOWED_TABLES = frozenset(TABLES)

# data_source column values written by each provider
SOURCE_TAGS = {"live": "sportsradar", "historical": "github"}


def describe_schema() -> str:
    """Render the catalogue as one line per table for an LLM prompt."""
    lines = []
    for table, columns in TABLES.items():
        cols = ", ".join(f"{name} {col_type}" for name, col_type in columns)
        lines.append(f"- {table}({cols})")
    return "\n".join(lines)
