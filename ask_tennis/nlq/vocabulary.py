# ask_tennis/nlq/vocabulary.py
"""
Closed vocabularies used for template matching.

Player and tournament recognition is a lookup against fixed tables, not
named-entity recognition: a name the tables don't know is simply not
recognized and the question falls through to the LLM strategy.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

# ============================================================================
# PLAYER ROSTER
# ============================================================================

# alias (lowercase) -> canonical full name
PLAYER_ALIASES: Dict[str, str] = {
    "novak djokovic": "Novak Djokovic",
    "djokovic": "Novak Djokovic",
    "nole": "Novak Djokovic",
    "rafael nadal": "Rafael Nadal",
    "rafa nadal": "Rafael Nadal",
    "nadal": "Rafael Nadal",
    "rafa": "Rafael Nadal",
    "roger federer": "Roger Federer",
    "federer": "Roger Federer",
    "andy murray": "Andy Murray",
    "murray": "Andy Murray",
    "stan wawrinka": "Stan Wawrinka",
    "wawrinka": "Stan Wawrinka",
    "dominic thiem": "Dominic Thiem",
    "thiem": "Dominic Thiem",
    "daniil medvedev": "Daniil Medvedev",
    "medvedev": "Daniil Medvedev",
    "stefanos tsitsipas": "Stefanos Tsitsipas",
    "tsitsipas": "Stefanos Tsitsipas",
    "alexander zverev": "Alexander Zverev",
    "zverev": "Alexander Zverev",
    "jannik sinner": "Jannik Sinner",
    "sinner": "Jannik Sinner",
    "carlos alcaraz": "Carlos Alcaraz",
    "alcaraz": "Carlos Alcaraz",
    "andrey rublev": "Andrey Rublev",
    "rublev": "Andrey Rublev",
    "casper ruud": "Casper Ruud",
    "ruud": "Casper Ruud",
    "hubert hurkacz": "Hubert Hurkacz",
    "hurkacz": "Hubert Hurkacz",
    "taylor fritz": "Taylor Fritz",
    "fritz": "Taylor Fritz",
    "frances tiafoe": "Frances Tiafoe",
    "tiafoe": "Frances Tiafoe",
    "nick kyrgios": "Nick Kyrgios",
    "kyrgios": "Nick Kyrgios",
    "matteo berrettini": "Matteo Berrettini",
    "berrettini": "Matteo Berrettini",
    "iga swiatek": "Iga Swiatek",
    "swiatek": "Iga Swiatek",
    "aryna sabalenka": "Aryna Sabalenka",
    "sabalenka": "Aryna Sabalenka",
    "coco gauff": "Coco Gauff",
    "gauff": "Coco Gauff",
    "jessica pegula": "Jessica Pegula",
    "pegula": "Jessica Pegula",
    "ons jabeur": "Ons Jabeur",
    "jabeur": "Ons Jabeur",
    "barbora krejcikova": "Barbora Krejcikova",
    "krejcikova": "Barbora Krejcikova",
    "caroline garcia": "Caroline Garcia",
    "serena williams": "Serena Williams",
    "serena": "Serena Williams",
    "venus williams": "Venus Williams",
}

# Longest aliases first so "rafael nadal" wins over "nadal"
_PLAYER_PATTERN = re.compile(
    r"\b("
    + "|".join(re.escape(a) for a in sorted(PLAYER_ALIASES, key=len, reverse=True))
    + r")\b",
    re.IGNORECASE,
)


def find_players(text: str) -> List[str]:
    """
    Canonical roster names mentioned in text, in order of first mention.

    Examples:
        >>> find_players("Head to head between Djokovic and Nadal")
        ['Novak Djokovic', 'Rafael Nadal']
    """
    found: List[str] = []
    for match in _PLAYER_PATTERN.finditer(text):
        name = PLAYER_ALIASES[match.group(1).lower()]
        if name not in found:
            found.append(name)
    return found


def resolve_player(name: str) -> Optional[str]:
    """Map a free-text player name (e.g. from the LLM) onto the roster."""
    players = find_players(name)
    return players[0] if players else None


# ============================================================================
# TOURNAMENTS
# ============================================================================

TOURNAMENT_ALIASES: Dict[str, str] = {
    "us open": "US Open",
    "u.s. open": "US Open",
    "wimbledon": "Wimbledon",
    "french open": "French Open",
    "roland garros": "French Open",
    "roland-garros": "French Open",
    "australian open": "Australian Open",
    "aussie open": "Australian Open",
}

# Names the historical corpus may store each tournament under
TOURNAMENT_SEARCH_NAMES: Dict[str, Tuple[str, ...]] = {
    "US Open": ("US Open",),
    "Wimbledon": ("Wimbledon",),
    "French Open": ("French Open", "Roland Garros"),
    "Australian Open": ("Australian Open",),
}

GRAND_SLAMS: Tuple[str, ...] = ("Australian Open", "French Open", "Wimbledon", "US Open")

_TOURNAMENT_PATTERN = re.compile(
    r"\b("
    + "|".join(
        re.escape(a) for a in sorted(TOURNAMENT_ALIASES, key=len, reverse=True)
    )
    + r")(?!\w)",
    re.IGNORECASE,
)

_YEAR_PATTERN = re.compile(r"\b((?:19|20)\d{2})\b")


def find_tournament(text: str) -> Optional[str]:
    """First tournament mentioned, as its canonical name."""
    match = _TOURNAMENT_PATTERN.search(text)
    if match is None:
        return None
    return TOURNAMENT_ALIASES[match.group(1).lower()]


def find_year(text: str) -> Optional[int]:
    """First four-digit year between 1900 and 2099."""
    match = _YEAR_PATTERN.search(text)
    return int(match.group(1)) if match else None


_NUMBER_PATTERN = re.compile(r"(?<![\w.])(\d+)(?:st|nd|rd|th)?(?!\w)(?!\.\d)", re.IGNORECASE)


def find_numbers(text: str) -> List[int]:
    """Integer tokens that are not years. Ordinals count: "5th" is 5."""
    numbers = []
    for token in _NUMBER_PATTERN.findall(text):
        value = int(token)
        if len(token) == 4 and 1900 <= value <= 2099:
            continue
        numbers.append(value)
    return numbers


SURFACES: Dict[str, str] = {
    "clay": "Clay",
    "grass": "Grass",
    "hard court": "Hard",
    "hardcourt": "Hard",
    "carpet": "Carpet",
}


def find_surface(text: str) -> Optional[str]:
    lowered = text.lower()
    for alias, surface in SURFACES.items():
        if re.search(rf"\b{alias}\b", lowered):
            return surface
    return None


# ============================================================================
# KNOWN CHAMPIONS (men's singles finals)
# ============================================================================


@dataclass(frozen=True)
class Champion:
    winner: str
    runner_up: str
    score: str


KNOWN_CHAMPIONS: Dict[Tuple[str, int], Champion] = {
    ("Australian Open", 2021): Champion("Novak Djokovic", "Daniil Medvedev", "7-5, 6-2, 6-2"),
    ("French Open", 2021): Champion(
        "Novak Djokovic", "Stefanos Tsitsipas", "6-7(6), 2-6, 6-3, 6-2, 6-4"
    ),
    ("Wimbledon", 2021): Champion(
        "Novak Djokovic", "Matteo Berrettini", "6-7(4), 6-4, 6-4, 6-3"
    ),
    ("US Open", 2021): Champion("Daniil Medvedev", "Novak Djokovic", "6-4, 6-4, 6-4"),
    ("Australian Open", 2022): Champion(
        "Rafael Nadal", "Daniil Medvedev", "2-6, 6-7(5), 6-4, 6-4, 7-5"
    ),
    ("French Open", 2022): Champion("Rafael Nadal", "Casper Ruud", "6-3, 6-3, 6-0"),
    ("Wimbledon", 2022): Champion(
        "Novak Djokovic", "Nick Kyrgios", "4-6, 6-3, 6-4, 7-6(3)"
    ),
    ("US Open", 2022): Champion(
        "Carlos Alcaraz", "Casper Ruud", "6-4, 2-6, 7-6(1), 6-3"
    ),
    ("Australian Open", 2023): Champion(
        "Novak Djokovic", "Stefanos Tsitsipas", "6-3, 7-6(4), 7-6(5)"
    ),
    ("French Open", 2023): Champion("Novak Djokovic", "Casper Ruud", "7-6(1), 6-3, 7-5"),
    ("Wimbledon", 2023): Champion(
        "Carlos Alcaraz", "Novak Djokovic", "1-6, 7-6(6), 6-1, 3-6, 6-4"
    ),
    ("US Open", 2023): Champion(
        "Novak Djokovic", "Daniil Medvedev", "6-3, 7-6(5), 6-3"
    ),
}


def known_champion(tournament: str, year: int) -> Optional[Champion]:
    return KNOWN_CHAMPIONS.get((tournament, year))
