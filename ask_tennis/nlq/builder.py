# ask_tennis/nlq/builder.py
"""
Query construction for classified questions.

Two strategies, tried in order:
1. Template strategy: an ordered registry of recognizers, FIRST match wins.
   Each recognizer inspects the question through closed vocabularies
   (player roster, tournament aliases, integer tokens) and fills a
   parameterized skeleton. Never calls the LLM.
2. LLM strategy: only when no template matched and the caller allows it.
   The model receives the table catalogue, the question and the intent,
   and its output is treated as untrusted text for SQLValidator.

Template registry order:
    tournament_winner, grand_slam_winners, head_to_head, ranking_history,
    career_stats, player_profile, ranking_number_one, ranking_top_n,
    ranking_by_number, ranking_list
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..api.errors import BuildFailure
from ..store.schema import describe_schema
from .classifier import DataSource, IntentAnalysis, Question
from .llm import SQL_GENERATION_PROMPT, TextCompletion
from .validator import strip_code_fence
from .vocabulary import (
    GRAND_SLAMS,
    TOURNAMENT_SEARCH_NAMES,
    find_numbers,
    find_players,
    find_surface,
    find_tournament,
    find_year,
    resolve_player,
)

logger = logging.getLogger(__name__)

MAX_TOP_N = 100
DEFAULT_LIST_SIZE = 10


# ============================================================================
# TYPES
# ============================================================================


@dataclass(frozen=True)
class QuerySpec:
    """One statement ready for validation and execution."""

    statement: str
    params: Tuple[Any, ...]
    source: DataSource
    template: Optional[str] = None  # None when the LLM wrote the statement
    details: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def strategy(self) -> str:
        return "template" if self.template else "llm"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statement": self.statement,
            "params": list(self.params),
            "source": self.source.value,
            "template": self.template,
            "strategy": self.strategy,
        }


@dataclass(frozen=True)
class TemplateContext:
    """Closed-vocabulary view of a question, computed once per build."""

    text: str
    source: DataSource
    players: Tuple[str, ...]
    tournament: Optional[str]
    year: Optional[int]
    numbers: Tuple[int, ...]
    surface: Optional[str] = None

    def mentions(self, pattern: str) -> bool:
        return re.search(pattern, self.text, re.IGNORECASE) is not None


@dataclass(frozen=True)
class QueryTemplate:
    name: str
    sources: Tuple[DataSource, ...]
    recognize: Callable[[TemplateContext], Optional[Tuple[str, Tuple[Any, ...], Dict[str, Any]]]]


TEMPLATE_REGISTRY: List[QueryTemplate] = []

BOTH = (DataSource.LIVE, DataSource.HISTORICAL)
HISTORICAL_ONLY = (DataSource.HISTORICAL,)


def register_template(name: str, sources: Tuple[DataSource, ...] = BOTH):
    """Append a recognizer to the registry. Registration order is match order."""

    def decorator(func):
        TEMPLATE_REGISTRY.append(QueryTemplate(name=name, sources=sources, recognize=func))
        return func

    return decorator


# ============================================================================
# PATTERNS
# ============================================================================

WINNER_WORDS = r"\b(?:who won|won|win|winner|champions?|title|final)\b"
H2H_WORDS = r"\b(?:head[\s-]*to[\s-]*head|h2h|versus|vs\.?|against|rivalry|record against|matches against)\b"
HISTORY_WORDS = (
    r"\b(?:ranking history|career[\s-]*high|highest ranking|career ranking|"
    r"ranking over time|lowest ranking|ranking trend)\b"
)
CAREER_WORDS = r"\b(?:career|stats|statistics|record|win[\s-]*loss|titles?|how many)\b"
PROFILE_WORDS = r"\b(?:tell me about|information (?:about|on)|profile|who is|biography|bio)\b"
NUMBER_ONE = r"\bnumber\s*(?:one|1)\b|#\s*1\b|\bno\.?\s*1\b|\btop[\s-]*ranked\b|\bworld\s*(?:no\.?\s*)?1\b"
TOP_N = re.compile(r"\btop\s*(\d+)\b", re.IGNORECASE)
RANK_WORDS = r"\b(?:rank(?:ed|ing|ings)?|number|no\.|#|position)\b|#"

RANKING_COLUMNS = "p.name, r.ranking, r.points, r.tour, r.ranking_date, r.data_source"
RANKING_FROM = "FROM rankings r JOIN players p ON r.player_id = p.id"


def _ranking_filter(source: DataSource) -> Tuple[str, Tuple[Any, ...]]:
    """Restrict rankings rows to the source; live rows must also be current."""
    if source is DataSource.LIVE:
        return "r.data_source = ? AND r.is_current = TRUE", (source.tag,)
    return "r.data_source = ?", (source.tag,)


def _name_pattern(player: str) -> str:
    return f"%{player}%"


# ============================================================================
# TEMPLATES (registration order is match order)
# ============================================================================


@register_template("tournament_winner", HISTORICAL_ONLY)
def _tournament_winner(ctx: TemplateContext):
    if not (ctx.tournament and ctx.year and ctx.mentions(WINNER_WORDS)):
        return None
    names = TOURNAMENT_SEARCH_NAMES[ctx.tournament]
    name_clause = " OR ".join("tournament_name ILIKE ?" for _ in names)
    statement = (
        "SELECT winner_name, loser_name, score, tournament_name, year, surface "
        "FROM historical_matches "
        f"WHERE ({name_clause}) AND year = ? AND round = 'F' "
        "ORDER BY tournament_date DESC LIMIT 1"
    )
    params = tuple(f"%{n}%" for n in names) + (ctx.year,)
    return statement, params, {"tournament": ctx.tournament, "year": ctx.year}


@register_template("grand_slam_winners", HISTORICAL_ONLY)
def _grand_slam_winners(ctx: TemplateContext):
    if ctx.tournament or not ctx.year:
        return None
    if not (ctx.mentions(r"\bgrand\s*slams?\b|\bmajors?\b") and ctx.mentions(WINNER_WORDS)):
        return None
    search_names = [n for slam in GRAND_SLAMS for n in TOURNAMENT_SEARCH_NAMES[slam]]
    placeholders = ", ".join("?" for _ in search_names)
    statement = (
        "SELECT tournament_name, winner_name, loser_name, score, year "
        "FROM historical_matches "
        f"WHERE year = ? AND round = 'F' AND tournament_name IN ({placeholders}) "
        "ORDER BY tournament_date"
    )
    return statement, (ctx.year,) + tuple(search_names), {"year": ctx.year}


@register_template("head_to_head", HISTORICAL_ONLY)
def _head_to_head(ctx: TemplateContext):
    if len(ctx.players) < 2 or not ctx.mentions(H2H_WORDS):
        return None
    first, second = ctx.players[0], ctx.players[1]
    statement = (
        "SELECT tournament_name, tournament_date, round, surface, winner_name, loser_name, score, year "
        "FROM historical_matches "
        "WHERE ((winner_name ILIKE ? AND loser_name ILIKE ?) "
        "OR (winner_name ILIKE ? AND loser_name ILIKE ?))"
    )
    params: Tuple[Any, ...] = (
        _name_pattern(first),
        _name_pattern(second),
        _name_pattern(second),
        _name_pattern(first),
    )
    details: Dict[str, Any] = {"players": [first, second]}
    if ctx.surface:
        statement += " AND surface ILIKE ?"
        params += (ctx.surface,)
        details["surface"] = ctx.surface
    statement += " ORDER BY tournament_date DESC LIMIT 200"
    return statement, params, details


@register_template("ranking_history", HISTORICAL_ONLY)
def _ranking_history(ctx: TemplateContext):
    if len(ctx.players) != 1 or not ctx.mentions(HISTORY_WORDS):
        return None
    player = ctx.players[0]
    statement = (
        "SELECT player_name, ranking, points, tour, ranking_date, data_source "
        "FROM historical_rankings "
        "WHERE player_name ILIKE ? "
        "ORDER BY ranking_date DESC LIMIT 500"
    )
    return statement, (_name_pattern(player),), {"players": [player]}


@register_template("career_stats", HISTORICAL_ONLY)
def _career_stats(ctx: TemplateContext):
    if len(ctx.players) != 1 or not ctx.mentions(CAREER_WORDS):
        return None
    player = ctx.players[0]
    pattern = _name_pattern(player)
    statement = (
        "SELECT "
        "SUM(CASE WHEN winner_name ILIKE ? THEN 1 ELSE 0 END) AS wins, "
        "SUM(CASE WHEN loser_name ILIKE ? THEN 1 ELSE 0 END) AS losses, "
        "SUM(CASE WHEN winner_name ILIKE ? AND round = 'F' THEN 1 ELSE 0 END) AS titles, "
        "COUNT(DISTINCT tournament_name) AS tournaments_played "
        "FROM historical_matches "
        "WHERE winner_name ILIKE ? OR loser_name ILIKE ?"
    )
    return statement, (pattern,) * 5, {"players": [player]}


@register_template("player_profile")
def _player_profile(ctx: TemplateContext):
    if len(ctx.players) != 1 or not ctx.mentions(PROFILE_WORDS):
        return None
    player = ctx.players[0]
    if ctx.source is DataSource.LIVE:
        statement = (
            "SELECT p.name, p.country, p.birth_date, p.height, p.playing_hand, "
            "p.turned_pro, p.current_ranking, p.tour "
            "FROM players p WHERE p.name ILIKE ? LIMIT 1"
        )
    else:
        statement = (
            "SELECT name, country, birth_date, height, playing_hand, tour "
            "FROM historical_players WHERE name ILIKE ? LIMIT 1"
        )
    return statement, (_name_pattern(player),), {"players": [player]}


@register_template("ranking_number_one")
def _ranking_number_one(ctx: TemplateContext):
    if not ctx.mentions(NUMBER_ONE):
        return None
    where, params = _ranking_filter(ctx.source)
    statement = (
        f"SELECT {RANKING_COLUMNS} {RANKING_FROM} "
        f"WHERE r.ranking = 1 AND {where} "
        "ORDER BY r.ranking_date DESC LIMIT 1"
    )
    return statement, params, {}


@register_template("ranking_top_n")
def _ranking_top_n(ctx: TemplateContext):
    match = TOP_N.search(ctx.text)
    if match is None:
        return None
    limit = max(1, min(int(match.group(1)), MAX_TOP_N))
    where, params = _ranking_filter(ctx.source)
    statement = (
        f"SELECT {RANKING_COLUMNS} {RANKING_FROM} "
        f"WHERE r.ranking <= ? AND {where} "
        f"ORDER BY r.ranking, r.ranking_date DESC LIMIT {MAX_TOP_N}"
    )
    return statement, (limit,) + params, {"limit": limit}


@register_template("ranking_by_number")
def _ranking_by_number(ctx: TemplateContext):
    if not ctx.numbers or not ctx.mentions(RANK_WORDS):
        return None
    ranks = tuple(dict.fromkeys(n for n in ctx.numbers if 1 <= n <= 5000))[:20]
    if not ranks:
        return None
    placeholders = ", ".join("?" for _ in ranks)
    where, params = _ranking_filter(ctx.source)
    statement = (
        f"SELECT {RANKING_COLUMNS} {RANKING_FROM} "
        f"WHERE r.ranking IN ({placeholders}) AND {where} "
        "ORDER BY r.ranking, r.ranking_date DESC LIMIT 100"
    )
    return statement, ranks + params, {"ranks": list(ranks)}


@register_template("ranking_list")
def _ranking_list(ctx: TemplateContext):
    if not ctx.mentions(r"\b(?:rankings?|ranked|standings)\b"):
        return None
    where, params = _ranking_filter(ctx.source)
    statement = (
        f"SELECT {RANKING_COLUMNS} {RANKING_FROM} "
        f"WHERE r.ranking <= ? AND {where} "
        f"ORDER BY r.ranking, r.ranking_date DESC LIMIT {MAX_TOP_N}"
    )
    return statement, (DEFAULT_LIST_SIZE,) + params, {"limit": DEFAULT_LIST_SIZE}


# ============================================================================
# BUILDER
# ============================================================================


def template_context(
    question: Question, intent: IntentAnalysis, source: DataSource
) -> TemplateContext:
    """
    Build the closed-vocabulary view of a question.

    Players come from the question text first; LLM-extracted players that
    map onto the roster fill in when the text names fewer than two.
    """
    players = find_players(question.text)
    for name in intent.entities.players:
        canonical = resolve_player(name)
        if canonical and canonical not in players and len(players) < 2:
            players.append(canonical)

    return TemplateContext(
        text=question.text,
        source=source,
        players=tuple(players),
        tournament=find_tournament(question.text),
        year=find_year(question.text),
        numbers=tuple(find_numbers(question.text)),
        surface=find_surface(question.text) or intent.entities.surface,
    )


class QueryBuilder:
    """Turns an IntentAnalysis into a QuerySpec for one data source."""

    def __init__(
        self,
        completion: Optional[TextCompletion] = None,
        templates: Optional[List[QueryTemplate]] = None,
    ):
        self.completion = completion
        self.templates = templates if templates is not None else TEMPLATE_REGISTRY

    def match_template(
        self, question: Question, intent: IntentAnalysis, source: DataSource
    ) -> Optional[QuerySpec]:
        """First registered template that supports `source` and recognizes the question."""
        ctx = template_context(question, intent, source)
        for template in self.templates:
            if source not in template.sources:
                continue
            filled = template.recognize(ctx)
            if filled is None:
                continue
            statement, params, details = filled
            logger.debug(f"Template matched: {template.name} (source={source.value})")
            return QuerySpec(
                statement=statement,
                params=tuple(params),
                source=source,
                template=template.name,
                details=details,
            )
        return None

    async def build(
        self,
        intent: IntentAnalysis,
        question: Question,
        source: Optional[DataSource] = None,
        allow_llm: bool = True,
    ) -> QuerySpec:
        """
        Build one QuerySpec.

        Args:
            intent: Classification for the question
            question: The question
            source: Data source to query (defaults to the intent's primary source)
            allow_llm: False for the degraded, template-only path

        Returns:
            QuerySpec tagged with `source`

        Raises:
            BuildFailure: No template matched and the LLM is disallowed,
                disabled, failed or returned unusable text
        """
        source = source or intent.primary_source

        spec = self.match_template(question, intent, source)
        if spec is not None:
            return spec

        if not allow_llm:
            raise BuildFailure(
                "No query template matched (template-only mode)",
                details={"source": source.value},
            )
        if self.completion is None or not self.completion.enabled:
            raise BuildFailure(
                "No query template matched and the LLM is disabled",
                details={"source": source.value},
            )

        return await self._build_with_llm(intent, question, source)

    async def _build_with_llm(
        self, intent: IntentAnalysis, question: Question, source: DataSource
    ) -> QuerySpec:
        system_prompt = SQL_GENERATION_PROMPT.format(
            schema=describe_schema(), source=f"{source.value} ('{source.tag}')"
        )
        user_prompt = (
            f'Question: "{question.text}"\n'
            f"Intent: {json.dumps(intent.to_dict())}\n"
            "SQL:"
        )
        try:
            response = await self.completion.complete(
                system_prompt, user_prompt, temperature=0.0, max_tokens=400
            )
        except Exception as e:
            raise BuildFailure(f"LLM query generation failed: {e}") from e

        statement = strip_code_fence(response)
        if not re.search(r"\bselect\b", statement, re.IGNORECASE):
            raise BuildFailure(
                "LLM did not return a SELECT statement",
                details={"response": response[:200]},
            )
        logger.info(f"LLM generated query for source={source.value}: {statement}")
        return QuerySpec(statement=statement, params=(), source=source, template=None)
