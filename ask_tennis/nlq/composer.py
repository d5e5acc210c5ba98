# ask_tennis/nlq/composer.py
"""
Answer composition for tennis questions.

Deterministic first: when the rows came from a known query template, a fixed
sentence template renders them. Otherwise, if rows exist, the LLM is asked
for a short conversational answer. If that fails (or there is nothing to
say), a canned sentence is chosen by keyword sniffing of the question, so
the user always gets a complete, on-topic sentence.
"""

import json
import logging
import re
import zlib
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from tabulate import tabulate

from .classifier import IntentAnalysis, Question
from .executor import ResultSet, Row, to_json_value
from .llm import ANSWER_PROMPT, TextCompletion
from .vocabulary import (
    GRAND_SLAMS,
    find_players,
    find_surface,
    find_tournament,
    find_year,
    known_champion,
)

logger = logging.getLogger(__name__)

CANNED_CHAMPION_CONFIDENCE = 0.95
MAX_LLM_ROWS = 20


# ============================================================================
# ANSWER
# ============================================================================


@dataclass(frozen=True)
class Answer:
    """Unit returned to callers and stored in the cache."""

    text: str
    data: Optional[ResultSet]
    query_type: str
    confidence: float
    data_source: str
    cached: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    question: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.text,
            "data": self.data.to_records() if self.data is not None else None,
            "queryType": self.query_type,
            "confidence": self.confidence,
            "dataSource": self.data_source,
            "cached": self.cached,
            "timestamp": self.timestamp,
        }

    def to_markdown(self) -> str:
        """Answer text followed by the rows as a table."""
        md = f"{self.text}\n"
        if self.data is not None and not self.data.is_empty:
            records = self.data.to_records()
            md += "\n" + tabulate(records, headers="keys", tablefmt="pipe") + "\n"
        md += f"\n_{self.query_type} | {self.data_source} | confidence {self.confidence:.0%}"
        if self.cached:
            md += " | cached"
        md += "_\n"
        return md


@dataclass(frozen=True)
class Composition:
    """Composer output. `confidence` overrides the intent confidence when set."""

    text: str
    method: str  # template, llm, canned
    confidence: Optional[float] = None
    llm_failed: bool = False


# ============================================================================
# CANNED SENTENCES
# ============================================================================

ERROR_TEXT = (
    "I'm having trouble processing your tennis question right now. Please try again later."
)

CANNED_SENTENCES: Dict[str, Sequence[str]] = {
    "tournament": (
        "I couldn't find results for that tournament right now. Try asking about a "
        'specific Grand Slam and year, for example "Who won Wimbledon 2023?"',
        "I don't have the tournament results needed to answer that yet. Please name "
        "the tournament and the year you're interested in.",
    ),
    "statistics": (
        "I don't have the statistics to answer that right now. Try asking about the "
        "current rankings or a head-to-head between two players.",
        "I couldn't pull up those numbers at the moment. You can ask me about rankings, "
        "career records or head-to-head results instead.",
    ),
    "generic": (
        "I'm not sure how to answer that tennis question yet. Try asking about "
        "rankings, Grand Slam winners or head-to-head records.",
        "I couldn't find an answer to that one. I'm best at questions about player "
        "rankings, tournament winners and head-to-head records.",
    ),
}

NEED_TWO_PLAYERS = (
    "I need the names of two players to give you a head-to-head record. "
    'Please name both players, for example "Djokovic vs Nadal head to head".'
)

_TOURNAMENT_SNIFF = re.compile(
    r"\b(?:tournament|open|wimbledon|roland garros|grand slams?|won|winner|champion\w*|title|final)\b",
    re.IGNORECASE,
)
_STATISTICS_SNIFF = re.compile(
    r"\b(?:stats?|statistics|record|rank\w*|points|career|head\s*to\s*head|h2h|vs|versus|aces|wins?|losses)\b",
    re.IGNORECASE,
)
_H2H_SNIFF = re.compile(r"\b(?:head\s*to\s*head|h2h|versus|vs\.?|against)\b", re.IGNORECASE)
_HEDGE = re.compile(
    r"^\s*(?:based on|according to|from|looking at) (?:the )?(?:provided |available |given )?(?:data|rows|results|information)\s*,?\s*",
    re.IGNORECASE,
)


def canned_text(question: str) -> str:
    """
    Pick a canned sentence for a question by keyword sniffing.

    The choice within a category is a stable hash of the question, so the
    same question always gets the same sentence.
    """
    if _H2H_SNIFF.search(question) and len(find_players(question)) < 2:
        return NEED_TWO_PLAYERS
    if _TOURNAMENT_SNIFF.search(question):
        category = "tournament"
    elif _STATISTICS_SNIFF.search(question):
        category = "statistics"
    else:
        category = "generic"
    sentences = CANNED_SENTENCES[category]
    return sentences[zlib.crc32(question.lower().encode("utf-8")) % len(sentences)]


# ============================================================================
# VALUE FORMATTING
# ============================================================================


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _points(value: Any) -> Optional[str]:
    number = _as_int(value)
    return f"{number:,}" if number is not None else None


def _date(value: Any) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    if value is None:
        return None
    text = str(value).strip()
    if re.fullmatch(r"\d{8}", text):  # Sackmann style 20230703
        return f"{text[:4]}-{text[4:6]}-{text[6:]}"
    return text[:10] or None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _mentions(name_value: Any, player: str) -> bool:
    return player.lower() in str(name_value or "").lower()


def _ranking_entry(row: Row) -> str:
    entry = f"{_text(row.get('name')) or 'Unknown player'} (#{_as_int(row.get('ranking'))}"
    points = _points(row.get("points"))
    if points:
        entry += f", {points} points"
    return entry + ")"


def _by_rank(rows: Sequence[Row]) -> List[Row]:
    """One row per ranking position (first seen wins), ordered by ranking."""
    best: Dict[int, Row] = {}
    for row in rows:
        rank = _as_int(row.get("ranking"))
        if rank is not None and rank not in best:
            best[rank] = row
    return [best[r] for r in sorted(best)]


# ============================================================================
# TEMPLATE RENDERERS
# ============================================================================

Renderer = Callable[[Sequence[Row], "RenderContext"], Optional[Composition]]


@dataclass(frozen=True)
class RenderContext:
    question: str
    players: List[str]
    tournament: Optional[str]
    year: Optional[int]
    source: str
    surface: Optional[str] = None


def _ranked_sentence(row: Row) -> str:
    text = f"{_text(row.get('name')) or 'Unknown player'} is ranked #{_as_int(row.get('ranking'))}"
    tour = _text(row.get("tour"))
    if tour:
        text += f" in the {tour} rankings"
    points = _points(row.get("points"))
    if points:
        text += f" with {points} points"
    as_of = _date(row.get("ranking_date"))
    if as_of:
        text += f" (as of {as_of})"
    return text + "."


def render_number_one(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    if not rows:
        return Composition(
            text="I don't have ranking data to tell you who is number one right now.",
            method="template",
        )
    text = _ranked_sentence(rows[0])
    others = [r for r in rows[1:] if _text(r.get("name")) != _text(rows[0].get("name"))]
    if others:
        text += f" The historical rankings list {_text(others[0].get('name'))} at #1"
        as_of = _date(others[0].get("ranking_date"))
        text += f" as of {as_of}." if as_of else "."
    return Composition(text=text, method="template")


def render_ranking_list(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    ordered = _by_rank(rows)
    if not ordered:
        return Composition(
            text="I don't have ranking data for that right now.", method="template"
        )
    tour = _text(ordered[0].get("tour"))
    header = f"Top {len(ordered)}" + (f" {tour}" if tour else "") + " players"
    return Composition(
        text=f"{header}: " + ", ".join(_ranking_entry(r) for r in ordered) + ".",
        method="template",
    )


def render_by_number(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    ordered = _by_rank(rows)
    if not ordered:
        return Composition(
            text="I couldn't find any players at those ranking positions.", method="template"
        )
    if len(ordered) == 1:
        return Composition(text=_ranked_sentence(ordered[0]), method="template")
    parts = [
        f"#{_as_int(r.get('ranking'))}: {_text(r.get('name'))}"
        + (f" ({_points(r.get('points'))} points)" if _points(r.get("points")) else "")
        for r in ordered
    ]
    return Composition(text="; ".join(parts) + ".", method="template")


def render_head_to_head(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    if len(ctx.players) < 2:
        return None
    first, second = ctx.players[0], ctx.players[1]
    on_surface = f"on {ctx.surface.lower()} courts " if ctx.surface else ""
    if not rows:
        return Composition(
            text=(
                f"I couldn't find any head-to-head record between {first} and {second} "
                f"{on_surface}in the database. They may not have played each other, "
                "or their match data hasn't been loaded yet."
            ),
            method="template",
        )

    first_wins = sum(1 for r in rows if _mentions(r.get("winner_name"), first))
    second_wins = sum(1 for r in rows if _mentions(r.get("winner_name"), second))
    total = len(rows)
    if first_wins > second_wins:
        text = f"{first} leads {second} {first_wins}-{second_wins} in their head-to-head"
    elif second_wins > first_wins:
        text = f"{second} leads {first} {second_wins}-{first_wins} in their head-to-head"
    else:
        text = f"{first} and {second} are tied {first_wins}-{second_wins} in their head-to-head"
    text += f" {on_surface}({total} match{'es' if total != 1 else ''} on record)."

    recent = []
    for row in rows[:5]:
        label = " ".join(
            p for p in (_text(row.get("year")) or (_date(row.get("tournament_date")) or "")[:4],
                        _text(row.get("tournament_name"))) if p
        )
        rnd = _text(row.get("round"))
        if rnd:
            label += f" ({rnd})"
        line = f"{label}: {_text(row.get('winner_name'))} def. {_text(row.get('loser_name'))}"
        score = _text(row.get("score"))
        if score:
            line += f" {score}"
        recent.append(line)
    text += " Most recent meetings: " + "; ".join(recent) + "."
    return Composition(text=text, method="template")


def render_tournament_winner(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    if not (ctx.tournament and ctx.year):
        return None
    champion = known_champion(ctx.tournament, ctx.year)
    if champion is not None:
        return Composition(
            text=(
                f"{champion.winner} won the {ctx.tournament} {ctx.year} men's singles title, "
                f"defeating {champion.runner_up} in the final with a score of {champion.score}."
            ),
            method="template",
            confidence=CANNED_CHAMPION_CONFIDENCE,
        )
    if rows:
        row = rows[0]
        text = (
            f"{_text(row.get('winner_name'))} won the {ctx.tournament} {ctx.year} title, "
            f"defeating {_text(row.get('loser_name'))} in the final"
        )
        score = _text(row.get("score"))
        text += f" with a score of {score}." if score else "."
        return Composition(text=text, method="template")
    return Composition(
        text=(
            f"I don't have the {ctx.tournament} {ctx.year} final in my database yet. "
            "The historical results integration for that event is incomplete, so I "
            "can't tell you who won."
        ),
        method="template",
    )


def render_grand_slam_winners(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    if not ctx.year:
        return None
    winners: Dict[str, str] = {}
    for row in rows:
        tournament = find_tournament(str(row.get("tournament_name") or ""))
        if tournament and tournament not in winners:
            winners[tournament] = _text(row.get("winner_name")) or "Unknown"
    for slam in GRAND_SLAMS:
        champion = known_champion(slam, ctx.year)
        if slam not in winners and champion is not None:
            winners[slam] = champion.winner
    if not winners:
        return Composition(
            text=f"I don't have Grand Slam final results for {ctx.year} in my database yet.",
            method="template",
        )
    parts = [f"{slam}: {winners[slam]}" for slam in GRAND_SLAMS if slam in winners]
    return Composition(
        text=f"{ctx.year} Grand Slam men's singles champions: " + "; ".join(parts) + ".",
        method="template",
    )


def render_ranking_history(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    player = ctx.players[0] if ctx.players else "that player"
    ranked = [r for r in rows if _as_int(r.get("ranking")) is not None]
    if not ranked:
        return Composition(
            text=f"I couldn't find any ranking history for {player} in the historical data.",
            method="template",
        )
    latest = ranked[0]
    best = min(ranked, key=lambda r: _as_int(r.get("ranking")))
    worst = max(ranked, key=lambda r: _as_int(r.get("ranking")))
    text = f"{player}'s most recent ranking on record is #{_as_int(latest.get('ranking'))}"
    points = _points(latest.get("points"))
    if points:
        text += f" with {points} points"
    as_of = _date(latest.get("ranking_date"))
    if as_of:
        text += f" ({as_of})"
    text += f". Career high: #{_as_int(best.get('ranking'))}"
    best_date = _date(best.get("ranking_date"))
    if best_date:
        text += f" on {best_date}"
    text += f"; lowest: #{_as_int(worst.get('ranking'))}, across {len(ranked)} ranking weeks."
    return Composition(text=text, method="template")


def render_career_stats(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    player = ctx.players[0] if ctx.players else "that player"
    row = rows[0] if rows else {}
    wins = _as_int(row.get("wins")) or 0
    losses = _as_int(row.get("losses")) or 0
    if wins + losses == 0:
        return Composition(
            text=f"I couldn't find any match results for {player} in the historical data.",
            method="template",
        )
    titles = _as_int(row.get("titles")) or 0
    events = _as_int(row.get("tournaments_played")) or 0
    pct = 100.0 * wins / (wins + losses)
    return Composition(
        text=(
            f"{player} has a {wins}-{losses} win-loss record ({pct:.1f}% of matches won) "
            f"with {titles} title{'s' if titles != 1 else ''} across {events} "
            f"tournament{'s' if events != 1 else ''} in the historical data."
        ),
        method="template",
    )


_HANDS = {"R": "right-handed", "L": "left-handed", "U": None}


def render_player_profile(rows: Sequence[Row], ctx: RenderContext) -> Optional[Composition]:
    player = ctx.players[0] if ctx.players else None
    if not rows:
        if player is None:
            return None
        return Composition(
            text=f"I don't have a profile for {player} in the database yet.", method="template"
        )

    merged: Dict[str, Any] = {}
    for row in rows:
        for key, value in row.items():
            if merged.get(key) is None and value is not None:
                merged[key] = value

    name = _text(merged.get("name")) or player or "This player"
    country = _text(merged.get("country"))
    text = name + (f" ({country})" if country else "")
    rank = _as_int(merged.get("current_ranking"))
    tour = _text(merged.get("tour"))
    if rank:
        text += f" is currently ranked #{rank}" + (f" on the {tour} tour" if tour else "") + "."
    elif tour:
        text += f" plays on the {tour} tour."
    else:
        text += " is in the player database."

    details = []
    hand_value = _text(merged.get("playing_hand"))
    hand = _HANDS.get(hand_value.upper()[:1], hand_value.lower()) if hand_value else None
    if hand:
        details.append(f"plays {hand}")
    turned_pro = _as_int(merged.get("turned_pro"))
    if turned_pro:
        details.append(f"turned pro in {turned_pro}")
    born = _date(merged.get("birth_date"))
    if born:
        details.append(f"was born on {born}")
    height = _as_int(merged.get("height"))
    if height:
        details.append(f"is {height} cm tall")
    if details:
        pronoun_free = ", ".join(details[:-1]) + (" and " if len(details) > 1 else "") + details[-1]
        text += f" {name.split()[-1]} {pronoun_free}."
    return Composition(text=text, method="template")


# Every query template has a renderer
RENDERERS: Dict[str, Renderer] = {
    "tournament_winner": render_tournament_winner,
    "grand_slam_winners": render_grand_slam_winners,
    "head_to_head": render_head_to_head,
    "ranking_history": render_ranking_history,
    "career_stats": render_career_stats,
    "player_profile": render_player_profile,
    "ranking_number_one": render_number_one,
    "ranking_top_n": render_ranking_list,
    "ranking_by_number": render_by_number,
    "ranking_list": render_ranking_list,
}


# ============================================================================
# COMPOSER
# ============================================================================


class AnswerComposer:
    """Turns result rows into answer text. compose() never raises."""

    def __init__(self, completion: Optional[TextCompletion] = None):
        self.completion = completion

    async def compose(
        self,
        question: Question,
        result: ResultSet,
        intent: IntentAnalysis,
        allow_llm: bool = True,
    ) -> Composition:
        """
        Compose an answer.

        Args:
            question: The question
            result: Rows to describe (possibly empty)
            intent: Classification for the question
            allow_llm: False on the degraded path

        Returns:
            Composition with the text and how it was produced
        """
        try:
            composition = self._render_template(question, result, intent)
        except Exception:
            logger.exception(
                f"Answer template failed (stage=compose, question={question.text!r})"
            )
            composition = None
        if composition is not None:
            return composition

        if result.is_empty:
            return Composition(text=canned_text(question.text), method="canned")

        llm_failed = False
        if allow_llm and self.completion is not None and self.completion.enabled:
            text = await self._summarize(question, result, intent)
            if text:
                return Composition(text=text, method="llm")
            llm_failed = True

        return Composition(
            text=(
                f"I found {len(result)} matching record{'s' if len(result) != 1 else ''} "
                "but couldn't put them into words right now. The data is included below."
            ),
            method="canned",
            llm_failed=llm_failed,
        )

    def _render_template(
        self, question: Question, result: ResultSet, intent: IntentAnalysis
    ) -> Optional[Composition]:
        if result.template is None and result.parts:
            return self._render_parts(question, result.parts, intent)
        renderer = RENDERERS.get(result.template or "")
        if renderer is None:
            return None
        players = find_players(question.text)
        for name in intent.entities.players:
            if name not in players and len(players) < 2:
                players.append(name)
        ctx = RenderContext(
            question=question.text,
            players=players,
            tournament=find_tournament(question.text),
            year=find_year(question.text),
            source=result.source,
            surface=find_surface(question.text) or intent.entities.surface,
        )
        return renderer(result.rows, ctx)

    def _render_parts(
        self, question: Question, parts: Tuple[ResultSet, ...], intent: IntentAnalysis
    ) -> Optional[Composition]:
        """Render each source with its own template and join the sentences in source order."""
        with_rows = [part for part in parts if not part.is_empty] or list(parts)
        rendered = [self._render_template(question, part, intent) for part in with_rows]
        compositions = [c for c in rendered if c is not None]
        if not compositions:
            return None
        confidences = [c.confidence for c in compositions if c.confidence is not None]
        return Composition(
            text=" ".join(c.text for c in compositions),
            method="template",
            confidence=min(confidences) if confidences else None,
        )

    async def _summarize(
        self, question: Question, result: ResultSet, intent: IntentAnalysis
    ) -> Optional[str]:
        records = [
            {k: to_json_value(v) for k, v in row.items()} for row in result.rows[:MAX_LLM_ROWS]
        ]
        user_prompt = (
            f'Question: "{question.text}"\n'
            f"Intent: {json.dumps(intent.to_dict())}\n"
            f"Rows ({len(result)} total, first {len(records)} shown): {json.dumps(records)}"
        )
        try:
            response = await self.completion.complete(
                ANSWER_PROMPT, user_prompt, temperature=0.3, max_tokens=300
            )
        except Exception as e:
            logger.warning(
                f"Answer summarization failed (stage=compose, question={question.text!r}): {e}"
            )
            return None

        text = _HEDGE.sub("", response.strip()).strip()
        if not text:
            return None
        return text[0].upper() + text[1:]
