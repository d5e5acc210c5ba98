# ask_tennis/nlq/classifier.py
"""
Intent classification for tennis questions.

Routing is decided by an ordered list of (predicate, effect) rules. ALL
rules are evaluated and their effects OR-ed into three flags (live,
historical, combined); a fixed decision table then maps the flags to a
query type and data sources:

    live only                       -> live_data        [live]
    historical only                 -> historical_data  [historical]
    combined, or live + historical  -> combined_data    [live, historical]
    nothing matched                 -> general          [default source]

The LLM only contributes entities, confidence and an intent narrative; it
never changes the route.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..api.errors import InvalidQuestionError
from ..store.schema import SOURCE_TAGS
from .llm import ENTITY_EXTRACTION_PROMPT, TextCompletion, validate_and_correct_json
from .vocabulary import find_players, find_surface, resolve_player

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_INTENT = "General tennis question"


# ============================================================================
# TYPES
# ============================================================================


class QueryType(str, Enum):
    LIVE_DATA = "live_data"
    HISTORICAL_DATA = "historical_data"
    COMBINED_DATA = "combined_data"
    GENERAL = "general"


class DataSource(str, Enum):
    """Which backing provider populated (or should populate) a row set."""

    LIVE = "live"
    HISTORICAL = "historical"

    @property
    def tag(self) -> str:
        """Value of the data_source column for rows from this source."""
        return SOURCE_TAGS[self.value]


@dataclass(frozen=True)
class Question:
    """Immutable question record. Text is never blank."""

    text: str
    user_id: Optional[str] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, text: Optional[str], user_id: Optional[str] = None) -> "Question":
        """
        Validate and build a Question.

        Raises:
            InvalidQuestionError: If text is missing or blank after trimming
        """
        if text is None or not isinstance(text, str) or not text.strip():
            raise InvalidQuestionError("Question is required")
        return cls(text=text.strip(), user_id=user_id)


@dataclass(frozen=True)
class Entities:
    players: Tuple[str, ...] = ()
    tournaments: Tuple[str, ...] = ()
    metrics: Tuple[str, ...] = ()
    timeframe: Optional[str] = None
    surface: Optional[str] = None

    @classmethod
    def from_llm(cls, payload: Dict[str, Any]) -> "Entities":
        """Coerce an untrusted LLM payload; anything malformed is dropped."""

        def strings(value: Any) -> Tuple[str, ...]:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list):
                return ()
            return tuple(str(v).strip() for v in value if isinstance(v, (str, int)) and str(v).strip())

        def optional_string(value: Any) -> Optional[str]:
            if value is None or isinstance(value, (dict, list)):
                return None
            text = str(value).strip()
            return text if text and text.lower() not in ("null", "none") else None

        return cls(
            players=strings(payload.get("players")),
            tournaments=strings(payload.get("tournaments")),
            metrics=strings(payload.get("metrics")),
            timeframe=optional_string(payload.get("timeframe")),
            surface=optional_string(payload.get("surface")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("players", "tournaments", "metrics"):
            data[key] = list(data[key])
        return data


@dataclass(frozen=True)
class RoutingDecision:
    """Rule-only routing; cheap and deterministic, used for cache keys."""

    type: QueryType
    data_sources: Tuple[DataSource, ...]
    matched_rules: Tuple[str, ...]

    @property
    def source_tag(self) -> str:
        if len(self.data_sources) > 1:
            return "hybrid"
        return self.data_sources[0].tag


@dataclass(frozen=True)
class IntentAnalysis:
    """Classification result for one question. Always fully populated."""

    type: QueryType
    data_sources: Tuple[DataSource, ...]
    entities: Entities = field(default_factory=Entities)
    confidence: float = DEFAULT_CONFIDENCE
    intent: str = DEFAULT_INTENT
    matched_rules: Tuple[str, ...] = ()
    llm_status: str = "skipped"  # skipped, refined, failed

    @property
    def primary_source(self) -> DataSource:
        return self.data_sources[0]

    @property
    def source_tag(self) -> str:
        if len(self.data_sources) > 1:
            return "hybrid"
        return self.primary_source.tag

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "dataSources": [s.value for s in self.data_sources],
            "entities": self.entities.to_dict(),
            "confidence": self.confidence,
            "intent": self.intent,
        }


# ============================================================================
# ROUTING RULES
# ============================================================================

LIVE = "live"
HISTORICAL = "historical"
COMBINED = "combined"


@dataclass(frozen=True)
class Rule:
    """A named predicate over question text and the flag it sets."""

    name: str
    effect: str  # live, historical or combined
    predicate: Callable[[str], bool]

    def matches(self, text: str) -> bool:
        return self.predicate(text)


def _regex(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda text: compiled.search(text) is not None


_PROFILE_PHRASE = re.compile(
    r"\b(?:tell me about|information (?:about|on)|profile of|who is)\b", re.IGNORECASE
)


def _asks_for_profile(text: str) -> bool:
    """'Tell me about <player>' style questions naming a roster player."""
    match = _PROFILE_PHRASE.search(text)
    if match is None:
        return False
    tail = text[match.end():]
    return bool(find_players(tail)) or re.search(r"\bplayer\b", tail, re.IGNORECASE) is not None


ROUTING_RULES: List[Rule] = [
    Rule(
        "current_rankings",
        LIVE,
        _regex(
            r"\b(?:current(?:ly)?|latest|now|today|this week)\b"
            r"|\brank(?:ed|ing)?\b.*\d+|\bnumber\s*\d+"
        ),
    ),
    Rule(
        "live_matches",
        LIVE,
        _regex(
            r"\b(?:live|ongoing|happening|upcoming)\b.*\b(?:match(?:es)?|games?|scores?|events?)\b"
        ),
    ),
    Rule(
        "ranking_queries",
        LIVE,
        _regex(r"\b(?:rankings?|ranked|rank|number one|no\.\s*1|top\s*\d+|position)\b"),
    ),
    Rule(
        "historical_rankings",
        HISTORICAL,
        _regex(
            r"\b(?:historical(?:ly)?|past|previous|trends?|compare|over time|history|all[- ]time)\b"
        ),
    ),
    Rule(
        "match_history",
        HISTORICAL,
        _regex(r"\b(?:head\s*to\s*head|h2h|versus|vs\.?|against|record|matches)\b"),
    ),
    Rule(
        "career_stats",
        HISTORICAL,
        _regex(r"\b(?:career|statistics|stats|performance|analysis|titles?)\b"),
    ),
    Rule(
        "tournament_winners",
        HISTORICAL,
        _regex(
            r"\b(?:who won|won|winner|champion(?:ship)?s?|title)\b.*"
            r"\b(?:us open|wimbledon|french open|roland garros|australian open|grand slam|tournament|competition)\b"
        ),
    ),
    Rule(
        "grand_slam_data",
        HISTORICAL,
        _regex(r"\b(?:grand slams?|wimbledon|us open|french open|australian open|roland garros)\b"),
    ),
    Rule("player_profile", COMBINED, _asks_for_profile),
    Rule(
        "tournament_analysis",
        COMBINED,
        _regex(r"\b(?:tournament|competition|event)\b.*\b(?:analysis|performance|statistics)\b"),
    ),
]


def route_question(
    text: str,
    rules: List[Rule] = ROUTING_RULES,
    default_source: DataSource = DataSource.HISTORICAL,
) -> RoutingDecision:
    """
    Apply every rule, OR the flags and map them through the decision table.

    Examples:
        >>> route_question("Who is ranked number 1?").type
        <QueryType.LIVE_DATA: 'live_data'>
        >>> route_question("Head to head between Djokovic and Nadal").type
        <QueryType.HISTORICAL_DATA: 'historical_data'>
    """
    flags = {LIVE: False, HISTORICAL: False, COMBINED: False}
    matched = []
    for rule in rules:
        if rule.matches(text):
            flags[rule.effect] = True
            matched.append(rule.name)

    if flags[COMBINED] or (flags[LIVE] and flags[HISTORICAL]):
        query_type = QueryType.COMBINED_DATA
        sources: Tuple[DataSource, ...] = (DataSource.LIVE, DataSource.HISTORICAL)
    elif flags[LIVE]:
        query_type = QueryType.LIVE_DATA
        sources = (DataSource.LIVE,)
    elif flags[HISTORICAL]:
        query_type = QueryType.HISTORICAL_DATA
        sources = (DataSource.HISTORICAL,)
    else:
        query_type = QueryType.GENERAL
        sources = (default_source,)

    return RoutingDecision(type=query_type, data_sources=sources, matched_rules=tuple(matched))


# ============================================================================
# CLASSIFIER
# ============================================================================


class IntentClassifier:
    """
    Rule-based router with best-effort LLM entity extraction.

    classify() never raises. If the rules or the LLM fail, a `general`
    analysis on the default source with confidence 0.5 is returned.
    """

    def __init__(
        self,
        completion: Optional[TextCompletion] = None,
        default_source: DataSource = DataSource.HISTORICAL,
        rules: Optional[List[Rule]] = None,
    ):
        self.completion = completion
        self.default_source = DataSource(default_source)
        self.rules = rules if rules is not None else ROUTING_RULES

    def route(self, text: str) -> RoutingDecision:
        return route_question(text, self.rules, self.default_source)

    async def classify(self, question: Question) -> IntentAnalysis:
        """
        Classify a question.

        Args:
            question: Validated question

        Returns:
            IntentAnalysis (rule-based route, LLM-refined entities when available)
        """
        try:
            decision = self.route(question.text)
        except Exception:
            logger.exception(f"Routing rules failed for question: {question.text!r}")
            decision = RoutingDecision(
                type=QueryType.GENERAL, data_sources=(self.default_source,), matched_rules=()
            )

        analysis = IntentAnalysis(
            type=decision.type,
            data_sources=decision.data_sources,
            entities=Entities(surface=find_surface(question.text)),
            matched_rules=decision.matched_rules,
        )

        if self.completion is None or not self.completion.enabled:
            return analysis

        payload = await self._extract_entities(question, decision)
        if payload is None:
            return IntentAnalysis(
                type=analysis.type,
                data_sources=analysis.data_sources,
                entities=analysis.entities,
                matched_rules=analysis.matched_rules,
                llm_status="failed",
            )

        return self._merge(analysis, payload)

    async def _extract_entities(
        self, question: Question, decision: RoutingDecision
    ) -> Optional[Dict[str, Any]]:
        user_prompt = (
            f'Question: "{question.text}"\n'
            f"Routing: {json.dumps({'type': decision.type.value, 'rules': list(decision.matched_rules)})}"
        )
        try:
            response = await self.completion.complete(
                ENTITY_EXTRACTION_PROMPT, user_prompt, temperature=0.1, max_tokens=500
            )
        except Exception as e:
            logger.warning(
                f"Entity extraction failed (stage=classify, question={question.text!r}): {e}"
            )
            return None

        payload = validate_and_correct_json(response)
        if payload is None:
            logger.warning(
                f"Entity extraction returned no JSON (stage=classify, question={question.text!r})"
            )
        return payload

    @staticmethod
    def _merge(analysis: IntentAnalysis, payload: Dict[str, Any]) -> IntentAnalysis:
        entities = Entities.from_llm(payload)
        # Canonicalize roster players; other names pass through unchanged
        resolved: List[str] = []
        for name in entities.players:
            canonical = resolve_player(name) or name
            if canonical not in resolved:
                resolved.append(canonical)
        # "clay courts" -> "Clay"; the question text decides when the LLM gives none
        surface = entities.surface
        surface = (find_surface(surface) or surface) if surface else analysis.entities.surface
        entities = Entities(
            players=tuple(resolved),
            tournaments=entities.tournaments,
            metrics=entities.metrics,
            timeframe=entities.timeframe,
            surface=surface,
        )

        try:
            llm_confidence = float(payload.get("confidence", DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            llm_confidence = DEFAULT_CONFIDENCE
        llm_confidence = min(1.0, max(0.0, llm_confidence))

        intent = payload.get("intent")
        if not isinstance(intent, str) or not intent.strip():
            intent = DEFAULT_INTENT

        return IntentAnalysis(
            type=analysis.type,
            data_sources=analysis.data_sources,
            entities=entities,
            confidence=max(DEFAULT_CONFIDENCE, llm_confidence),
            intent=intent.strip()[:200],
            matched_rules=analysis.matched_rules,
            llm_status="refined",
        )
