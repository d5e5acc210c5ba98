"""
Tests for rule-based routing and LLM-refined intent classification.
"""

import pytest

from ask_tennis.api.errors import InvalidQuestionError, LLMUnavailableError
from ask_tennis.nlq.classifier import (
    DataSource,
    Entities,
    IntentClassifier,
    QueryType,
    Question,
    Rule,
    route_question,
)
from ask_tennis.nlq.mock_backends import ScriptedCompletion


# ============================================================================
# QUESTION
# ============================================================================


def test_question_is_trimmed():
    question = Question.create("  Who is ranked number 1?  ", user_id="u1")
    assert question.text == "Who is ranked number 1?"
    assert question.user_id == "u1"
    assert question.received_at.tzinfo is not None


@pytest.mark.parametrize("text", [None, "", "   ", "\n\t"])
def test_blank_question_rejected(text):
    with pytest.raises(InvalidQuestionError) as exc_info:
        Question.create(text)
    assert exc_info.value.code == "INVALID_QUESTION"


# ============================================================================
# ROUTING
# ============================================================================


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Who is ranked number 1?", QueryType.LIVE_DATA),
        ("What are the current ATP rankings?", QueryType.LIVE_DATA),
        ("Who are the top 5 players?", QueryType.LIVE_DATA),
        ("Who is ranked 5th?", QueryType.LIVE_DATA),
        ("Head to head between Djokovic and Nadal", QueryType.HISTORICAL_DATA),
        ("Who won Wimbledon 2023?", QueryType.HISTORICAL_DATA),
        ("What is Federer's career record?", QueryType.HISTORICAL_DATA),
        ("Tell me about Carlos Alcaraz", QueryType.COMBINED_DATA),
        ("Compare the current rankings with historical trends", QueryType.COMBINED_DATA),
        ("Which players are from Spain?", QueryType.GENERAL),
    ],
)
def test_route_question(text, expected):
    assert route_question(text).type is expected


def test_rules_are_or_combined_not_first_match():
    decision = route_question("Djokovic ranking history")
    # "ranking" sets live, "history" sets historical: both together mean combined
    assert decision.type is QueryType.COMBINED_DATA
    assert decision.data_sources == (DataSource.LIVE, DataSource.HISTORICAL)
    assert "ranking_queries" in decision.matched_rules
    assert "historical_rankings" in decision.matched_rules
    assert decision.source_tag == "hybrid"


def test_profile_rule_needs_a_player():
    assert route_question("Who is the best?").type is QueryType.GENERAL
    assert route_question("Who is Nadal?").type is QueryType.COMBINED_DATA


def test_unmatched_question_uses_configured_default_source():
    historical = route_question("Tell me something fun")
    live = route_question("Tell me something fun", default_source=DataSource.LIVE)
    assert historical.data_sources == (DataSource.HISTORICAL,)
    assert historical.source_tag == "github"
    assert live.data_sources == (DataSource.LIVE,)
    assert live.source_tag == "sportsradar"


# ============================================================================
# CLASSIFIER
# ============================================================================


@pytest.mark.asyncio
async def test_classify_without_llm_is_rule_only():
    classifier = IntentClassifier()
    intent = await classifier.classify(Question.create("Who is ranked number 1?"))

    assert intent.type is QueryType.LIVE_DATA
    assert intent.data_sources == (DataSource.LIVE,)
    assert intent.confidence == 0.5
    assert intent.llm_status == "skipped"
    assert intent.entities == Entities()


@pytest.mark.asyncio
async def test_surface_is_read_from_the_question():
    intent = await IntentClassifier().classify(Question.create("Nadal vs Federer on clay"))
    assert intent.entities == Entities(surface="Clay")


@pytest.mark.asyncio
async def test_llm_surface_is_canonicalized():
    completion = ScriptedCompletion(responses=['{"players": ["Nadal"], "surface": "clay courts"}'])
    intent = await IntentClassifier(completion=completion).classify(
        Question.create("How does Nadal do on the red stuff?")
    )
    assert intent.entities.surface == "Clay"


@pytest.mark.asyncio
async def test_classify_refines_entities_with_llm():
    completion = ScriptedCompletion(
        responses=[
            'Here you go: {"players": ["nadal", "Novak Djokovic", "Nadal"], '
            '"tournaments": ["Wimbledon"], "confidence": 0.92, '
            '"intent": "Head-to-head record", "surface": "null",}'
        ]
    )
    classifier = IntentClassifier(completion=completion)
    intent = await classifier.classify(Question.create("Nadal vs Djokovic"))

    assert intent.llm_status == "refined"
    assert intent.entities.players == ("Rafael Nadal", "Novak Djokovic")
    assert intent.entities.tournaments == ("Wimbledon",)
    assert intent.entities.surface is None
    assert intent.confidence == pytest.approx(0.92)
    assert intent.intent == "Head-to-head record"
    # route comes from the rules only
    assert intent.type is QueryType.HISTORICAL_DATA
    assert completion.call_count == 1


@pytest.mark.asyncio
async def test_llm_confidence_never_lowers_baseline():
    completion = ScriptedCompletion(responses=['{"players": [], "confidence": 0.1}'])
    intent = await IntentClassifier(completion=completion).classify(Question.create("hello"))
    assert intent.confidence == 0.5
    assert intent.intent == "General tennis question"


@pytest.mark.asyncio
async def test_llm_failure_is_reported_not_raised():
    completion = ScriptedCompletion(error=LLMUnavailableError("ollama down"))
    intent = await IntentClassifier(completion=completion).classify(
        Question.create("Who won Wimbledon 2023?")
    )
    assert intent.llm_status == "failed"
    assert intent.type is QueryType.HISTORICAL_DATA
    assert intent.confidence == 0.5


@pytest.mark.asyncio
async def test_unparseable_llm_output_counts_as_failure():
    completion = ScriptedCompletion(responses=["I cannot help with that."])
    intent = await IntentClassifier(completion=completion).classify(Question.create("hi"))
    assert intent.llm_status == "failed"


@pytest.mark.asyncio
async def test_disabled_llm_is_never_called():
    completion = ScriptedCompletion(responses=['{"confidence": 0.9}'], enabled=False)
    intent = await IntentClassifier(completion=completion).classify(Question.create("hi"))
    assert intent.llm_status == "skipped"
    assert completion.call_count == 0


@pytest.mark.asyncio
async def test_broken_rule_falls_back_to_general():
    def explode(text):
        raise RuntimeError("bad rule")

    classifier = IntentClassifier(rules=[Rule("broken", "live", explode)])
    intent = await classifier.classify(Question.create("Who is ranked number 1?"))
    assert intent.type is QueryType.GENERAL
    assert intent.data_sources == (DataSource.HISTORICAL,)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text",
    [
        "x",
        "?????",
        "'; DROP TABLE players; --",
        "número uno 🎾",
        "rank " * 500,
        "Who won Wimbledon 1877 vs vs vs head to head",
    ],
)
async def test_classify_always_fully_populated(text):
    intent = await IntentClassifier().classify(Question.create(text))
    assert intent.type in set(QueryType)
    assert len(intent.data_sources) >= 1
    assert 0.0 <= intent.confidence <= 1.0
    assert intent.intent
