"""
Tests for answer composition: sentence templates, LLM summaries and canned
fallbacks.
"""

from datetime import date
from unittest.mock import patch

import pytest

from ask_tennis.api.errors import LLMUnavailableError
from ask_tennis.nlq.builder import TEMPLATE_REGISTRY
from ask_tennis.nlq.classifier import IntentClassifier, Question
from ask_tennis.nlq.composer import (
    CANNED_SENTENCES,
    NEED_TWO_PLAYERS,
    RENDERERS,
    Answer,
    AnswerComposer,
    canned_text,
)
from ask_tennis.nlq.executor import ResultSet
from ask_tennis.nlq.mock_backends import ScriptedCompletion


async def compose(text, rows, template=None, completion=None, allow_llm=True, source="live"):
    question = Question.create(text)
    intent = await IntentClassifier().classify(question)
    result = ResultSet(
        rows=tuple(rows),
        source=source,
        data_source="sportsradar" if source == "live" else "github",
        template=template,
    )
    return await AnswerComposer(completion=completion).compose(
        question, result, intent, allow_llm=allow_llm
    )


# ============================================================================
# TEMPLATES
# ============================================================================


def test_every_query_template_has_a_renderer():
    assert {t.name for t in TEMPLATE_REGISTRY} == set(RENDERERS)


@pytest.mark.asyncio
async def test_number_one():
    composition = await compose(
        "Who is ranked number 1?",
        [{"name": "Carlos Alcaraz", "ranking": 1, "points": 9255, "tour": "ATP",
          "ranking_date": date(2023, 9, 4)}],
        template="ranking_number_one",
    )
    assert composition.method == "template"
    assert composition.text == (
        "Carlos Alcaraz is ranked #1 in the ATP rankings with 9,255 points (as of 2023-09-04)."
    )


@pytest.mark.asyncio
async def test_head_to_head_without_meetings_says_so():
    composition = await compose(
        "Head to head between Djokovic and Nadal", [], template="head_to_head", source="historical"
    )
    assert composition.text.startswith(
        "I couldn't find any head-to-head record between Novak Djokovic and Rafael Nadal"
    )


@pytest.mark.asyncio
async def test_head_to_head_tally():
    rows = [
        {"tournament_name": "Australian Open", "year": 2020, "round": "SF",
         "winner_name": "Novak Djokovic", "loser_name": "Roger Federer", "score": "7-6(1) 6-4 6-3"},
        {"tournament_name": "Tour Finals", "year": 2019, "round": "RR",
         "winner_name": "Roger Federer", "loser_name": "Novak Djokovic", "score": "6-4 6-3"},
        {"tournament_name": "Wimbledon", "year": 2019, "round": "F",
         "winner_name": "Novak Djokovic", "loser_name": "Roger Federer", "score": None},
    ]
    composition = await compose(
        "Federer vs Djokovic", rows, template="head_to_head", source="historical"
    )
    assert composition.text.startswith(
        "Novak Djokovic leads Roger Federer 2-1 in their head-to-head (3 matches on record)."
    )
    assert "2020 Australian Open (SF): Novak Djokovic def. Roger Federer 7-6(1) 6-4 6-3" in composition.text
    assert composition.text.endswith("2019 Wimbledon (F): Novak Djokovic def. Roger Federer.")


@pytest.mark.asyncio
async def test_known_champion_wins_over_rows():
    composition = await compose(
        "Who won Wimbledon 2023?",
        [{"winner_name": "Somebody Else", "loser_name": "X", "score": "6-0"}],
        template="tournament_winner",
        source="historical",
    )
    assert composition.text == (
        "Carlos Alcaraz won the Wimbledon 2023 men's singles title, defeating Novak Djokovic "
        "in the final with a score of 1-6, 7-6(6), 6-1, 3-6, 6-4."
    )
    assert composition.confidence == 0.95


@pytest.mark.asyncio
async def test_unknown_final_uses_database_row():
    composition = await compose(
        "Who won Wimbledon 2019?",
        [{"winner_name": "Novak Djokovic", "loser_name": "Roger Federer", "score": "7-6(5) 1-6"}],
        template="tournament_winner",
        source="historical",
    )
    assert composition.text == (
        "Novak Djokovic won the Wimbledon 2019 title, defeating Roger Federer in the final "
        "with a score of 7-6(5) 1-6."
    )
    assert composition.confidence is None


@pytest.mark.asyncio
async def test_missing_final_admits_incomplete_data():
    composition = await compose(
        "Who won the US Open 2015?", [], template="tournament_winner", source="historical"
    )
    assert "US Open 2015" in composition.text
    assert "incomplete" in composition.text
    assert "won the" not in composition.text


@pytest.mark.asyncio
async def test_top_n_list_deduplicates_positions():
    rows = [
        {"name": "Carlos Alcaraz", "ranking": 1, "points": 9255, "tour": "ATP"},
        {"name": "Novak Djokovic", "ranking": 2, "points": 8795, "tour": "ATP"},
        {"name": "Someone Stale", "ranking": 2, "points": 1, "tour": "ATP"},
    ]
    composition = await compose("Who are the top 2 players?", rows, template="ranking_top_n")
    assert composition.text == (
        "Top 2 ATP players: Carlos Alcaraz (#1, 9,255 points), Novak Djokovic (#2, 8,795 points)."
    )


@pytest.mark.asyncio
async def test_by_number_lists_each_rank():
    rows = [
        {"name": "Daniil Medvedev", "ranking": 3, "points": 7200},
        {"name": "Andrey Rublev", "ranking": 5, "points": None},
    ]
    composition = await compose("Who is ranked 3 and 5?", rows, template="ranking_by_number")
    assert composition.text == "#3: Daniil Medvedev (7,200 points); #5: Andrey Rublev."


@pytest.mark.asyncio
async def test_career_stats():
    rows = [{"wins": 4, "losses": 2, "titles": 3, "tournaments_played": 5}]
    composition = await compose(
        "What is Djokovic's career record?", rows, template="career_stats", source="historical"
    )
    assert composition.text == (
        "Novak Djokovic has a 4-2 win-loss record (66.7% of matches won) with 3 titles "
        "across 5 tournaments in the historical data."
    )


@pytest.mark.asyncio
async def test_merged_sources_render_with_their_own_templates():
    question = Question.create("Tell me about Djokovic's career stats")
    intent = await IntentClassifier().classify(question)
    profile = ResultSet(
        rows=({"name": "Novak Djokovic", "country": "SRB", "current_ranking": 2, "tour": "ATP"},),
        source="live",
        data_source="sportsradar",
        template="player_profile",
    )
    stats = ResultSet(
        rows=({"wins": 4, "losses": 2, "titles": 3, "tournaments_played": 5},),
        source="historical",
        data_source="github",
        template="career_stats",
    )
    composition = await AnswerComposer().compose(
        question, ResultSet.merge([profile, stats]), intent
    )

    assert composition.method == "template"
    assert composition.text == (
        "Novak Djokovic (SRB) is currently ranked #2 on the ATP tour. "
        "Novak Djokovic has a 4-2 win-loss record (66.7% of matches won) with 3 titles "
        "across 5 tournaments in the historical data."
    )


@pytest.mark.asyncio
async def test_ranking_history():
    rows = [
        {"ranking": 1, "points": 11245, "ranking_date": date(2023, 11, 13)},
        {"ranking": 8, "points": 4820, "ranking_date": date(2022, 11, 14)},
        {"ranking": 1, "points": 13630, "ranking_date": date(2011, 7, 4)},
    ]
    composition = await compose(
        "Djokovic career high ranking", rows, template="ranking_history", source="historical"
    )
    assert composition.text.startswith(
        "Novak Djokovic's most recent ranking on record is #1 with 11,245 points (2023-11-13)."
    )
    assert "lowest: #8, across 3 ranking weeks." in composition.text


@pytest.mark.asyncio
async def test_player_profile_merges_rows():
    rows = [
        {"name": "Carlos Alcaraz", "country": "ESP", "current_ranking": 1, "tour": "ATP",
         "playing_hand": "R", "turned_pro": 2018, "birth_date": None, "height": None},
        {"name": "Carlos Alcaraz", "country": "ESP", "birth_date": date(2003, 5, 5),
         "height": 183, "playing_hand": "R", "tour": "ATP"},
    ]
    composition = await compose("Tell me about Carlos Alcaraz", rows, template="player_profile")
    assert composition.text == (
        "Carlos Alcaraz (ESP) is currently ranked #1 on the ATP tour. Alcaraz plays "
        "right-handed, turned pro in 2018, was born on 2003-05-05 and is 183 cm tall."
    )


@pytest.mark.asyncio
async def test_renderer_error_falls_through_to_llm():
    def explode(rows, ctx):
        raise KeyError("ranking")

    completion = ScriptedCompletion(responses=["Carlos Alcaraz is the world number one."])
    with patch.dict(RENDERERS, {"ranking_number_one": explode}):
        composition = await compose(
            "Who is ranked number 1?",
            [{"name": "Carlos Alcaraz", "ranking": 1}],
            template="ranking_number_one",
            completion=completion,
        )
    assert composition.method == "llm"
    assert composition.text == "Carlos Alcaraz is the world number one."


# ============================================================================
# LLM AND CANNED
# ============================================================================


@pytest.mark.asyncio
async def test_llm_summary_strips_hedge():
    completion = ScriptedCompletion(
        responses=["Based on the data, carlos Alcaraz and Rafael Nadal are from Spain."]
    )
    composition = await compose(
        "Which players are from Spain?",
        [{"name": "Carlos Alcaraz"}, {"name": "Rafael Nadal"}],
        completion=completion,
    )
    assert composition.method == "llm"
    assert composition.text == "Carlos Alcaraz and Rafael Nadal are from Spain."
    assert completion.calls[0]["temperature"] == 0.3
    assert completion.calls[0]["max_tokens"] == 300


@pytest.mark.asyncio
async def test_llm_failure_gives_record_count():
    completion = ScriptedCompletion(error=LLMUnavailableError("down"))
    composition = await compose(
        "Which players are from Spain?", [{"name": "Rafael Nadal"}], completion=completion
    )
    assert composition.method == "canned"
    assert composition.llm_failed
    assert composition.text.startswith("I found 1 matching record ")


@pytest.mark.asyncio
async def test_no_llm_when_disallowed():
    completion = ScriptedCompletion(responses=["Nadal."])
    composition = await compose(
        "Which players are from Spain?",
        [{"name": "Rafael Nadal"}, {"name": "Carlos Alcaraz"}],
        completion=completion,
        allow_llm=False,
    )
    assert composition.method == "canned"
    assert not composition.llm_failed
    assert "2 matching records" in composition.text
    assert completion.call_count == 0


@pytest.mark.asyncio
async def test_empty_rows_without_template_get_canned_sentence():
    composition = await compose("Which players are from Spain?", [])
    assert composition.method == "canned"
    assert composition.text in [s for group in CANNED_SENTENCES.values() for s in group]


def test_canned_text_is_stable_and_categorized():
    text = "Who won the tournament in Halle?"
    assert canned_text(text) == canned_text(text)
    assert canned_text(text) in CANNED_SENTENCES["tournament"]
    assert canned_text("How many aces does Isner have?") in CANNED_SENTENCES["statistics"]
    assert canned_text("Is tennis fun?") in CANNED_SENTENCES["generic"]


def test_canned_head_to_head_asks_for_two_players():
    assert canned_text("Djokovic head to head") == NEED_TWO_PLAYERS
    assert canned_text("Djokovic vs Nadal head to head") != NEED_TWO_PLAYERS


# ============================================================================
# ANSWER
# ============================================================================


def test_answer_serialization():
    data = ResultSet(
        rows=({"name": "Carlos Alcaraz", "ranking": 1, "ranking_date": date(2023, 9, 4)},),
        source="live",
        data_source="sportsradar",
    )
    answer = Answer(
        text="Carlos Alcaraz is ranked #1.",
        data=data,
        query_type="live_data",
        confidence=0.5,
        data_source="sportsradar",
        question="Who is ranked number 1?",
    )
    payload = answer.to_dict()
    assert payload["answer"] == "Carlos Alcaraz is ranked #1."
    assert payload["data"] == [{"name": "Carlos Alcaraz", "ranking": 1, "ranking_date": "2023-09-04"}]
    assert payload["queryType"] == "live_data"
    assert payload["dataSource"] == "sportsradar"
    assert payload["cached"] is False

    markdown = answer.to_markdown()
    assert markdown.startswith("Carlos Alcaraz is ranked #1.\n")
    assert "| name" in markdown
    assert "live_data | sportsradar | confidence 50%" in markdown
