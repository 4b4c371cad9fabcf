from __future__ import annotations

import asyncio
import json

import pytest
from rich.console import Console

from scholar.config.settings import Settings
from scholar.models.analysis import (
    AnalysisDepth,
    AnalysisOptions,
    AnalysisRequest,
    CategoryAnalysis,
    CategoryMatch,
    CategoryRef,
    ContentType,
    Difficulty,
)
from scholar.models.ids import CategoryId, VideoId
from scholar.models.result import Analyzed, FellBack, unwrap
from scholar.services.analysis import AnalysisOrchestrator
from scholar.services.analyzer import SAMPLE_SEPARATOR, TranscriptAnalyzer
from scholar.services.cache import CACHE_STRATEGY, AnalysisCache, MemoryCacheTier
from scholar.services.gateway import CostLimitExceededError
from scholar.services.scoring import RelevanceScorer, ScoreScale
from support import INSIGHTS_REPLY, FakeCompletionClient, make_gateway

TRANSCRIPT = (
    "Welcome to this Python tutorial. First, we install Python and open the REPL. "
    "Next, we create variables and print them. Let me explain how loops work with an example. "
) * 4


def _categories() -> list[CategoryRef]:
    return [
        CategoryRef(id=CategoryId("cat-a"), name="Python Basics", keywords=["python", "variables"]),
        CategoryRef(id=CategoryId("cat-b"), name="Cooking", keywords=["recipe"]),
    ]


def _orchestrator(client: FakeCompletionClient, console: Console, settings: Settings) -> AnalysisOrchestrator:
    gateway = make_gateway(client, console, settings)
    cache = AnalysisCache(settings=settings, console=console, rng=lambda: 1.0)
    return AnalysisOrchestrator(gateway=gateway, cache=cache, console=console)


def _match(category_id: str, relevance: float, confidence: float) -> CategoryMatch:
    return CategoryMatch(category_id=CategoryId(category_id), relevance_score=relevance, confidence=confidence)


# --------------------------------------------------------------------------- #
# Transcript analyzer                                                         #
# --------------------------------------------------------------------------- #


def test_basic_insights_use_model_reply(console: Console, settings: Settings) -> None:
    transcript = ("Python tutorial step " * 40)[:600]
    client = FakeCompletionClient()
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_content_insights(transcript, AnalysisDepth.BASIC))

    assert isinstance(outcome, Analyzed)
    insights = outcome.value
    assert insights.content_type is ContentType.TUTORIAL
    assert insights.difficulty is Difficulty.BEGINNER
    assert len(insights.main_topics) >= 1
    assert 60 <= insights.confidence <= 95
    assert insights.model_used == "gpt-4o-mini"
    assert insights.tokens_used == 200
    assert client.calls[0]["response_format"] == "json"
    assert client.calls[0]["max_tokens"] == 500


def test_deep_insights_route_to_the_premium_model(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_content_insights(TRANSCRIPT, AnalysisDepth.DEEP))

    assert unwrap(outcome).model_used == "gpt-4o"
    assert client.calls[0]["max_tokens"] == 800


def test_category_relevance_falls_back_when_the_model_fails(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(error=ConnectionError("unreachable"))
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_category_relevance(TRANSCRIPT, _categories(), AnalysisDepth.STANDARD))

    assert isinstance(outcome, FellBack)
    assert outcome.ok is False
    assert "Network error" in outcome.error
    matches = outcome.fallback_value.category_matches
    assert [match.category_id for match in matches] == ["cat-a", "cat-b"]
    assert all(match.relevance_score == 50 and match.confidence == 30 for match in matches)


def test_malformed_insights_reply_falls_back_to_heuristics(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(lambda _messages: json.dumps({"contentType": "podcast"}))
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_content_insights(TRANSCRIPT, AnalysisDepth.STANDARD))

    assert isinstance(outcome, FellBack)
    insights = outcome.fallback_value
    assert insights.model_used == "fallback"
    assert insights.confidence == 40
    assert insights.content_type is ContentType.EXPLANATION
    assert insights.difficulty is Difficulty.INTERMEDIATE


def test_out_of_range_category_scores_are_clamped(console: Console, settings: Settings) -> None:
    reply = {
        "categoryMatches": [
            {"categoryId": "cat-a", "relevanceScore": 105, "confidence": 90, "matchedKeywords": None},
            {"categoryId": "cat-b", "relevanceScore": 80, "confidence": -5},
        ],
        "suggestedCategories": [{"name": "Scripting", "confidence": 120.5}],
    }
    client = FakeCompletionClient(lambda _messages: json.dumps(reply))
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_category_relevance(TRANSCRIPT, _categories(), AnalysisDepth.STANDARD))

    assert isinstance(outcome, Analyzed)
    scores = {match.category_id: (match.relevance_score, match.confidence) for match in outcome.value.category_matches}
    assert scores == {"cat-a": (100, 90), "cat-b": (80, 0)}
    assert outcome.value.category_matches[0].matched_keywords == []
    assert outcome.value.suggested_categories[0].confidence == 100


def test_fractional_learning_time_is_rounded(console: Console, settings: Settings) -> None:
    reply = dict(INSIGHTS_REPLY, estimatedLearningTime=12.5, summary=None)
    reply["contentQuality"] = {"clarity": 85.4, "completeness": 130, "practicalValue": "75"}
    del reply["bestFor"]
    client = FakeCompletionClient(lambda _messages: json.dumps(reply))
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_content_insights(TRANSCRIPT, AnalysisDepth.STANDARD))

    assert isinstance(outcome, Analyzed)
    insights = outcome.value
    assert insights.estimated_learning_time == 13
    assert insights.content_type is ContentType.TUTORIAL
    assert (insights.content_quality.clarity, insights.content_quality.completeness) == (85, 100)
    assert insights.content_quality.practical_value == 75
    assert insights.summary == ""
    assert insights.best_for == []


def test_category_prompt_lists_every_category(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    analyzer = TranscriptAnalyzer(gateway=make_gateway(client, console, settings), console=console)

    outcome = asyncio.run(analyzer.analyze_category_relevance(TRANSCRIPT, _categories(), AnalysisDepth.QUICK))

    assert isinstance(outcome, Analyzed)
    prompt = client.calls[0]["messages"][-1].content
    assert '- ID: cat-a, Name: "Python Basics", Keywords: [python, variables]' in prompt
    assert {match.category_id for match in outcome.value.category_matches} == {"cat-a", "cat-b"}


def test_prepare_transcript_samples_long_input() -> None:
    transcript = "".join(chr(ord("a") + index % 26) for index in range(3000))

    short = TranscriptAnalyzer.prepare_transcript_for_analysis("short text", AnalysisDepth.QUICK)
    sampled = TranscriptAnalyzer.prepare_transcript_for_analysis(transcript, AnalysisDepth.QUICK)

    assert short == "short text"
    parts = sampled.split(SAMPLE_SEPARATOR)
    assert len(parts) == 3
    assert parts[0] == transcript[:166]
    assert parts[1] == transcript[1200:1366]
    assert parts[2] == transcript[-166:]


# --------------------------------------------------------------------------- #
# Relevance scorer                                                            #
# --------------------------------------------------------------------------- #


def test_scores_scale_relevance_by_confidence() -> None:
    scorer = RelevanceScorer()
    analysis = CategoryAnalysis(category_matches=[_match("a", 80, 90), _match("b", 45, 50), _match("c", 0, 100)])

    assert scorer.calculate_relevance_scores(analysis) == {"a": 72, "b": 23, "c": 0}


def test_scale_clamps_scores_per_scorer() -> None:
    scorer = RelevanceScorer()
    other = RelevanceScorer()
    scorer.update_strategy(scale=ScoreScale(max=80))
    analysis = CategoryAnalysis(category_matches=[_match("a", 100, 100)])

    assert scorer.calculate_relevance_scores(analysis) == {"a": 80}
    assert other.calculate_relevance_scores(analysis) == {"a": 100}


def test_overall_confidence_bounds() -> None:
    scorer = RelevanceScorer()

    assert scorer.calculate_overall_confidence(CategoryAnalysis()) == 30
    low = CategoryAnalysis(category_matches=[_match("a", 10, 20)])
    assert scorer.calculate_overall_confidence(low) == 40
    strong = CategoryAnalysis(
        category_matches=[_match("a", 90, 90), _match("b", 80, 90), _match("c", 75, 90), _match("d", 71, 90)]
    )
    assert scorer.calculate_overall_confidence(strong) == 95


def test_top_categories_rank_and_label_confidence() -> None:
    scorer = RelevanceScorer()
    scores = {CategoryId("a"): 40, CategoryId("b"): 85, CategoryId("c"): 70}

    top = scorer.get_top_categories(scores, limit=2)

    assert [(item.category_id, item.confidence) for item in top] == [("b", 90), ("c", 90)]
    assert scorer.get_top_categories(scores)[-1].confidence == 60
    assert scorer.calculate_weighted_score(100, 50, 0) == pytest.approx(60.0)


# --------------------------------------------------------------------------- #
# Analysis orchestrator                                                       #
# --------------------------------------------------------------------------- #


def test_second_request_is_served_from_cache(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(video_id=VideoId("dQw4w9WgXcQ"), transcript=TRANSCRIPT, categories=_categories())

    first = asyncio.run(orchestrator.analyze_video(request))
    calls_after_first = len(client.calls)
    reordered = request.model_copy(update={"categories": list(reversed(_categories()))})
    second = asyncio.run(orchestrator.analyze_video(reordered))

    assert calls_after_first == 2
    assert len(client.calls) == calls_after_first
    assert second == first
    assert first.relevance_scores == {"cat-a": 72, "cat-b": 72}
    assert first.cache_key.startswith("analysis:dQw4w9WgXcQ:")


def test_insights_and_categories_run_concurrently(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(delay=0.05)
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(video_id=VideoId("dQw4w9WgXcQ"), transcript=TRANSCRIPT, categories=_categories())

    result = asyncio.run(orchestrator.analyze_video(request))

    assert len(client.calls) == 2
    assert client.peak_in_flight == 2
    assert client.in_flight == 0
    assert result.insights.model_used == "gpt-4o-mini"


def test_fallback_analysis_scores_fifteen(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient(error=TimeoutError())
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(video_id=VideoId("abcdefghijk"), transcript=TRANSCRIPT, categories=_categories())

    result = asyncio.run(orchestrator.analyze_video(request))

    assert result.relevance_scores == {"cat-a": 15, "cat-b": 15}
    assert result.insights.model_used == "fallback"


def test_max_cost_stops_before_any_model_call(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(
        video_id=VideoId("abcdefghijk"),
        transcript=TRANSCRIPT,
        categories=_categories(),
        options=AnalysisOptions(max_cost=0.00001),
    )

    with pytest.raises(CostLimitExceededError):
        asyncio.run(orchestrator.analyze_video(request))
    assert client.calls == []


def test_disabled_insights_yield_placeholder(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(
        video_id=VideoId("abcdefghijk"),
        transcript=TRANSCRIPT,
        categories=_categories(),
        options=AnalysisOptions(include_insights=False),
    )

    result = asyncio.run(orchestrator.analyze_video(request))

    assert len(client.calls) == 1
    assert result.insights.model_used == "none"
    assert result.insights.confidence == 0
    assert set(result.relevance_scores) == {"cat-a", "cat-b"}


def test_category_only_results_use_the_shorter_lifetime(console: Console, settings: Settings) -> None:
    memory = MemoryCacheTier()
    cache = AnalysisCache(settings=settings, console=console, memory=memory, rng=lambda: 1.0)
    orchestrator = AnalysisOrchestrator(
        gateway=make_gateway(FakeCompletionClient(), console, settings), cache=cache, console=console
    )
    request = AnalysisRequest(
        video_id=VideoId("abcdefghijk"),
        transcript=TRANSCRIPT,
        categories=_categories(),
        options=AnalysisOptions(include_insights=False),
    )

    asyncio.run(orchestrator.analyze_video(request))

    (entry,) = memory.entries()
    assert entry.expiry - entry.timestamp == CACHE_STRATEGY["category_matches"]


def test_invalidate_cache_forces_fresh_analysis(console: Console, settings: Settings) -> None:
    client = FakeCompletionClient()
    orchestrator = _orchestrator(client, console, settings)
    request = AnalysisRequest(video_id=VideoId("dQw4w9WgXcQ"), transcript=TRANSCRIPT, categories=_categories())

    asyncio.run(orchestrator.analyze_video(request))
    removed = asyncio.run(orchestrator.invalidate_cache(VideoId("dQw4w9WgXcQ")))
    cached = asyncio.run(
        orchestrator.get_cached_analysis(VideoId("dQw4w9WgXcQ"), ["cat-a", "cat-b"], AnalysisDepth.STANDARD)
    )
    asyncio.run(orchestrator.analyze_video(request))

    assert removed == 1
    assert cached is None
    assert len(client.calls) == 4
    assert orchestrator.get_cache_stats().memory_entries == 1
