from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from rich.console import Console

from scholar.config.settings import ModelCostLimits, Settings
from scholar.models.analysis import AnalysisResult
from scholar.models.ids import CacheKey, VideoId
from scholar.services.analysis import empty_category_analysis, empty_insights
from scholar.services.gateway import ChatMessage, CompletionReply, ModelGateway, UsageTracker

INSIGHTS_REPLY: Dict[str, object] = {
    "contentType": "tutorial",
    "difficulty": "beginner",
    "estimatedLearningTime": 12,
    "prerequisites": ["Basic computer literacy"],
    "learningObjectives": ["Write a first script", "Use variables"],
    "contentQuality": {"clarity": 85, "completeness": 75, "practicalValue": 90},
    "mainTopics": ["Python", "Variables", "Loops"],
    "technicalTerms": ["REPL"],
    "summary": "A gentle introduction to Python.",
    "bestFor": ["Beginners"],
}


class FakeCompletionClient:
    """Completion client that answers from a responder and records every call.

    A ``delay`` keeps each call in flight for that long so tests can observe overlap.
    """

    def __init__(
        self,
        responder: Optional[Callable[[Sequence[ChatMessage]], str]] = None,
        *,
        error: Optional[Exception] = None,
        prompt_tokens: int = 120,
        completion_tokens: int = 80,
        delay: float = 0.0,
    ) -> None:
        self.calls: List[Dict[str, object]] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self._delay = delay
        self._responder = responder or default_responder
        self._error = error
        self._prompt_tokens = prompt_tokens
        self._completion_tokens = completion_tokens

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: str,
    ) -> CompletionReply:
        self.calls.append(
            {
                "messages": list(messages),
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "response_format": response_format,
            }
        )
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            if self._error is not None:
                raise self._error
            return CompletionReply(
                content=self._responder(messages),
                prompt_tokens=self._prompt_tokens,
                completion_tokens=self._completion_tokens,
            )
        finally:
            self.in_flight -= 1


def default_responder(messages: Sequence[ChatMessage]) -> str:
    system = messages[0].content
    if "categorization" in system:
        return json.dumps(category_reply_for(messages[-1].content))
    return json.dumps(INSIGHTS_REPLY)


def category_reply_for(prompt: str) -> Dict[str, object]:
    """Score every category listed in the prompt at 80 with confidence 90."""

    matches = []
    for line in prompt.splitlines():
        if line.startswith("- ID: "):
            category_id = line[len("- ID: ") :].split(",", 1)[0]
            matches.append(
                {"categoryId": category_id, "relevanceScore": 80, "matchedKeywords": ["python"], "confidence": 90}
            )
    return {"categoryMatches": matches, "suggestedCategories": []}


def make_gateway(
    client: FakeCompletionClient,
    console: Console,
    settings: Settings,
    *,
    tracker: Optional[UsageTracker] = None,
    limits: Optional[ModelCostLimits] = None,
) -> ModelGateway:
    return ModelGateway(
        settings=settings,
        console=console,
        client=client,
        usage_tracker=tracker or UsageTracker(console=console),
        limits=limits or ModelCostLimits(),
    )


def make_result(video_id: str = "dQw4w9WgXcQ", cache_key: str = "analysis:test") -> AnalysisResult:
    return AnalysisResult(
        video_id=VideoId(video_id),
        relevance_scores={},
        insights=empty_insights(),
        category_analysis=empty_category_analysis(),
        processing_time=0.01,
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
        cache_key=CacheKey(cache_key),
    )


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
