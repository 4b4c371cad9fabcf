"""Analysis orchestration: cache lookup, concurrent analysis, scoring, and storage."""

from __future__ import annotations

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set

from rich.console import Console

from scholar.models.analysis import (
    ANALYSIS_VERSION,
    AnalysisDepth,
    AnalysisRequest,
    AnalysisResult,
    CategoryAnalysis,
    ContentQuality,
    ContentType,
    Difficulty,
    VideoInsights,
)
from scholar.models.ids import CacheKey, CategoryId, VideoId
from scholar.models.result import AnalysisOutcome, Analyzed, unwrap
from scholar.services.analyzer import AUTO_ASSIGN_THRESHOLD, TranscriptAnalyzer
from scholar.services.cache import AnalysisCache, CacheStats
from scholar.services.gateway import CostLimitExceededError, ModelGateway
from scholar.services.scoring import ChunkWeights, RelevanceScorer, RelevanceStrategy, ScoreScale

ESTIMATE_MODEL_NAME = "gpt-4o-mini"
DEEP_OUTPUT_TOKENS = 800
DEFAULT_OUTPUT_TOKENS = 500


def empty_insights() -> VideoInsights:
    """Placeholder used when insight analysis is switched off for a request."""

    return VideoInsights(
        content_type=ContentType.EXPLANATION,
        difficulty=Difficulty.INTERMEDIATE,
        estimated_learning_time=15,
        prerequisites=[],
        learning_objectives=[],
        content_quality=ContentQuality(clarity=70, completeness=70, practical_value=70),
        main_topics=[],
        technical_terms=[],
        summary="Content analysis not performed.",
        best_for=[],
        confidence=0,
        analysis_version=ANALYSIS_VERSION,
        model_used="none",
        tokens_used=0,
        estimated_cost=0.0,
    )


def empty_category_analysis() -> CategoryAnalysis:
    return CategoryAnalysis(category_matches=[], suggested_categories=[], auto_assign_threshold=AUTO_ASSIGN_THRESHOLD)


class AnalysisOrchestrator:
    """Produce :class:`AnalysisResult` values, reusing cached results where possible."""

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        cache: AnalysisCache,
        analyzer: Optional[TranscriptAnalyzer] = None,
        scorer: Optional[RelevanceScorer] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._console = console or Console()
        self._gateway = gateway
        self._cache = cache
        self._analyzer = analyzer or TranscriptAnalyzer(gateway=gateway, console=self._console)
        self._scorer = scorer or RelevanceScorer()
        self._keys_by_video: Dict[VideoId, Set[CacheKey]] = {}

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def analyze_video(self, request: AnalysisRequest) -> AnalysisResult:
        """Analyse a video transcript against its categories.

        Parameters
        ----------
        request:
            Video, transcript, categories, depth, and per-request switches.

        Returns
        -------
        AnalysisResult
            The cached result verbatim on a hit; otherwise a freshly scored result that is
            written to the cache before being returned.

        Raises
        ------
        CostLimitExceededError
            If ``request.options.max_cost`` is set and the estimated cost exceeds it.
        """

        started = time.perf_counter()
        cache_key = self._cache.generate_cache_key(
            request.video_id,
            [category.id for category in request.categories],
            request.depth,
        )

        cached = await self._cache.get(cache_key)
        if cached is not None:
            self._console.log(f"Cache hit for video {request.video_id}")
            return cached

        max_cost = request.options.max_cost
        if max_cost is not None:
            estimated = self.estimate_cost(request)
            if estimated > max_cost:
                raise CostLimitExceededError(
                    f"Estimated analysis cost ${estimated:.4f} exceeds the request limit of ${max_cost:.4f}",
                    estimated_cost=estimated,
                )

        self._console.log(f"[blue]Analyzing video {request.video_id} (depth={request.depth.value})[/blue]")
        transcript = self._analyzer.prepare_transcript_for_analysis(request.transcript, request.depth)

        insights_outcome, category_outcome = await asyncio.gather(
            self._insights_branch(request, transcript),
            self._category_branch(request, transcript),
        )
        insights = unwrap(insights_outcome)
        category_analysis = unwrap(category_outcome)

        result = AnalysisResult(
            video_id=request.video_id,
            relevance_scores=self._scorer.calculate_relevance_scores(category_analysis),
            insights=insights,
            category_analysis=category_analysis,
            processing_time=time.perf_counter() - started,
            timestamp=datetime.now(timezone.utc),
            cache_key=cache_key,
        )

        await self._cache.set(cache_key, result, kind=_cache_kind(request))
        self._keys_by_video.setdefault(request.video_id, set()).add(cache_key)
        return result

    async def get_cached_analysis(
        self,
        video_id: VideoId,
        category_ids: Iterable[CategoryId],
        depth: AnalysisDepth,
    ) -> Optional[AnalysisResult]:
        return await self._cache.get(self._cache.generate_cache_key(video_id, category_ids, depth))

    async def invalidate_cache(self, video_id: VideoId) -> int:
        """Drop every cached result this orchestrator stored for ``video_id``."""

        keys = self._keys_by_video.pop(video_id, set())
        for key in keys:
            await self._cache.invalidate(key)
        self._console.log(f"Invalidated {len(keys)} cached analyses for video {video_id}")
        return len(keys)

    def get_cache_stats(self) -> CacheStats:
        return self._cache.get_stats()

    def estimate_cost(self, request: AnalysisRequest) -> float:
        """Price the prepared transcript plus the expected reply at ``gpt-4o-mini`` rates."""

        transcript = self._analyzer.prepare_transcript_for_analysis(request.transcript, request.depth)
        input_tokens = math.ceil(len(transcript) / 4)
        output_tokens = DEEP_OUTPUT_TOKENS if request.depth is AnalysisDepth.DEEP else DEFAULT_OUTPUT_TOKENS
        return self._gateway.estimate_cost(input_tokens, output_tokens, ESTIMATE_MODEL_NAME)

    def is_available(self) -> bool:
        return self._gateway.is_ready()

    def get_scoring_strategy(self) -> RelevanceStrategy:
        return self._scorer.get_strategy()

    def update_scoring_strategy(
        self,
        *,
        chunk_scoring: Optional[ChunkWeights] = None,
        scale: Optional[ScoreScale] = None,
    ) -> RelevanceStrategy:
        return self._scorer.update_strategy(chunk_scoring=chunk_scoring, scale=scale)

    # ------------------------------------------------------------------ #
    # Concurrent branches                                                 #
    # ------------------------------------------------------------------ #
    async def _insights_branch(self, request: AnalysisRequest, transcript: str) -> AnalysisOutcome[VideoInsights]:
        if not request.options.include_insights:
            return Analyzed(empty_insights())
        return await self._analyzer.analyze_content_insights(transcript, request.depth)

    async def _category_branch(
        self,
        request: AnalysisRequest,
        transcript: str,
    ) -> AnalysisOutcome[CategoryAnalysis]:
        if not request.options.include_category_analysis:
            return Analyzed(empty_category_analysis())
        return await self._analyzer.analyze_category_relevance(transcript, request.categories, request.depth)


def _cache_kind(request: AnalysisRequest) -> str:
    if request.options.include_insights:
        return "content_insights"
    if request.options.include_category_analysis:
        return "category_matches"
    return "relevance_scores"


__all__ = [
    "AnalysisOrchestrator",
    "empty_category_analysis",
    "empty_insights",
]
