"""Relevance scoring over category analysis results."""

from __future__ import annotations

import math
import time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scholar.models.analysis import CategoryAnalysis
from scholar.models.ids import CategoryId

NO_MATCH_CONFIDENCE = 30
MIN_OVERALL_CONFIDENCE = 40
MAX_OVERALL_CONFIDENCE = 95
MATCH_CONFIDENCE_BOOST = 5
MAX_CONFIDENCE_BOOST = 15


class ChunkWeights(BaseModel):
    """Weights for intro, body, and conclusion chunk scores."""

    first: float = 0.4
    middle: float = 0.4
    last: float = 0.2

    model_config = ConfigDict(extra="forbid")


class ScoreScale(BaseModel):
    min: int = 0
    max: int = 100
    threshold: int = 70

    model_config = ConfigDict(extra="forbid")


class RelevanceStrategy(BaseModel):
    """Scoring parameters owned by a single :class:`RelevanceScorer`."""

    method: str = "weighted-chunks"
    chunk_scoring: ChunkWeights = Field(default_factory=ChunkWeights)
    scale: ScoreScale = Field(default_factory=ScoreScale)

    model_config = ConfigDict(extra="forbid")


class RelevanceScore(BaseModel):
    category_id: CategoryId
    score: int
    confidence: int
    matched_keywords: List[str] = Field(default_factory=list)


class ScoringResult(BaseModel):
    """Scores for one analysis with the overall confidence in them."""

    scores: Dict[CategoryId, int]
    category_analysis: CategoryAnalysis
    confidence: float
    processing_time: float


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class RelevanceScorer:
    """Turn category matches into bounded 0-100 relevance scores."""

    def __init__(self, strategy: Optional[RelevanceStrategy] = None) -> None:
        self._strategy = strategy or RelevanceStrategy()

    def calculate_relevance_scores(self, analysis: CategoryAnalysis) -> Dict[CategoryId, int]:
        """Scale each match's relevance by its confidence, clamped to the score range."""

        scale = self._strategy.scale
        scores: Dict[CategoryId, int] = {}
        for match in analysis.category_matches:
            normalized = min(scale.max, max(scale.min, match.relevance_score * (match.confidence / 100)))
            scores[match.category_id] = round_half_up(normalized)
        return scores

    def score_content(self, analysis: CategoryAnalysis) -> ScoringResult:
        """Score an analysis and report overall confidence and elapsed time."""

        started = time.perf_counter()
        scores = self.calculate_relevance_scores(analysis)
        return ScoringResult(
            scores=scores,
            category_analysis=analysis,
            confidence=self.calculate_overall_confidence(analysis),
            processing_time=time.perf_counter() - started,
        )

    def calculate_overall_confidence(self, analysis: CategoryAnalysis) -> float:
        """Average match confidence plus a boost for matches above the threshold.

        Returns 30 when there are no matches; otherwise the value is clamped to [40, 95].
        """

        matches = analysis.category_matches
        if not matches:
            return NO_MATCH_CONFIDENCE

        average = sum(match.confidence for match in matches) / len(matches)
        threshold = self._strategy.scale.threshold
        relevant = sum(1 for match in matches if match.relevance_score >= threshold)
        boost = min(MAX_CONFIDENCE_BOOST, relevant * MATCH_CONFIDENCE_BOOST)
        return min(MAX_OVERALL_CONFIDENCE, max(MIN_OVERALL_CONFIDENCE, average + boost))

    def calculate_weighted_score(self, first: float, middle: float, last: float) -> float:
        weights = self._strategy.chunk_scoring
        return first * weights.first + middle * weights.middle + last * weights.last

    def is_relevant(self, score: float) -> bool:
        return score >= self._strategy.scale.threshold

    def get_relevance_threshold(self) -> int:
        return self._strategy.scale.threshold

    def get_top_categories(self, scores: Dict[CategoryId, int], limit: int = 5) -> List[RelevanceScore]:
        """Return the highest scores first; confidence is 90 at or above the threshold, else 60."""

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        return [
            RelevanceScore(
                category_id=category_id,
                score=score,
                confidence=90 if self.is_relevant(score) else 60,
            )
            for category_id, score in ranked[:limit]
        ]

    def get_strategy(self) -> RelevanceStrategy:
        return self._strategy.model_copy(deep=True)

    def update_strategy(
        self,
        *,
        chunk_scoring: Optional[ChunkWeights] = None,
        scale: Optional[ScoreScale] = None,
    ) -> RelevanceStrategy:
        """Replace parts of this scorer's strategy; other scorers are unaffected."""

        updates: Dict[str, BaseModel] = {}
        if chunk_scoring is not None:
            updates["chunk_scoring"] = chunk_scoring
        if scale is not None:
            updates["scale"] = scale
        self._strategy = self._strategy.model_copy(update=updates)
        return self.get_strategy()


__all__ = [
    "ChunkWeights",
    "RelevanceScore",
    "RelevanceScorer",
    "RelevanceStrategy",
    "ScoreScale",
    "ScoringResult",
    "round_half_up",
]
