"""Pydantic models describing transcript analysis requests and results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from scholar.models.base import ScholarBaseModel
from scholar.models.ids import CacheKey, CategoryId, VideoId

ANALYSIS_VERSION = "1.0.0"


class AnalysisDepth(str, Enum):
    """Caller-selected trade-off between thoroughness and cost."""

    QUICK = "quick"
    BASIC = "basic"
    STANDARD = "standard"
    DEEP = "deep"


class ContentType(str, Enum):
    """Educational format of a video."""

    TUTORIAL = "tutorial"
    EXPLANATION = "explanation"
    DEMONSTRATION = "demonstration"
    DISCUSSION = "discussion"
    LECTURE = "lecture"
    REVIEW = "review"


class Difficulty(str, Enum):
    """Expected audience level."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class AnalysisModel(ScholarBaseModel):
    """Base for analysis payloads, serialised with camelCase keys."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class CategoryRef(AnalysisModel):
    """Minimal category projection consumed by the analyzer."""

    id: CategoryId
    name: str
    keywords: List[str] = Field(default_factory=list)


class AnalysisOptions(AnalysisModel):
    """Optional switches for a single analysis request."""

    include_insights: bool = True
    include_category_analysis: bool = True
    max_cost: Optional[float] = Field(default=None, ge=0.0)


class AnalysisRequest(AnalysisModel):
    """Caller-constructed input to the analysis orchestrator."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    video_id: VideoId
    transcript: str
    categories: List[CategoryRef] = Field(default_factory=list)
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class ContentQuality(AnalysisModel):
    """Quality sub-scores, each on a 0-100 scale."""

    clarity: int = Field(ge=0, le=100)
    completeness: int = Field(ge=0, le=100)
    practical_value: int = Field(ge=0, le=100)


class VideoInsights(AnalysisModel):
    """Learning-oriented description of a video's content."""

    content_type: ContentType
    difficulty: Difficulty
    estimated_learning_time: int = Field(ge=0)
    prerequisites: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    content_quality: ContentQuality
    main_topics: List[str] = Field(default_factory=list)
    technical_terms: List[str] = Field(default_factory=list)
    summary: str = ""
    best_for: List[str] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    analysis_version: str = ANALYSIS_VERSION
    model_used: str
    tokens_used: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0.0)


class CategoryMatch(AnalysisModel):
    """Relevance of one category to the analysed content."""

    category_id: CategoryId
    relevance_score: float = Field(ge=0, le=100)
    matched_keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0, le=100)


class SuggestedCategory(AnalysisModel):
    """Category the model proposes when existing ones fit poorly."""

    name: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0, ge=0, le=100)


class CategoryAnalysis(AnalysisModel):
    """Category matches for a single analysis request."""

    category_matches: List[CategoryMatch] = Field(default_factory=list)
    suggested_categories: List[SuggestedCategory] = Field(default_factory=list)
    auto_assign_threshold: int = Field(default=70, ge=0, le=100)

    @field_validator("category_matches")
    @classmethod
    def _unique_categories(cls, matches: List[CategoryMatch]) -> List[CategoryMatch]:
        seen: set[str] = set()
        for match in matches:
            if match.category_id in seen:
                raise ValueError(f"Duplicate category match for {match.category_id!r}")
            seen.add(match.category_id)
        return matches


class AnalysisResult(AnalysisModel):
    """Terminal artefact of the analysis orchestrator."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    video_id: VideoId
    relevance_scores: Dict[CategoryId, int]
    insights: VideoInsights
    category_analysis: CategoryAnalysis
    processing_time: float = Field(ge=0.0)
    timestamp: datetime
    cache_key: CacheKey


class CacheEntry(ScholarBaseModel):
    """Analysis result held by a cache tier, with expiry in epoch seconds."""

    data: AnalysisResult
    timestamp: float
    expiry: float
    hits: int = Field(default=0, ge=0)

    def is_expired(self, now: float) -> bool:
        """Return ``True`` once ``now`` passes the entry's expiry."""

        return now > self.expiry


__all__ = [
    "ANALYSIS_VERSION",
    "AnalysisDepth",
    "AnalysisModel",
    "AnalysisOptions",
    "AnalysisRequest",
    "AnalysisResult",
    "CacheEntry",
    "CategoryAnalysis",
    "CategoryMatch",
    "CategoryRef",
    "ContentQuality",
    "ContentType",
    "Difficulty",
    "SuggestedCategory",
    "VideoInsights",
]
