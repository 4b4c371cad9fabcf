"""Model-backed transcript analysis with heuristic fallbacks."""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

from pydantic import ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel
from rich.console import Console

from scholar.models.analysis import (
    AnalysisDepth,
    AnalysisModel,
    CategoryAnalysis,
    CategoryMatch,
    CategoryRef,
    ContentType,
    Difficulty,
    SuggestedCategory,
    VideoInsights,
)
from scholar.models.ids import CategoryId
from scholar.models.result import AnalysisOutcome, Analyzed, FellBack
from scholar.services.gateway import ChatMessage, ModelGateway, TaskTier, parse_json_content
from scholar.services.insights import ContentInsightsGenerator, InsightOverrides

MAX_TRANSCRIPT_CHARS: Dict[AnalysisDepth, int] = {
    AnalysisDepth.QUICK: 500,
    AnalysisDepth.BASIC: 2000,
    AnalysisDepth.STANDARD: 8000,
    AnalysisDepth.DEEP: 15000,
}
SAMPLE_SEPARATOR = "\n\n[...]\n\n"
MIDDLE_SAMPLE_OFFSET = 0.4

AUTO_ASSIGN_THRESHOLD = 70
FALLBACK_MODEL_NAME = "fallback"
FALLBACK_INSIGHTS_CONFIDENCE = 40
FALLBACK_RELEVANCE_SCORE = 50
FALLBACK_CATEGORY_CONFIDENCE = 30

INSIGHTS_SYSTEM_PROMPT = """You are an expert educational content analyzer. Analyze video transcripts to extract learning insights.

Your task is to analyze educational video content and provide structured insights in JSON format.

Response format:
{
  "contentType": "tutorial|explanation|demonstration|discussion|lecture|review",
  "difficulty": "beginner|intermediate|advanced",
  "estimatedLearningTime": number (minutes),
  "prerequisites": ["prerequisite1", "prerequisite2"],
  "learningObjectives": ["objective1", "objective2"],
  "contentQuality": {
    "clarity": number (0-100),
    "completeness": number (0-100),
    "practicalValue": number (0-100)
  },
  "mainTopics": ["topic1", "topic2", "topic3"],
  "technicalTerms": ["term1", "term2"],
  "summary": "2-3 sentence overview",
  "bestFor": ["audience1", "audience2"]
}

Focus on practical learning value and be concise but accurate."""

CATEGORY_SYSTEM_PROMPT = """You are an expert content categorization system. Analyze video transcripts to determine category relevance.

Your task is to match video content to user-defined learning categories and suggest new categories if needed.

Response format:
{
  "categoryMatches": [
    {
      "categoryId": "string",
      "relevanceScore": number (0-100),
      "matchedKeywords": ["keyword1", "keyword2"],
      "confidence": number (0-100)
    }
  ],
  "suggestedCategories": [
    {
      "name": "string",
      "description": "string",
      "keywords": ["keyword1", "keyword2"],
      "confidence": number (0-100)
    }
  ]
}

Use a 0-100 relevance scale where 70+ indicates strong relevance."""


class _ReplyModel(AnalysisModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


def _as_number(value: object) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def clamp_score(value: object) -> object:
    """Bound a numeric reply score to 0-100; non-numbers are left for validation to reject."""

    number = _as_number(value)
    if number is None or math.isnan(number):
        return value
    return min(100.0, max(0.0, number))


def _whole_number(value: object) -> object:
    number = _as_number(value)
    if number is None or not math.isfinite(number):
        return value
    return max(0, math.floor(number + 0.5))


def _list_or_empty(value: object) -> object:
    return [] if value is None else value


class QualityReply(_ReplyModel):
    clarity: int = 70
    completeness: int = 70
    practical_value: int = 70

    @field_validator("clarity", "completeness", "practical_value", mode="before")
    @classmethod
    def _bound_quality(cls, value: object) -> object:
        return _whole_number(clamp_score(value))


class InsightsReply(_ReplyModel):
    """Shape of the JSON object returned for an insights request.

    Numbers are coerced rather than rejected: scores are clamped to 0-100, fractional
    minutes are rounded, and missing lists default to empty.
    """

    content_type: ContentType
    difficulty: Difficulty
    estimated_learning_time: int = 0
    prerequisites: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    content_quality: QualityReply = Field(default_factory=QualityReply)
    main_topics: List[str] = Field(default_factory=list)
    technical_terms: List[str] = Field(default_factory=list)
    summary: str = ""
    best_for: List[str] = Field(default_factory=list)

    @field_validator("estimated_learning_time", mode="before")
    @classmethod
    def _round_minutes(cls, value: object) -> object:
        return _whole_number(value)

    @field_validator(
        "prerequisites",
        "learning_objectives",
        "main_topics",
        "technical_terms",
        "best_for",
        mode="before",
    )
    @classmethod
    def _default_lists(cls, value: object) -> object:
        return _list_or_empty(value)

    @field_validator("content_quality", "summary", mode="before")
    @classmethod
    def _default_missing(cls, value: object, info: ValidationInfo) -> object:
        if value is None:
            return {} if info.field_name == "content_quality" else ""
        return value


class CategoryMatchReply(_ReplyModel):
    category_id: CategoryId
    relevance_score: float
    matched_keywords: List[str] = Field(default_factory=list)
    confidence: float

    @field_validator("category_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else value

    @field_validator("relevance_score", "confidence", mode="before")
    @classmethod
    def _bound_scores(cls, value: object) -> object:
        return clamp_score(value)

    @field_validator("matched_keywords", mode="before")
    @classmethod
    def _default_keywords(cls, value: object) -> object:
        return _list_or_empty(value)


class SuggestedCategoryReply(_ReplyModel):
    name: str
    description: str = ""
    keywords: List[str] = Field(default_factory=list)
    confidence: float = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def _bound_confidence(cls, value: object) -> object:
        return 0 if value is None else clamp_score(value)

    @field_validator("description", "keywords", mode="before")
    @classmethod
    def _default_missing(cls, value: object, info: ValidationInfo) -> object:
        if value is None:
            return "" if info.field_name == "description" else []
        return value


class CategoryReply(_ReplyModel):
    """Shape of the JSON object returned for a category relevance request."""

    category_matches: List[CategoryMatchReply] = Field(default_factory=list)
    suggested_categories: List[SuggestedCategoryReply] = Field(default_factory=list)

    @field_validator("category_matches", "suggested_categories", mode="before")
    @classmethod
    def _default_lists(cls, value: object) -> object:
        return _list_or_empty(value)

    def to_analysis(self) -> CategoryAnalysis:
        return CategoryAnalysis(
            category_matches=[CategoryMatch(**match.model_dump()) for match in self.category_matches],
            suggested_categories=[
                SuggestedCategory(**suggestion.model_dump()) for suggestion in self.suggested_categories
            ],
            auto_assign_threshold=AUTO_ASSIGN_THRESHOLD,
        )


class TranscriptAnalyzer:
    """Ask the model gateway for insights and category relevance, never raising on failure."""

    def __init__(
        self,
        *,
        gateway: ModelGateway,
        console: Optional[Console] = None,
        insights_generator: Optional[ContentInsightsGenerator] = None,
    ) -> None:
        self._gateway = gateway
        self._console = console or Console()
        self._insights = insights_generator or ContentInsightsGenerator()

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def analyze_content_insights(
        self,
        transcript: str,
        depth: AnalysisDepth,
    ) -> AnalysisOutcome[VideoInsights]:
        """Produce learning insights for a transcript.

        Parameters
        ----------
        transcript:
            Full transcript text; it is sampled down to the depth limit.
        depth:
            Analysis depth; ``deep`` uses the premium model and a larger reply budget.

        Returns
        -------
        AnalysisOutcome[VideoInsights]
            :class:`Analyzed` with model insights, or :class:`FellBack` carrying heuristic
            insights marked ``model_used="fallback"`` and the reason the model path failed.
        """

        task = TaskTier.COMPLEX_ANALYSIS if depth is AnalysisDepth.DEEP else TaskTier.CONTENT_INSIGHTS
        model = self._gateway.get_model_for_task(task)
        messages = [
            ChatMessage(role="system", content=INSIGHTS_SYSTEM_PROMPT),
            ChatMessage(role="user", content=self._insights_prompt(transcript, depth)),
        ]

        try:
            response = await self._gateway.make_request(
                messages,
                model=model,
                max_tokens=800 if depth is AnalysisDepth.DEEP else 500,
                temperature=0.3,
                response_format="json",
            )
            reply = InsightsReply.model_validate(parse_json_content(response.content))
        except Exception as exc:
            return self._fallback_insights(transcript, exc)

        insights = VideoInsights(
            **reply.model_dump(),
            confidence=calculate_insights_confidence(reply, len(transcript)),
            model_used=model,
            tokens_used=response.usage.total_tokens,
            estimated_cost=response.cost,
        )
        return Analyzed(insights)

    async def analyze_category_relevance(
        self,
        transcript: str,
        categories: Sequence[CategoryRef],
        depth: AnalysisDepth,
    ) -> AnalysisOutcome[CategoryAnalysis]:
        """Score how well the transcript fits each category.

        Parameters
        ----------
        transcript:
            Full transcript text; it is sampled down to the depth limit.
        categories:
            Categories to score.
        depth:
            Analysis depth controlling the sample size.

        Returns
        -------
        AnalysisOutcome[CategoryAnalysis]
            :class:`Analyzed` with model scores, or :class:`FellBack` where every category
            scores 50 with confidence 30.
        """

        model = self._gateway.get_model_for_task(TaskTier.RELEVANCE_SCORING)
        messages = [
            ChatMessage(role="system", content=CATEGORY_SYSTEM_PROMPT),
            ChatMessage(role="user", content=self._category_prompt(transcript, categories, depth)),
        ]

        try:
            response = await self._gateway.make_request(
                messages,
                model=model,
                max_tokens=400,
                temperature=0.2,
                response_format="json",
            )
            analysis = CategoryReply.model_validate(parse_json_content(response.content)).to_analysis()
        except Exception as exc:
            return self._fallback_categories(categories, exc)

        return Analyzed(analysis)

    @staticmethod
    def prepare_transcript_for_analysis(transcript: str, depth: AnalysisDepth) -> str:
        """Fit ``transcript`` to the depth limit, sampling start, middle, and end when too long."""

        max_length = MAX_TRANSCRIPT_CHARS.get(depth, MAX_TRANSCRIPT_CHARS[AnalysisDepth.BASIC])
        if len(transcript) <= max_length:
            return transcript

        chunk_size = max_length // 3
        start = transcript[:chunk_size]
        middle_start = int(len(transcript) * MIDDLE_SAMPLE_OFFSET)
        middle = transcript[middle_start : middle_start + chunk_size]
        end = transcript[-chunk_size:] if chunk_size else ""
        return SAMPLE_SEPARATOR.join([start, middle, end])

    # ------------------------------------------------------------------ #
    # Prompts and fallbacks                                               #
    # ------------------------------------------------------------------ #
    def _insights_prompt(self, transcript: str, depth: AnalysisDepth) -> str:
        return (
            "Analyze this educational video transcript and provide insights:\n\n"
            "TRANSCRIPT:\n"
            f"{self.prepare_transcript_for_analysis(transcript, depth)}\n\n"
            "Return structured JSON analysis focusing on educational value and learning outcomes."
        )

    def _category_prompt(self, transcript: str, categories: Sequence[CategoryRef], depth: AnalysisDepth) -> str:
        category_list = "\n".join(
            f'- ID: {category.id}, Name: "{category.name}", Keywords: [{", ".join(category.keywords)}]'
            for category in categories
        )
        return (
            "Analyze this transcript against these categories:\n\n"
            "CATEGORIES:\n"
            f"{category_list}\n\n"
            "TRANSCRIPT:\n"
            f"{self.prepare_transcript_for_analysis(transcript, depth)}\n\n"
            "Return relevance scores for each category and suggest new categories if content doesn't fit well."
        )

    def _fallback_insights(self, transcript: str, exc: BaseException) -> FellBack[VideoInsights]:
        self._console.log(f"[yellow]Content insights analysis failed, using fallback:[/yellow] {exc}")
        insights = self._insights.generate_insights(
            ContentType.EXPLANATION,
            Difficulty.INTERMEDIATE,
            transcript,
            InsightOverrides(model_used=FALLBACK_MODEL_NAME, confidence=FALLBACK_INSIGHTS_CONFIDENCE),
        )
        return FellBack(fallback_value=insights, error=str(exc))

    def _fallback_categories(
        self,
        categories: Sequence[CategoryRef],
        exc: BaseException,
    ) -> FellBack[CategoryAnalysis]:
        self._console.log(f"[yellow]Category relevance analysis failed, using fallback:[/yellow] {exc}")
        return FellBack(fallback_value=fallback_category_analysis(categories), error=str(exc))


def calculate_insights_confidence(reply: InsightsReply, transcript_length: int) -> int:
    """Adjust the base confidence of 80 for transcript length and reply completeness."""

    confidence = 80
    if transcript_length < 500:
        confidence -= 15
    elif transcript_length > 5000:
        confidence += 10

    if len(reply.main_topics) >= 3:
        confidence += 5
    if len(reply.learning_objectives) >= 2:
        confidence += 5
    if reply.prerequisites:
        confidence += 5
    return min(95, max(60, confidence))


def fallback_category_analysis(categories: Sequence[CategoryRef]) -> CategoryAnalysis:
    """Uniform scores for every category; no keyword signal is used."""

    matches: Dict[str, CategoryMatch] = {}
    for category in categories:
        matches.setdefault(
            category.id,
            CategoryMatch(
                category_id=category.id,
                relevance_score=FALLBACK_RELEVANCE_SCORE,
                matched_keywords=[],
                confidence=FALLBACK_CATEGORY_CONFIDENCE,
            ),
        )
    return CategoryAnalysis(
        category_matches=list(matches.values()),
        suggested_categories=[],
        auto_assign_threshold=AUTO_ASSIGN_THRESHOLD,
    )


__all__ = [
    "AUTO_ASSIGN_THRESHOLD",
    "CategoryReply",
    "InsightsReply",
    "MAX_TRANSCRIPT_CHARS",
    "TranscriptAnalyzer",
    "calculate_insights_confidence",
    "clamp_score",
    "fallback_category_analysis",
]
