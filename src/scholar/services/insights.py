"""Deterministic heuristic insights used when model analysis is unavailable."""

from __future__ import annotations

import math
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from scholar.models.analysis import ContentQuality, ContentType, Difficulty, VideoInsights
from scholar.utils.text import extract_capitalized_terms, top_frequent_words

HEURISTIC_MODEL_NAME = "content-insights"
DEFAULT_TOPIC = "General content"

MIN_LEARNING_MINUTES = 5
MAX_LEARNING_MINUTES = 120
CHARS_PER_LEARNING_MINUTE = 100

DIFFICULTY_TIME_MULTIPLIER: Dict[Difficulty, float] = {
    Difficulty.BEGINNER: 0.8,
    Difficulty.INTERMEDIATE: 1.0,
    Difficulty.ADVANCED: 1.3,
}

CLARITY_CUES = ("Let me explain", "First,", "Next,")
PRACTICAL_CUES = ("example", "demo", "practice")

OBJECTIVES_BY_TYPE: Dict[ContentType, List[str]] = {
    ContentType.TUTORIAL: ["Follow step-by-step instructions", "Apply learned techniques"],
    ContentType.EXPLANATION: ["Understand key concepts", "Explain the subject matter"],
    ContentType.DEMONSTRATION: ["Observe practical application", "Replicate demonstrated techniques"],
    ContentType.DISCUSSION: ["Analyze different perspectives", "Form informed opinions"],
    ContentType.LECTURE: ["Absorb comprehensive information", "Take structured notes"],
    ContentType.REVIEW: ["Evaluate content or products", "Make informed decisions"],
}

AUDIENCE_BY_DIFFICULTY: Dict[Difficulty, List[str]] = {
    Difficulty.BEGINNER: ["Beginners", "Students new to the subject"],
    Difficulty.INTERMEDIATE: ["Intermediate learners", "Professionals seeking to expand knowledge"],
    Difficulty.ADVANCED: ["Advanced practitioners", "Experts in the field"],
}

AUDIENCE_BY_TYPE: Dict[ContentType, str] = {
    ContentType.TUTORIAL: "Hands-on learners",
    ContentType.EXPLANATION: "Visual learners",
}


class InsightOverrides(BaseModel):
    """Values from a partial model analysis that replace heuristic ones."""

    content_quality: Optional[ContentQuality] = None
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    model_used: Optional[str] = None
    tokens_used: Optional[int] = Field(default=None, ge=0)
    estimated_cost: Optional[float] = Field(default=None, ge=0.0)


class ContentInsightsGenerator:
    """Derive :class:`VideoInsights` from transcript text alone.

    Every input, including an empty transcript, yields a valid result; this generator is
    the analysis fallback of last resort.
    """

    def generate_insights(
        self,
        content_type: ContentType,
        difficulty: Difficulty,
        transcript: str,
        analysis_data: Optional[InsightOverrides] = None,
    ) -> VideoInsights:
        """Build insights for ``transcript`` using lookup tables and keyword statistics.

        Parameters
        ----------
        content_type:
            Educational format assumed for the video.
        difficulty:
            Audience level assumed for the video.
        transcript:
            Transcript text; may be empty.
        analysis_data:
            Optional values that override the heuristic quality, confidence, model, token
            count, and cost.

        Returns
        -------
        VideoInsights
            Heuristic insights marked with ``model_used="content-insights"`` unless
            overridden.
        """

        overrides = analysis_data or InsightOverrides()
        main_topics = self.extract_main_topics(transcript)

        return VideoInsights(
            content_type=content_type,
            difficulty=difficulty,
            estimated_learning_time=self.estimate_learning_time(transcript, difficulty),
            prerequisites=self.identify_prerequisites(difficulty, main_topics),
            learning_objectives=self.generate_learning_objectives(content_type, main_topics),
            content_quality=overrides.content_quality or self.assess_content_quality(transcript),
            main_topics=main_topics,
            technical_terms=extract_capitalized_terms(transcript, limit=10),
            summary=self.generate_summary(transcript, content_type),
            best_for=self.identify_target_audience(difficulty, content_type),
            confidence=overrides.confidence if overrides.confidence else self.calculate_confidence(transcript),
            model_used=overrides.model_used or HEURISTIC_MODEL_NAME,
            tokens_used=overrides.tokens_used or 0,
            estimated_cost=overrides.estimated_cost or 0.0,
        )

    @staticmethod
    def estimate_learning_time(transcript: str, difficulty: Difficulty) -> int:
        base = max(MIN_LEARNING_MINUTES, min(MAX_LEARNING_MINUTES, len(transcript) // CHARS_PER_LEARNING_MINUTE))
        return math.floor(base * DIFFICULTY_TIME_MULTIPLIER[difficulty])

    @staticmethod
    def assess_content_quality(transcript: str) -> ContentQuality:
        clarity = 75
        completeness = 70
        practical_value = 65
        if any(cue in transcript for cue in CLARITY_CUES):
            clarity += 10
        if len(transcript) > 3000:
            completeness += 10
        if any(cue in transcript for cue in PRACTICAL_CUES):
            practical_value += 15
        return ContentQuality(
            clarity=min(100, clarity),
            completeness=min(100, completeness),
            practical_value=min(100, practical_value),
        )

    @staticmethod
    def extract_main_topics(transcript: str) -> List[str]:
        """Return the five most frequent meaningful words, capitalised."""

        topics = [word[:1].upper() + word[1:] for word in top_frequent_words(transcript, min_length=4, limit=5)]
        return topics or [DEFAULT_TOPIC]

    @staticmethod
    def identify_prerequisites(difficulty: Difficulty, topics: List[str]) -> List[str]:
        if difficulty is Difficulty.BEGINNER:
            return ["Basic computer literacy"]
        if difficulty is Difficulty.INTERMEDIATE:
            prerequisites = ["Basic understanding of the subject area"]
            if any("programming" in topic.lower() for topic in topics):
                prerequisites.append("Familiarity with programming concepts")
            return prerequisites
        return ["Strong foundation in the subject area", "Previous experience with related topics"]

    @staticmethod
    def generate_learning_objectives(content_type: ContentType, topics: List[str]) -> List[str]:
        objectives = list(OBJECTIVES_BY_TYPE[content_type])
        if topics:
            objectives.append(f"Gain knowledge about {topics[0].lower()}")
        return objectives

    @staticmethod
    def generate_summary(transcript: str, content_type: ContentType) -> str:
        if content_type is ContentType.TUTORIAL:
            label = "tutorial"
        elif content_type is ContentType.EXPLANATION:
            label = "educational content"
        else:
            label = f"{content_type.value} content"

        length = len(transcript)
        if length < 1000:
            return f"Brief {label} covering essential information and practical insights."
        if length < 5000:
            return f"Comprehensive {label} providing detailed explanations and practical guidance."
        return f"In-depth {label} offering extensive coverage with detailed examples and thorough explanations."

    @staticmethod
    def identify_target_audience(difficulty: Difficulty, content_type: ContentType) -> List[str]:
        audience = list(AUDIENCE_BY_DIFFICULTY[difficulty])
        extra = AUDIENCE_BY_TYPE.get(content_type)
        if extra:
            audience.append(extra)
        return audience

    @staticmethod
    def calculate_confidence(transcript: str) -> int:
        confidence = 70
        if len(transcript) > 1000:
            confidence += 10
        if len(transcript) > 5000:
            confidence += 10
        return min(95, confidence)


__all__ = [
    "ContentInsightsGenerator",
    "DEFAULT_TOPIC",
    "HEURISTIC_MODEL_NAME",
    "InsightOverrides",
]
