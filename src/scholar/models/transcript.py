"""Pydantic models for transcript extraction and processing."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from scholar.models.base import FrozenModel, ScholarBaseModel
from scholar.models.ids import VideoId


class TranscriptQuality(str, Enum):
    """Coarse quality rating assigned to an extracted transcript."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TranscriptSegment(FrozenModel):
    """Segment of a transcript including timing metadata in seconds."""

    start: float = Field(ge=0.0)
    duration: float = Field(ge=0.0)
    text: str

    @property
    def end(self) -> float:
        """Return the time at which the segment stops."""

        return self.start + self.duration


class RawTranscriptData(FrozenModel):
    """Transcript exactly as extracted for a single video.

    Instances are never mutated; re-extraction produces a new value.
    """

    video_id: VideoId
    language: str
    is_auto_generated: bool
    segments: tuple[TranscriptSegment, ...]
    full_text: str
    quality: TranscriptQuality
    extracted_at: datetime
    source: str = "youtube_captions"


class TranscriptMetadata(ScholarBaseModel):
    """Summary statistics describing an extracted transcript."""

    total_duration: float = Field(ge=0.0)
    segment_count: int = Field(ge=0)
    word_count: int = Field(ge=0)
    language: str
    quality: TranscriptQuality
    processing_version: str


class ExtractionResult(ScholarBaseModel):
    """Outcome of a transcript extraction attempt sequence."""

    success: bool
    data: Optional[RawTranscriptData] = None
    error: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)


class ProcessingFlags(ScholarBaseModel):
    """Which processing passes touched a transcript."""

    cleaned: bool = False
    merged: bool = False
    filtered: bool = False


class TranscriptForAnalysis(ScholarBaseModel):
    """Processed projection of :class:`RawTranscriptData` ready for analysis."""

    text: str
    segments: List[TranscriptSegment]
    word_count: int = Field(ge=0)
    estimated_read_time: int = Field(ge=1)
    quality: TranscriptQuality
    processing_flags: ProcessingFlags


class TranscriptChunk(ScholarBaseModel):
    """Window of transcript text sized for a single model request."""

    text: str
    start_time: float = Field(ge=0.0)
    end_time: float = Field(ge=0.0)
    segment_indices: List[int]


class SegmentSummary(ScholarBaseModel):
    """Aggregate statistics over a list of segments."""

    total_segments: int = Field(ge=0)
    total_duration: float = Field(ge=0.0)
    average_segment_length: float = Field(ge=0.0)
    word_count: int = Field(ge=0)
    speaking_rate: float = Field(ge=0.0)


__all__ = [
    "ExtractionResult",
    "ProcessingFlags",
    "RawTranscriptData",
    "SegmentSummary",
    "TranscriptChunk",
    "TranscriptForAnalysis",
    "TranscriptMetadata",
    "TranscriptQuality",
    "TranscriptSegment",
]
