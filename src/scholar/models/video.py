"""Pydantic models for videos, filter specifications, and filter results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from scholar.models.base import ScholarBaseModel
from scholar.models.ids import CategoryId, VideoId


class VideoQuality(str, Enum):
    """Perceived production quality, ordered low to excellent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXCELLENT = "excellent"


QUALITY_RANK: Dict[VideoQuality, int] = {
    VideoQuality.LOW: 1,
    VideoQuality.MEDIUM: 2,
    VideoQuality.HIGH: 3,
    VideoQuality.EXCELLENT: 4,
}


class Engagement(ScholarBaseModel):
    """Normalised engagement ratios."""

    like_to_view_ratio: float = Field(default=0.0, ge=0.0)
    comment_to_view_ratio: float = Field(default=0.0, ge=0.0)
    engagement_rate: float = Field(default=0.0, ge=0.0)


class VideoUI(ScholarBaseModel):
    """Filter engine view of a video.

    ``duration`` uses the display form (``"m:ss"`` or ``"h:mm:ss"``); an empty string means
    the duration is unknown.
    """

    id: VideoId
    title: str
    channel_title: str = ""
    channel_id: str = ""
    description: str = ""
    thumbnail_url: str = ""
    published_at: datetime
    view_count: int = Field(default=0, ge=0)
    like_count: Optional[int] = Field(default=None, ge=0)
    comment_count: Optional[int] = Field(default=None, ge=0)
    duration: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0, le=100.0)
    key_points: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    categories: List[CategoryId] = Field(default_factory=list)
    language: Optional[str] = None
    has_captions: bool = False
    quality: Optional[VideoQuality] = None
    engagement: Optional[Engagement] = None

    @property
    def duration_seconds(self) -> Optional[int]:
        """Return the parsed duration, or ``None`` when unknown."""

        return parse_duration(self.duration)


def parse_duration(value: str) -> Optional[int]:
    """Parse ``"m:ss"``/``"h:mm:ss"`` or a bare number of seconds."""

    value = value.strip()
    if not value:
        return None
    parts = value.split(":")
    try:
        numbers = [int(part) for part in parts]
    except ValueError:
        return None
    if len(numbers) > 3 or any(number < 0 for number in numbers):
        return None
    seconds = 0
    for number in numbers:
        seconds = seconds * 60 + number
    return seconds


def format_duration(seconds: int) -> str:
    """Render seconds in the display form used by :class:`VideoUI`."""

    hours, remainder = divmod(max(0, int(seconds)), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class DurationPreset(str, Enum):
    ANY = "any"
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    CUSTOM = "custom"


class DatePreset(str, Enum):
    ANY = "any"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    CUSTOM = "custom"


class DurationRange(ScholarBaseModel):
    """Inclusive duration bounds in seconds; ``None`` means unbounded."""

    min: Optional[float] = None
    max: Optional[float] = None


class DateRange(ScholarBaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class ViewCountRange(ScholarBaseModel):
    min: Optional[int] = None
    max: Optional[int] = None


class DurationFilter(ScholarBaseModel):
    preset: DurationPreset = DurationPreset.ANY
    range: Optional[DurationRange] = None


class PublishedDateFilter(ScholarBaseModel):
    preset: DatePreset = DatePreset.ANY
    range: Optional[DateRange] = None


class VideoFilters(ScholarBaseModel):
    """Declarative filter set; every unset field means "no constraint"."""

    query: Optional[str] = None
    category_ids: Optional[List[CategoryId]] = None
    duration: Optional[DurationFilter] = None
    published_date: Optional[PublishedDateFilter] = None
    view_count: Optional[ViewCountRange] = None
    quality: Optional[List[VideoQuality]] = None
    channel_ids: Optional[List[str]] = None
    languages: Optional[List[str]] = None
    has_captions: Optional[bool] = None
    min_relevance_score: Optional[float] = None
    min_engagement_rate: Optional[float] = None
    tags: Optional[List[str]] = None
    exclude_watched: bool = False


class SortField(str, Enum):
    RELEVANCE = "relevance"
    PUBLISHED_AT = "publishedAt"
    VIEW_COUNT = "viewCount"
    DURATION = "duration"
    TITLE = "title"
    QUALITY = "quality"
    ENGAGEMENT = "engagement"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class VideoSort(ScholarBaseModel):
    field: SortField = SortField.RELEVANCE
    order: SortOrder = SortOrder.DESC


class FilterPreset(ScholarBaseModel):
    """Named filter and sort combination offered to users."""

    id: str
    name: str
    description: str
    filters: VideoFilters
    sort: VideoSort
    is_default: bool = False


class FilterValidation(ScholarBaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class DateDistribution(ScholarBaseModel):
    today: int = 0
    week: int = 0
    month: int = 0
    year: int = 0
    older: int = 0


class FilterStats(ScholarBaseModel):
    """Distribution summary of a filtered collection."""

    total_videos: int
    filtered_videos: int
    average_relevance_score: float
    duration_distribution: Dict[DurationPreset, int]
    quality_distribution: Dict[VideoQuality, int]
    date_distribution: DateDistribution


DEFAULT_FILTER_PRESETS: List[FilterPreset] = [
    FilterPreset(
        id="most-relevant",
        name="Most Relevant",
        description="Videos ranked by AI relevance to your selected categories",
        filters=VideoFilters(min_relevance_score=50),
        sort=VideoSort(field=SortField.RELEVANCE, order=SortOrder.DESC),
        is_default=True,
    ),
    FilterPreset(
        id="recent",
        name="Recently Published",
        description="Latest videos from the past month",
        filters=VideoFilters(published_date=PublishedDateFilter(preset=DatePreset.MONTH)),
        sort=VideoSort(field=SortField.PUBLISHED_AT, order=SortOrder.DESC),
    ),
    FilterPreset(
        id="popular",
        name="Most Popular",
        description="Videos with highest view counts",
        filters=VideoFilters(view_count=ViewCountRange(min=1000)),
        sort=VideoSort(field=SortField.VIEW_COUNT, order=SortOrder.DESC),
    ),
    FilterPreset(
        id="quick-watch",
        name="Quick Watch",
        description="Short videos under 4 minutes",
        filters=VideoFilters(duration=DurationFilter(preset=DurationPreset.SHORT)),
        sort=VideoSort(field=SortField.RELEVANCE, order=SortOrder.DESC),
    ),
    FilterPreset(
        id="high-quality",
        name="High Quality",
        description="Videos with excellent quality and captions",
        filters=VideoFilters(
            quality=[VideoQuality.HIGH, VideoQuality.EXCELLENT],
            has_captions=True,
            min_engagement_rate=0.02,
        ),
        sort=VideoSort(field=SortField.QUALITY, order=SortOrder.DESC),
    ),
]


def find_filter_preset(name: str) -> Optional[FilterPreset]:
    """Look up a default preset by id or, case-insensitively, by display name."""

    wanted = name.strip().lower()
    for preset in DEFAULT_FILTER_PRESETS:
        if wanted in {preset.id, preset.name.lower()}:
            return preset
    return None


__all__ = [
    "DEFAULT_FILTER_PRESETS",
    "QUALITY_RANK",
    "DateDistribution",
    "DatePreset",
    "DateRange",
    "DurationFilter",
    "DurationPreset",
    "DurationRange",
    "Engagement",
    "FilterPreset",
    "FilterStats",
    "FilterValidation",
    "PublishedDateFilter",
    "SortField",
    "SortOrder",
    "VideoFilters",
    "VideoQuality",
    "VideoSort",
    "VideoUI",
    "ViewCountRange",
    "find_filter_preset",
    "format_duration",
    "parse_duration",
]
