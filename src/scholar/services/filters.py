"""Video filtering, sorting, and remote-search routing."""

from __future__ import annotations

import json
import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from rich.console import Console

from scholar.config.settings import Settings, get_settings
from scholar.models.category import Category
from scholar.models.ids import VideoId
from scholar.models.video import (
    QUALITY_RANK,
    DateDistribution,
    DatePreset,
    DateRange,
    DurationPreset,
    DurationRange,
    Engagement,
    FilterStats,
    FilterValidation,
    SortField,
    SortOrder,
    VideoFilters,
    VideoQuality,
    VideoSort,
    VideoUI,
    format_duration,
)
from scholar.services.query import QueryEnhancer
from scholar.services.youtube import (
    SearchItem,
    SearchParams,
    VideoDetails,
    VideoSearchClient,
    VideoSearchError,
)

MAX_METRIC_SAMPLES = 100
DEFAULT_MAX_RESULTS = 50
DAY = timedelta(days=1)

# Preset buckets are half-open: min <= seconds < max.
DURATION_RANGES: Dict[DurationPreset, DurationRange] = {
    DurationPreset.SHORT: DurationRange(min=0, max=240),
    DurationPreset.MEDIUM: DurationRange(min=240, max=1200),
    DurationPreset.LONG: DurationRange(min=1200, max=None),
}

DATE_PRESET_SPANS: Dict[DatePreset, timedelta] = {
    DatePreset.WEEK: timedelta(days=7),
    DatePreset.MONTH: timedelta(days=30),
    DatePreset.YEAR: timedelta(days=365),
}

SORT_TO_REMOTE_ORDER: Dict[SortField, str] = {
    SortField.PUBLISHED_AT: "date",
    SortField.VIEW_COUNT: "viewCount",
    SortField.RELEVANCE: "relevance",
}

# Weight of each active filter in :func:`calculate_complexity`.
COMPLEXITY_WEIGHTS: Dict[str, int] = {
    "query": 2,
    "category_ids": 1,
    "duration": 1,
    "published_date": 1,
    "view_count": 1,
    "quality": 1,
    "channel_ids": 2,
    "languages": 1,
    "has_captions": 1,
    "min_relevance_score": 1,
    "min_engagement_rate": 1,
    "tags": 2,
    "exclude_watched": 1,
}

Predicate = Callable[[VideoUI], bool]
Now = Callable[[], datetime]


class FilterValidationError(ValueError):
    """Raised before any filtering work when a filter set is invalid."""

    def __init__(self, errors: Sequence[str]) -> None:
        super().__init__(f"Invalid filters: {', '.join(errors)}")
        self.errors = list(errors)


class FilterSource(str, Enum):
    API = "api"
    LOCAL = "local"
    CACHE = "cache"


@dataclass(slots=True)
class FilterContext:
    """Caller-supplied context for one :meth:`VideoFilterService.apply_filters` call."""

    query: Optional[str] = None
    selected_categories: List[Category] = field(default_factory=list)
    watched_video_ids: FrozenSet[VideoId] = frozenset()


class FilterMetrics(BaseModel):
    """Stage timings in seconds."""

    total_execution_time: float
    validation_time: float
    api_call_time: Optional[float] = None
    local_filter_time: Optional[float] = None
    sorting_time: Optional[float] = None


class CacheInfo(BaseModel):
    hit: bool
    key: str
    ttl: Optional[float] = None


class FilterResult(BaseModel):
    videos: List[VideoUI]
    total_count: int
    applied_filters: VideoFilters
    sort: VideoSort


class FilterExecutionResult(FilterResult):
    source: FilterSource
    query: Optional[str] = None
    metrics: FilterMetrics
    cache: Optional[CacheInfo] = None


class PerformanceSample(BaseModel):
    timestamp: float
    result_count: int
    metrics: FilterMetrics


class FilterCacheStats(BaseModel):
    size: int
    hits: int
    misses: int
    total_requests: int
    hit_rate: float


@dataclass(slots=True)
class _CachedResult:
    result: FilterResult
    stored_at: float


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------- #
# Preset ranges                                                           #
# ---------------------------------------------------------------------- #
def get_duration_range(preset: DurationPreset) -> Optional[DurationRange]:
    return DURATION_RANGES.get(preset)


def get_date_range(preset: DatePreset, now: datetime) -> Optional[DateRange]:
    """Resolve a date preset relative to ``now``; ``today`` starts at midnight in ``now``'s zone."""

    if preset is DatePreset.TODAY:
        return DateRange(start=now.replace(hour=0, minute=0, second=0, microsecond=0), end=now)
    span = DATE_PRESET_SPANS.get(preset)
    if span is None:
        return None
    return DateRange(start=now - span, end=now)


# ---------------------------------------------------------------------- #
# Predicates                                                              #
# ---------------------------------------------------------------------- #
def build_predicates(
    filters: VideoFilters,
    *,
    now: datetime,
    watched_video_ids: FrozenSet[VideoId] = frozenset(),
) -> List[Predicate]:
    """Return one pure predicate per active filter dimension.

    Each predicate is an independent set intersection, so the passes may run in any order.
    """

    predicates: List[Predicate] = []

    if filters.query:
        needle = filters.query.lower()
        predicates.append(
            lambda video: needle in video.title.lower()
            or needle in video.description.lower()
            or needle in video.channel_title.lower()
        )

    if filters.duration is not None:
        preset_range = get_duration_range(filters.duration.preset)
        duration_range = preset_range or filters.duration.range
        if duration_range is not None:
            predicates.append(_duration_predicate(duration_range, upper_inclusive=preset_range is None))

    if filters.published_date is not None:
        date_range = get_date_range(filters.published_date.preset, now) or filters.published_date.range
        if date_range is not None:
            start = _aware(date_range.start) if date_range.start else datetime.min.replace(tzinfo=timezone.utc)
            end = _aware(date_range.end) if date_range.end else now
            predicates.append(lambda video: start <= _aware(video.published_at) <= end)

    if filters.view_count is not None:
        view_min = filters.view_count.min or 0
        view_max = filters.view_count.max if filters.view_count.max is not None else math.inf
        predicates.append(lambda video: view_min <= video.view_count <= view_max)

    if filters.quality:
        qualities = frozenset(filters.quality)
        predicates.append(lambda video: video.quality is not None and video.quality in qualities)

    if filters.has_captions is not None:
        wanted = filters.has_captions
        predicates.append(lambda video: video.has_captions == wanted)

    if filters.min_relevance_score is not None:
        min_relevance = filters.min_relevance_score
        predicates.append(lambda video: video.relevance_score >= min_relevance)

    if filters.min_engagement_rate is not None:
        min_engagement = filters.min_engagement_rate
        predicates.append(
            lambda video: video.engagement is not None and video.engagement.engagement_rate >= min_engagement
        )

    if filters.languages:
        languages = frozenset(filters.languages)
        predicates.append(lambda video: video.language is not None and video.language in languages)

    if filters.tags:
        wanted_tags = [tag.lower() for tag in filters.tags]
        predicates.append(
            lambda video: any(wanted in tag.lower() for wanted in wanted_tags for tag in video.tags)
        )

    if filters.category_ids:
        category_ids = frozenset(filters.category_ids)
        predicates.append(lambda video: any(category in category_ids for category in video.categories))

    if filters.channel_ids:
        channel_ids = frozenset(filters.channel_ids)
        predicates.append(lambda video: video.channel_id in channel_ids)

    if filters.exclude_watched and watched_video_ids:
        predicates.append(lambda video: video.id not in watched_video_ids)

    return predicates


def _duration_predicate(duration_range: DurationRange, *, upper_inclusive: bool) -> Predicate:
    lower = duration_range.min or 0
    upper = duration_range.max if duration_range.max is not None else math.inf

    def matches(video: VideoUI) -> bool:
        seconds = video.duration_seconds
        if seconds is None:
            return False
        if upper_inclusive:
            return lower <= seconds <= upper
        return lower <= seconds < upper

    return matches


def apply_predicates(videos: Sequence[VideoUI], predicates: Sequence[Predicate]) -> List[VideoUI]:
    filtered = list(videos)
    for predicate in predicates:
        filtered = [video for video in filtered if predicate(video)]
    return filtered


# ---------------------------------------------------------------------- #
# Sorting                                                                 #
# ---------------------------------------------------------------------- #
def _sort_key(sort_field: SortField) -> Callable[[VideoUI], object]:
    if sort_field is SortField.PUBLISHED_AT:
        return lambda video: _aware(video.published_at)
    if sort_field is SortField.VIEW_COUNT:
        return lambda video: video.view_count
    if sort_field is SortField.DURATION:
        return lambda video: video.duration_seconds or 0
    if sort_field is SortField.TITLE:
        return lambda video: video.title.casefold()
    if sort_field is SortField.QUALITY:
        return lambda video: QUALITY_RANK[video.quality or VideoQuality.MEDIUM]
    if sort_field is SortField.ENGAGEMENT:
        return lambda video: video.engagement.engagement_rate if video.engagement else 0.0
    return lambda video: video.relevance_score


def sort_videos(videos: Sequence[VideoUI], sort: VideoSort) -> List[VideoUI]:
    """Stable sort by one field; unknown durations sort as zero, unknown quality as medium."""

    return sorted(videos, key=_sort_key(sort.field), reverse=sort.order is SortOrder.DESC)


# ---------------------------------------------------------------------- #
# Validation and description                                              #
# ---------------------------------------------------------------------- #
def validate_filters(filters: VideoFilters, *, now: Optional[datetime] = None) -> FilterValidation:
    """Collect every error, warning, and suggestion for a filter set."""

    now = now or _local_now()
    errors: List[str] = []
    warnings: List[str] = []
    suggestions: List[str] = []

    duration_range = filters.duration.range if filters.duration else None
    if duration_range is not None:
        if duration_range.min is not None and duration_range.max is not None and duration_range.min > duration_range.max:
            errors.append("Duration minimum cannot be greater than maximum")
        if duration_range.min is not None and duration_range.min < 0:
            errors.append("Duration minimum cannot be negative")

    if filters.view_count is not None:
        view_min, view_max = filters.view_count.min, filters.view_count.max
        if view_min is not None and view_max is not None and view_min > view_max:
            errors.append("View count minimum cannot be greater than maximum")
        if view_min is not None and view_min < 0:
            errors.append("View count minimum cannot be negative")

    date_range = filters.published_date.range if filters.published_date else None
    if date_range is not None:
        if date_range.start and date_range.end and _aware(date_range.start) > _aware(date_range.end):
            errors.append("Start date cannot be after end date")
        if date_range.end and _aware(date_range.end) > now:
            warnings.append("End date is in the future")

    if filters.min_relevance_score is not None:
        if not 0 <= filters.min_relevance_score <= 100:
            errors.append("Relevance score must be between 0 and 100")
        if filters.min_relevance_score > 90:
            warnings.append("Very high relevance threshold may return few results")

    if not filters.category_ids:
        suggestions.append("Select categories for better relevance scoring")
    if filters.quality == [VideoQuality.EXCELLENT]:
        suggestions.append('Consider including "high" quality for more results')

    return FilterValidation(is_valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions)


def calculate_complexity(filters: VideoFilters) -> int:
    """Score how much work a filter set implies."""

    complexity = 0
    for name, weight in COMPLEXITY_WEIGHTS.items():
        value = getattr(filters, name)
        if name in {"has_captions", "min_relevance_score", "min_engagement_rate"}:
            active = value is not None
        else:
            active = bool(value)
        if active:
            complexity += weight
    return complexity


def describe_filters(filters: VideoFilters) -> str:
    parts: List[str] = []
    if filters.query:
        parts.append(f'containing "{filters.query}"')
    if filters.category_ids:
        parts.append(f"in {len(filters.category_ids)} categories")
    if filters.duration and filters.duration.preset is not DurationPreset.ANY:
        parts.append(f"{filters.duration.preset.value} duration")
    if filters.published_date and filters.published_date.preset is not DatePreset.ANY:
        parts.append(f"from {filters.published_date.preset.value}")
    if filters.quality:
        parts.append(f"{', '.join(quality.value for quality in filters.quality)} quality")
    if filters.has_captions:
        parts.append("with captions")
    if filters.min_relevance_score:
        parts.append(f"relevance {filters.min_relevance_score:g}%+")
    return ", ".join(parts) if parts else "All videos"


# ---------------------------------------------------------------------- #
# Remote conversion                                                       #
# ---------------------------------------------------------------------- #
def to_search_params(
    filters: VideoFilters,
    sort: VideoSort,
    *,
    now: datetime,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> SearchParams:
    """Translate filters into ``search.list`` vocabulary."""

    video_duration: Optional[str] = None
    if filters.duration and filters.duration.preset in DURATION_RANGES:
        video_duration = filters.duration.preset.value

    published_after: Optional[datetime] = None
    published_before: Optional[datetime] = None
    if filters.published_date is not None:
        date_range = get_date_range(filters.published_date.preset, now) or filters.published_date.range
        if date_range is not None:
            published_after, published_before = date_range.start, date_range.end

    wants_hd = bool(filters.quality) and any(
        quality in {VideoQuality.HIGH, VideoQuality.EXCELLENT} for quality in filters.quality or []
    )

    return SearchParams(
        max_results=max_results,
        order=SORT_TO_REMOTE_ORDER.get(sort.field, "relevance"),
        video_duration=video_duration,
        published_after=published_after,
        published_before=published_before,
        video_definition="high" if wants_hd else None,
        video_caption="closedCaption" if filters.has_captions else None,
        safe_search="moderate",
        relevance_language=(filters.languages or ["en"])[0],
    )


def residual_filters(filters: VideoFilters) -> VideoFilters:
    """Return the part of ``filters`` the remote search cannot express.

    The query, duration buckets, date bounds, and a positive caption requirement are sent
    with the search; everything else is evaluated locally on the returned videos.
    """

    updates: Dict[str, object] = {"query": None, "published_date": None}
    if filters.duration and filters.duration.preset in DURATION_RANGES:
        updates["duration"] = None
    if filters.has_captions is True:
        updates["has_captions"] = None
    return filters.model_copy(update=updates)


def search_item_to_video(
    item: SearchItem,
    index: int,
    *,
    details: Optional[VideoDetails] = None,
    category_ids: Sequence[str] = (),
) -> VideoUI:
    """Convert a search result, ranking earlier results as more relevant."""

    categories = list(category_ids) or list(item.category_ids)
    base_relevance = max(95 - index * 2, 50)
    relevance = min(100, base_relevance + (10 if categories else 0))

    view_count = details.view_count if details else 0
    like_count = details.like_count if details else None
    comment_count = details.comment_count if details else None
    engagement: Optional[Engagement] = None
    if details is not None and view_count > 0:
        likes = like_count or 0
        comments = comment_count or 0
        engagement = Engagement(
            like_to_view_ratio=likes / view_count,
            comment_to_view_ratio=comments / view_count,
            engagement_rate=(likes + comments) / view_count,
        )

    quality: Optional[VideoQuality] = None
    if details is not None and details.definition:
        quality = VideoQuality.HIGH if details.definition == "hd" else VideoQuality.MEDIUM

    duration = ""
    if details is not None and details.duration_seconds is not None:
        duration = format_duration(details.duration_seconds)

    return VideoUI(
        id=item.video_id,
        title=item.title,
        channel_title=item.channel_title,
        channel_id=item.channel_id,
        description=item.description,
        thumbnail_url=item.thumbnail_url,
        published_at=item.published_at,
        view_count=view_count,
        like_count=like_count,
        comment_count=comment_count,
        duration=duration,
        relevance_score=relevance,
        tags=item.tags,
        categories=categories,
        language=item.default_language or "en",
        has_captions=details.has_captions if details else False,
        quality=quality,
        engagement=engagement,
    )


# ---------------------------------------------------------------------- #
# Service                                                                 #
# ---------------------------------------------------------------------- #
class VideoFilterService:
    """Filter and sort videos locally, or through remote search when a query allows it."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        search_client: Optional[VideoSearchClient] = None,
        query_enhancer: Optional[QueryEnhancer] = None,
        enable_caching: bool = True,
        enable_performance_monitoring: bool = True,
        enable_debug_logging: bool = False,
        default_max_results: int = DEFAULT_MAX_RESULTS,
        clock: Callable[[], float] = time.time,
        now: Now = _local_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._search_client = search_client
        self._query_enhancer = query_enhancer or QueryEnhancer(console=self._console)
        self._enable_caching = enable_caching
        self._enable_metrics = enable_performance_monitoring
        self._debug = enable_debug_logging
        self._max_results = default_max_results
        self._clock = clock
        self._now = now
        self._cache_ttl = float(self._settings.filter_cache_ttl_seconds)
        self._cache: Dict[str, _CachedResult] = {}
        self._cache_hits = 0
        self._cache_misses = 0
        self._metrics: Deque[PerformanceSample] = deque(maxlen=MAX_METRIC_SAMPLES)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        if self._search_client is not None and self._search_client.has_api_key:
            self._log("Remote search client available")
        self._initialized = True
        self._log("Video filter service initialized")

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def apply_filters(
        self,
        videos: Sequence[VideoUI],
        filters: VideoFilters,
        sort: Optional[VideoSort] = None,
        context: Optional[FilterContext] = None,
    ) -> FilterExecutionResult:
        """Validate, filter, and sort ``videos``.

        Parameters
        ----------
        videos:
            Locally held videos; ignored when the remote path is taken.
        filters:
            Declarative filter set.
        sort:
            Sort field and order; relevance descending when omitted.
        context:
            Query, selected categories, and watched IDs for this call.

        Returns
        -------
        FilterExecutionResult
            Filtered videos with the source, stage timings, and cache information.

        Raises
        ------
        FilterValidationError
            If ``filters`` fails validation; no filtering work is done.
        VideoSearchError
            If the remote search fails.
        """

        started = time.perf_counter()
        sort = sort or VideoSort()
        context = context or FilterContext()
        now = self._now()

        validation_started = time.perf_counter()
        validation = validate_filters(filters, now=now)
        validation_time = time.perf_counter() - validation_started
        if not validation.is_valid:
            raise FilterValidationError(validation.errors)

        cache_key: Optional[str] = None
        if self._enable_caching and context.query:
            cache_key = self.generate_cache_key(filters, sort, context.query)
            cached = self._get_cached(cache_key)
            if cached is not None:
                hit = FilterExecutionResult(
                    **dict(cached),
                    source=FilterSource.CACHE,
                    query=context.query,
                    metrics=FilterMetrics(
                        total_execution_time=time.perf_counter() - started,
                        validation_time=validation_time,
                    ),
                    cache=CacheInfo(hit=True, key=cache_key),
                )
                self._record_sample(hit)
                return hit

        api_call_time: Optional[float] = None
        local_filter_time: Optional[float] = None
        remote = self._remote_client(context)
        if remote is not None and context.query:
            source = FilterSource.API
            api_started = time.perf_counter()
            filtered, total_count = await self._apply_remote(remote, context.query, filters, sort, context, now)
            api_call_time = time.perf_counter() - api_started
        else:
            source = FilterSource.LOCAL
            local_started = time.perf_counter()
            predicates = build_predicates(filters, now=now, watched_video_ids=context.watched_video_ids)
            filtered = apply_predicates(videos, predicates)
            total_count = len(filtered)
            local_filter_time = time.perf_counter() - local_started

        sorting_started = time.perf_counter()
        filtered = sort_videos(filtered, sort)
        sorting_time = time.perf_counter() - sorting_started

        result = FilterResult(videos=filtered, total_count=total_count, applied_filters=filters, sort=sort)
        cache_info: Optional[CacheInfo] = None
        if cache_key is not None:
            self._cache[cache_key] = _CachedResult(result=result, stored_at=self._clock())
            cache_info = CacheInfo(hit=False, key=cache_key, ttl=self._cache_ttl)

        execution = FilterExecutionResult(
            **dict(result),
            source=source,
            query=context.query,
            metrics=FilterMetrics(
                total_execution_time=time.perf_counter() - started,
                validation_time=validation_time,
                api_call_time=api_call_time,
                local_filter_time=local_filter_time,
                sorting_time=sorting_time,
            ),
            cache=cache_info,
        )

        self._record_sample(execution)
        self._log(
            f"Filtering completed: {len(filtered)} results from {source.value} "
            f"in {execution.metrics.total_execution_time * 1000:.1f}ms"
        )
        return execution

    def validate_filters(self, filters: VideoFilters) -> FilterValidation:
        return validate_filters(filters, now=self._now())

    def calculate_filter_stats(self, all_videos: Sequence[VideoUI], filtered_videos: Sequence[VideoUI]) -> FilterStats:
        """Summarise duration, quality, and age distributions of ``all_videos``."""

        durations = [video.duration_seconds for video in all_videos]
        known = [seconds for seconds in durations if seconds is not None]
        average = (
            sum(video.relevance_score for video in filtered_videos) / len(filtered_videos) if filtered_videos else 0.0
        )
        return FilterStats(
            total_videos=len(all_videos),
            filtered_videos=len(filtered_videos),
            average_relevance_score=average,
            duration_distribution={
                DurationPreset.ANY: len(all_videos),
                DurationPreset.SHORT: sum(1 for seconds in known if seconds < 240),
                DurationPreset.MEDIUM: sum(1 for seconds in known if 240 <= seconds < 1200),
                DurationPreset.LONG: sum(1 for seconds in known if seconds >= 1200),
                DurationPreset.CUSTOM: 0,
            },
            quality_distribution={
                quality: sum(1 for video in all_videos if video.quality is quality) for quality in VideoQuality
            },
            date_distribution=self._date_distribution(all_videos),
        )

    def get_performance_metrics(self) -> List[PerformanceSample]:
        return list(self._metrics)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._log("Filter cache cleared")

    def get_cache_stats(self) -> FilterCacheStats:
        total = self._cache_hits + self._cache_misses
        return FilterCacheStats(
            size=len(self._cache),
            hits=self._cache_hits,
            misses=self._cache_misses,
            total_requests=total,
            hit_rate=self._cache_hits / total if total else 0.0,
        )

    @staticmethod
    def generate_cache_key(filters: VideoFilters, sort: VideoSort, query: Optional[str]) -> str:
        return json.dumps(
            {
                "filters": filters.model_dump(mode="json", exclude_none=True),
                "sort": sort.model_dump(mode="json"),
                "query": query,
            },
            sort_keys=True,
        )

    calculate_complexity = staticmethod(calculate_complexity)
    describe_filters = staticmethod(describe_filters)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                    #
    # ------------------------------------------------------------------ #
    def _remote_client(self, context: FilterContext) -> Optional[VideoSearchClient]:
        """The search client when a query can be served remotely, else ``None``."""

        client = self._search_client
        if context.query and client is not None and client.has_api_key and self._initialized:
            return client
        return None

    async def _apply_remote(  # pylint: disable=too-many-arguments
        self,
        client: VideoSearchClient,
        query: str,
        filters: VideoFilters,
        sort: VideoSort,
        context: FilterContext,
        now: datetime,
    ) -> Tuple[List[VideoUI], int]:
        params = to_search_params(filters, sort, now=now, max_results=self._max_results)
        page = await client.search(query, params)

        details: Dict[VideoId, VideoDetails] = {}
        if page.items:
            try:
                details = await client.get_video_details([item.video_id for item in page.items])
            except VideoSearchError as exc:
                self._console.log(f"[yellow]Video details unavailable, continuing without them:[/yellow] {exc}")

        converted = [
            search_item_to_video(
                item,
                index,
                details=details.get(item.video_id),
                category_ids=self._query_enhancer.match_categories(
                    f"{item.title} {item.description} {' '.join(item.tags)}",
                    context.selected_categories,
                ),
            )
            for index, item in enumerate(page.items)
        ]
        predicates = build_predicates(
            residual_filters(filters),
            now=now,
            watched_video_ids=context.watched_video_ids,
        )
        return apply_predicates(converted, predicates), page.total_results

    def _get_cached(self, key: str) -> Optional[FilterResult]:
        cached = self._cache.get(key)
        if cached is not None and self._clock() - cached.stored_at < self._cache_ttl:
            self._cache_hits += 1
            return cached.result
        if cached is not None:
            del self._cache[key]
        self._cache_misses += 1
        return None

    def _date_distribution(self, videos: Sequence[VideoUI]) -> DateDistribution:
        now = self._now()
        day, week, month, year = (now - DAY, now - 7 * DAY, now - 30 * DAY, now - 365 * DAY)
        distribution = DateDistribution()
        for video in videos:
            published = _aware(video.published_at)
            if published >= day:
                distribution.today += 1
            elif published >= week:
                distribution.week += 1
            elif published >= month:
                distribution.month += 1
            elif published >= year:
                distribution.year += 1
            else:
                distribution.older += 1
        return distribution

    def _record_sample(self, execution: FilterExecutionResult) -> None:
        if self._enable_metrics:
            self._metrics.append(
                PerformanceSample(
                    timestamp=self._clock(), result_count=len(execution.videos), metrics=execution.metrics
                )
            )

    def _log(self, message: str) -> None:
        if self._debug:
            self._console.log(f"[dim]\\[filters][/dim] {message}")


__all__ = [
    "COMPLEXITY_WEIGHTS",
    "DURATION_RANGES",
    "FilterCacheStats",
    "FilterContext",
    "FilterExecutionResult",
    "FilterMetrics",
    "FilterResult",
    "FilterSource",
    "FilterValidationError",
    "PerformanceSample",
    "VideoFilterService",
    "apply_predicates",
    "build_predicates",
    "calculate_complexity",
    "describe_filters",
    "get_date_range",
    "get_duration_range",
    "residual_filters",
    "search_item_to_video",
    "sort_videos",
    "to_search_params",
    "validate_filters",
]
