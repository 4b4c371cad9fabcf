"""YouTube Data API search client, quota tracking, and API key validation."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, Field
from rich.console import Console

from scholar.config.settings import Settings, YouTubeLimits, get_settings
from scholar.models.ids import CategoryId, VideoId
from scholar.utils.validation import is_valid_api_key_format, sanitize_error_message

YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "Scholar/0.1"}
DEFAULT_MAX_RESULTS = 25
VIDEOS_LIST_BATCH_SIZE = 50

# Public channel queried to check a key for one quota unit.
VALIDATION_CHANNEL_ID = "UC_x5XG1OV2P6uZZ5FSM9Ttw"
VALIDATION_TIMEOUT_SECONDS = 10.0
VALIDATION_GROUP_SIZE = 3
VALIDATION_GROUP_DELAY_SECONDS = 0.5
VALIDATION_RATE_LIMIT_RETRIES = 2
VALIDATION_RETRY_BASE_DELAY_SECONDS = 1.0

QUOTA_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded"})
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

_ISO_DURATION = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

Sleeper = Callable[[float], Awaitable[None]]


class SearchErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({SearchErrorKind.NETWORK, SearchErrorKind.SERVER_ERROR, SearchErrorKind.RATE_LIMITED})


class VideoSearchError(RuntimeError):
    """Raised when the remote search service cannot satisfy a request."""

    def __init__(self, message: str, *, kind: SearchErrorKind, status_code: Optional[int] = None) -> None:
        super().__init__(sanitize_error_message(message))
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


def kind_for_status(status_code: int, reason: Optional[str] = None) -> SearchErrorKind:
    """Map an HTTP status, refined by the API error reason for 403s, to a search error kind."""

    if status_code == 401:
        return SearchErrorKind.AUTHENTICATION
    if status_code == 403:
        if reason in RATE_LIMIT_REASONS:
            return SearchErrorKind.RATE_LIMITED
        if reason is None or reason in QUOTA_REASONS:
            return SearchErrorKind.QUOTA_EXCEEDED
        return SearchErrorKind.AUTHENTICATION
    if status_code == 404:
        return SearchErrorKind.NOT_FOUND
    if status_code == 429:
        return SearchErrorKind.RATE_LIMITED
    if status_code >= 500:
        return SearchErrorKind.SERVER_ERROR
    return SearchErrorKind.UNKNOWN


# ---------------------------------------------------------------------- #
# Request and response shapes                                             #
# ---------------------------------------------------------------------- #
class SearchParams(BaseModel):
    """Native search.list parameters; ``None`` values are not sent."""

    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=50)
    order: str = "relevance"
    video_duration: Optional[str] = None
    published_after: Optional[datetime] = None
    published_before: Optional[datetime] = None
    video_definition: Optional[str] = None
    video_caption: Optional[str] = None
    safe_search: str = "moderate"
    relevance_language: Optional[str] = None
    page_token: Optional[str] = None

    def to_query(self) -> Dict[str, str]:
        query: Dict[str, str] = {
            "part": "snippet",
            "type": "video",
            "maxResults": str(self.max_results),
            "order": self.order,
            "safeSearch": self.safe_search,
        }
        optional: Dict[str, Optional[str]] = {
            "videoDuration": self.video_duration,
            "publishedAfter": _rfc3339(self.published_after),
            "publishedBefore": _rfc3339(self.published_before),
            "videoDefinition": self.video_definition,
            "videoCaption": self.video_caption,
            "relevanceLanguage": self.relevance_language,
            "pageToken": self.page_token,
        }
        query.update({key: value for key, value in optional.items() if value is not None})
        return query


class SearchItem(BaseModel):
    """One search result reduced to the snippet fields the filter engine uses."""

    video_id: VideoId
    title: str = ""
    description: str = ""
    channel_id: str = ""
    channel_title: str = ""
    published_at: datetime
    thumbnail_url: str = ""
    tags: List[str] = Field(default_factory=list)
    default_language: Optional[str] = None
    category_ids: List[CategoryId] = Field(default_factory=list)


class SearchPage(BaseModel):
    items: List[SearchItem] = Field(default_factory=list)
    total_results: int = 0
    next_page_token: Optional[str] = None
    quota_cost: int = 0


class VideoDetails(BaseModel):
    """Statistics and content details from ``videos.list``."""

    video_id: VideoId
    duration_seconds: Optional[int] = None
    view_count: int = 0
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    definition: Optional[str] = None
    has_captions: bool = False


class VideoSearchClient(Protocol):
    """Remote video search service."""

    @property
    def has_api_key(self) -> bool:
        """Return ``True`` when the client holds a credential."""

    async def search(self, query: str, params: SearchParams) -> SearchPage:
        """Run one search and return a page of results."""

    async def get_video_details(self, video_ids: Sequence[VideoId]) -> Dict[VideoId, VideoDetails]:
        """Return details for the given videos, keyed by ID."""


# ---------------------------------------------------------------------- #
# Quota tracking                                                          #
# ---------------------------------------------------------------------- #
class QuotaLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class QuotaStatus(BaseModel):
    daily_limit: int
    used: int
    remaining: int
    level: QuotaLevel


class QuotaTracker:
    """Track quota units spent against the daily YouTube budget."""

    def __init__(self, limits: Optional[YouTubeLimits] = None, *, console: Optional[Console] = None) -> None:
        self._limits = limits or YouTubeLimits()
        self._console = console or Console()
        self._used = 0

    def cost_of(self, operation: str) -> int:
        return self._limits.quota_costs.get(operation, 1)

    def ensure_available(self, operation: str) -> int:
        """Return the cost of ``operation`` or raise if the budget cannot cover it."""

        cost = self.cost_of(operation)
        remaining = self._limits.daily_quota - self._used
        if cost > remaining:
            raise VideoSearchError(
                f"Insufficient quota. Required: {cost}, Available: {remaining}",
                kind=SearchErrorKind.QUOTA_EXCEEDED,
            )
        return cost

    def record(self, operation: str) -> int:
        cost = self.cost_of(operation)
        self._used += cost
        level = self.status().level
        if level is not QuotaLevel.OK:
            self._console.log(
                f"[yellow]YouTube quota {level.value}: {self._used}/{self._limits.daily_quota} units used[/yellow]"
            )
        return cost

    def status(self) -> QuotaStatus:
        limit = self._limits.daily_quota
        ratio = self._used / limit
        if ratio >= self._limits.critical_threshold:
            level = QuotaLevel.CRITICAL
        elif ratio >= self._limits.warning_threshold:
            level = QuotaLevel.WARNING
        else:
            level = QuotaLevel.OK
        return QuotaStatus(daily_limit=limit, used=self._used, remaining=max(0, limit - self._used), level=level)

    def reset(self) -> None:
        self._used = 0


# ---------------------------------------------------------------------- #
# Search client                                                           #
# ---------------------------------------------------------------------- #
class YouTubeSearchClient:
    """:class:`VideoSearchClient` over the YouTube Data API v3."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        quota: Optional[QuotaTracker] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        limits = self._settings.service_limits.youtube
        if api_key is None and self._settings.youtube_api_key is not None:
            api_key = self._settings.youtube_api_key.get_secret_value()
        self._api_key = api_key
        self._retry = limits.retry
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=YOUTUBE_API_BASE_URL,
            headers=DEFAULT_HEADERS,
            timeout=limits.request_timeout_seconds,
        )
        self._quota = quota or QuotaTracker(limits, console=self._console)
        self._sleep = sleep or asyncio.sleep

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    async def search(self, query: str, params: SearchParams) -> SearchPage:
        """Run ``search.list`` for ``query``.

        Raises
        ------
        VideoSearchError
            With the mapped :class:`SearchErrorKind` once retries are exhausted or the error is
            not retryable.
        """

        request_params = params.to_query()
        request_params["q"] = query
        payload = await self._request("search", request_params, operation="search")

        items = [item for item in (_parse_search_item(raw) for raw in payload.get("items", [])) if item is not None]
        return SearchPage(
            items=items,
            total_results=int(payload.get("pageInfo", {}).get("totalResults", len(items))),
            next_page_token=payload.get("nextPageToken"),
            quota_cost=self._quota.cost_of("search"),
        )

    async def get_video_details(self, video_ids: Sequence[VideoId]) -> Dict[VideoId, VideoDetails]:
        """Fetch duration, statistics, and caption flags in batches of 50 IDs."""

        details: Dict[VideoId, VideoDetails] = {}
        for start in range(0, len(video_ids), VIDEOS_LIST_BATCH_SIZE):
            batch = video_ids[start : start + VIDEOS_LIST_BATCH_SIZE]
            payload = await self._request(
                "videos",
                {"part": "contentDetails,statistics", "id": ",".join(batch), "maxResults": str(len(batch))},
                operation="videos_list",
            )
            for raw in payload.get("items", []):
                parsed = _parse_video_details(raw)
                if parsed is not None:
                    details[parsed.video_id] = parsed
        return details

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "YouTubeSearchClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                    #
    # ------------------------------------------------------------------ #
    async def _request(self, endpoint: str, params: Mapping[str, str], *, operation: str) -> Dict[str, Any]:
        if not self._api_key:
            raise VideoSearchError("No YouTube API key configured.", kind=SearchErrorKind.AUTHENTICATION)

        self._quota.ensure_available(operation)
        query = {**params, "key": self._api_key}

        attempt = 0
        while True:
            try:
                response = await self._http.get(f"/{endpoint}", params=query)
                if response.is_error:
                    raise VideoSearchError(
                        _error_message(response),
                        kind=kind_for_status(response.status_code, _response_reason(response)),
                        status_code=response.status_code,
                    )
                self._quota.record(operation)
                return response.json()
            except httpx.TimeoutException as exc:
                error = VideoSearchError(f"Request to {endpoint} timed out: {exc}", kind=SearchErrorKind.TIMEOUT)
            except httpx.TransportError as exc:
                error = VideoSearchError(f"Network error calling {endpoint}: {exc}", kind=SearchErrorKind.NETWORK)
            except VideoSearchError as exc:
                error = exc

            attempt += 1
            if not error.retryable or attempt >= self._retry.max_attempts:
                raise error
            delay = self._retry.delay_for(attempt - 1)
            self._console.log(
                f"[yellow]YouTube {endpoint} attempt {attempt} failed ({error.kind.value}); "
                f"retrying in {delay:.1f}s[/yellow]"
            )
            await self._sleep(delay)


def _rfc3339(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    return error.get("message") or f"HTTP {response.status_code}: {response.reason_phrase}"


def _response_reason(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return _error_reason(payload) if isinstance(payload, dict) else None


def _error_reason(payload: Mapping[str, Any]) -> Optional[str]:
    error = payload.get("error") or {}
    if not isinstance(error, dict):
        return None
    for key in ("errors", "details"):
        entries = error.get(key) or []
        if entries and entries[0].get("reason"):
            return entries[0]["reason"]
    return error.get("status")


def _parse_search_item(raw: Mapping[str, Any]) -> Optional[SearchItem]:
    video_id = (raw.get("id") or {}).get("videoId")
    if not video_id:
        return None
    snippet = raw.get("snippet") or {}
    thumbnails = snippet.get("thumbnails") or {}
    thumbnail = thumbnails.get("high") or thumbnails.get("medium") or thumbnails.get("default") or {}
    return SearchItem(
        video_id=VideoId(video_id),
        title=snippet.get("title", ""),
        description=snippet.get("description", ""),
        channel_id=snippet.get("channelId", ""),
        channel_title=snippet.get("channelTitle", ""),
        published_at=snippet.get("publishedAt") or datetime.now(timezone.utc),
        thumbnail_url=thumbnail.get("url", ""),
        tags=list(snippet.get("tags") or []),
        default_language=snippet.get("defaultLanguage"),
    )


def parse_iso_duration(value: str) -> Optional[int]:
    """Convert an ISO 8601 duration such as ``PT1H2M3S`` to seconds."""

    match = _ISO_DURATION.fullmatch(value or "")
    if match is None:
        return None
    days, hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _parse_video_details(raw: Mapping[str, Any]) -> Optional[VideoDetails]:
    video_id = raw.get("id")
    if not video_id:
        return None
    content = raw.get("contentDetails") or {}
    statistics = raw.get("statistics") or {}
    return VideoDetails(
        video_id=VideoId(video_id),
        duration_seconds=parse_iso_duration(content.get("duration", "")),
        view_count=int(statistics.get("viewCount", 0)),
        like_count=_optional_int(statistics.get("likeCount")),
        comment_count=_optional_int(statistics.get("commentCount")),
        definition=content.get("definition"),
        has_captions=str(content.get("caption", "false")).lower() == "true",
    )


# ---------------------------------------------------------------------- #
# API key validation                                                      #
# ---------------------------------------------------------------------- #
class KeyValidationStatus(str, Enum):
    VALID = "valid"
    INVALID_FORMAT = "invalid_format"
    INVALID = "invalid"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNEXPECTED_RESPONSE = "unexpected_response"


_REASON_MESSAGES: Dict[str, str] = {
    "keyInvalid": "The API key is invalid or not found.",
    "keyNotFound": "The API key is invalid or not found.",
    "API_KEY_INVALID": "The API key is invalid or not found.",
    "accessNotConfigured": "YouTube Data API v3 is not enabled for this API key.",
    "quotaExceeded": "API quota exceeded. Try again later or request a quota increase.",
    "dailyLimitExceeded": "API quota exceeded. Try again later or request a quota increase.",
    "rateLimitExceeded": "Rate limit exceeded. Wait a moment before trying again.",
    "forbidden": "Access forbidden. Check the API key permissions.",
    "backendError": "YouTube API is temporarily unavailable.",
}


class KeyValidationResult(BaseModel):
    key_preview: str
    status: KeyValidationStatus
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    quota_cost: int = 0
    channel_title: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status is KeyValidationStatus.VALID


class ApiKeyValidator:
    """Check YouTube API keys with a one-unit ``channels.list`` call."""

    def __init__(
        self,
        *,
        console: Optional[Console] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = VALIDATION_TIMEOUT_SECONDS,
        group_size: int = VALIDATION_GROUP_SIZE,
        group_delay_seconds: float = VALIDATION_GROUP_DELAY_SECONDS,
        rate_limit_retries: int = VALIDATION_RATE_LIMIT_RETRIES,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self._console = console or Console()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=YOUTUBE_API_BASE_URL, headers=DEFAULT_HEADERS)
        self._timeout = timeout_seconds
        self._group_size = max(1, group_size)
        self._group_delay = group_delay_seconds
        self._rate_limit_retries = max(0, rate_limit_retries)
        self._sleep = sleep or asyncio.sleep

    @staticmethod
    def is_valid_format(key: str) -> bool:
        return is_valid_api_key_format(key)

    async def validate(self, key: str) -> KeyValidationResult:
        """Check one key, retrying rate-limited checks with exponential backoff; never raises."""

        preview = _preview(key)
        if not self.is_valid_format(key):
            return KeyValidationResult(
                key_preview=preview,
                status=KeyValidationStatus.INVALID_FORMAT,
                error_code="INVALID_FORMAT",
                error_message='Invalid YouTube API key format. Keys start with "AIza" and are 39 characters long.',
            )

        result = await self._check(key, preview)
        spent = result.quota_cost
        for attempt in range(self._rate_limit_retries):
            if result.status is not KeyValidationStatus.RATE_LIMITED:
                break
            delay = VALIDATION_RETRY_BASE_DELAY_SECONDS * 2**attempt
            self._console.log(f"[yellow]Key {preview} rate limited; retrying in {delay:.1f}s[/yellow]")
            await self._sleep(delay)
            result = await self._check(key, preview)
            spent += result.quota_cost
        return result.model_copy(update={"quota_cost": spent})

    async def _check(self, key: str, preview: str) -> KeyValidationResult:
        params = {
            "part": "snippet,statistics",
            "id": VALIDATION_CHANNEL_ID,
            "key": key.strip(),
            "fields": "items(id,snippet(title),statistics(subscriberCount,viewCount))",
        }
        try:
            response = await self._http.get("/channels", params=params, timeout=self._timeout)
        except httpx.TimeoutException:
            return KeyValidationResult(
                key_preview=preview,
                status=KeyValidationStatus.TIMEOUT,
                error_code="TIMEOUT",
                error_message=f"Validation request timed out after {self._timeout:.0f}s.",
            )
        except httpx.TransportError as exc:
            return KeyValidationResult(
                key_preview=preview,
                status=KeyValidationStatus.NETWORK_ERROR,
                error_code="NETWORK_ERROR",
                error_message=sanitize_error_message(f"Network error during validation: {exc}"),
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_error:
            reason = _error_reason(payload) or str(response.status_code)
            if reason in RATE_LIMIT_REASONS or response.status_code == 429:
                status = KeyValidationStatus.RATE_LIMITED
            elif reason in QUOTA_REASONS:
                status = KeyValidationStatus.QUOTA_EXCEEDED
            else:
                status = KeyValidationStatus.INVALID
            message = _REASON_MESSAGES.get(reason) or (payload.get("error") or {}).get("message")
            return KeyValidationResult(
                key_preview=preview,
                status=status,
                error_code=reason,
                error_message=sanitize_error_message(message or "An error occurred while validating the API key."),
                quota_cost=1,
            )

        items = payload.get("items") or []
        if not items:
            return KeyValidationResult(
                key_preview=preview,
                status=KeyValidationStatus.UNEXPECTED_RESPONSE,
                error_code="UNEXPECTED_RESPONSE",
                error_message="API key appears valid but the response had no channel data.",
                quota_cost=1,
            )
        return KeyValidationResult(
            key_preview=preview,
            status=KeyValidationStatus.VALID,
            quota_cost=1,
            channel_title=(items[0].get("snippet") or {}).get("title", "Unknown Channel"),
        )

    async def validate_many(self, keys: Sequence[str]) -> List[KeyValidationResult]:
        """Validate keys in fixed-size groups with a pause between groups."""

        results: List[KeyValidationResult] = []
        for start in range(0, len(keys), self._group_size):
            group = keys[start : start + self._group_size]
            results.extend(await asyncio.gather(*(self.validate(key) for key in group)))
            if start + self._group_size < len(keys):
                await self._sleep(self._group_delay)
        return results

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def _preview(key: str) -> str:
    stripped = key.strip()
    return f"...{stripped[-4:]}" if len(stripped) >= 4 else "..."


__all__ = [
    "ApiKeyValidator",
    "KeyValidationResult",
    "KeyValidationStatus",
    "QuotaLevel",
    "QuotaStatus",
    "QuotaTracker",
    "SearchErrorKind",
    "SearchItem",
    "SearchPage",
    "SearchParams",
    "VideoDetails",
    "VideoSearchClient",
    "VideoSearchError",
    "YouTubeSearchClient",
    "kind_for_status",
    "parse_iso_duration",
]
