"""Transcript acquisition with language selection, retries, and quality scoring."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph
from rich.console import Console
from youtube_transcript_api import YouTubeTranscriptApi
from youtube_transcript_api._errors import CouldNotRetrieveTranscript

from scholar.config.settings import Settings, get_settings
from scholar.models.ids import VideoId
from scholar.models.transcript import (
    ExtractionResult,
    RawTranscriptData,
    TranscriptMetadata,
    TranscriptQuality,
    TranscriptSegment,
)
from scholar.utils.text import collapse_whitespace, count_words

DEFAULT_MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0
PROCESSING_VERSION = "1.0.0"

_BRACKETED = re.compile(r"\[.*?\]")
_PARENTHETICAL = re.compile(r"\(.*?\)")
_MUSIC_NOTES = re.compile(r"♪.*?♪")

Sleeper = Callable[[float], Awaitable[None]]


class TranscriptExtractionError(RuntimeError):
    """Raised when no usable transcript can be produced for a video."""


@dataclass(slots=True, frozen=True)
class AvailableTranscript:
    """Caption track advertised for a video."""

    language_code: str
    language: str
    is_generated: bool


@dataclass(slots=True, frozen=True)
class RawCaption:
    """Caption line as returned by the remote transcript service (seconds)."""

    start: float
    duration: float
    text: str


class TranscriptSource(Protocol):
    """Remote transcript service."""

    def list_transcripts(self, video_id: str) -> Sequence[AvailableTranscript]:
        """Return caption tracks available for ``video_id``."""

    def fetch(self, video_id: str, language_code: str) -> Sequence[RawCaption]:
        """Return caption lines for one track."""


class YouTubeTranscriptSource:
    """:class:`TranscriptSource` backed by ``youtube-transcript-api``."""

    def __init__(self, api: Optional[YouTubeTranscriptApi] = None) -> None:
        self._api = api or YouTubeTranscriptApi()

    def list_transcripts(self, video_id: str) -> List[AvailableTranscript]:
        return [
            AvailableTranscript(
                language_code=transcript.language_code,
                language=transcript.language,
                is_generated=transcript.is_generated,
            )
            for transcript in self._api.list(video_id)
        ]

    def fetch(self, video_id: str, language_code: str) -> List[RawCaption]:
        fetched = self._api.fetch(video_id, languages=(language_code,))
        return [
            RawCaption(start=float(item["start"]), duration=float(item["duration"]), text=item["text"])
            for item in fetched.to_raw_data()
        ]


class ExtractionState(TypedDict, total=False):
    """Workflow state propagated through the retry graph."""

    video_id: str
    language: Optional[str]
    fallback_languages: Sequence[str]
    max_attempts: int
    attempt: int
    data: Optional[RawTranscriptData]
    error: Optional[str]


class TranscriptExtractor:
    """Fetch, select, clean, and grade YouTube transcripts."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        source: Optional[TranscriptSource] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._source = source or YouTubeTranscriptSource()
        self._sleep = sleep or asyncio.sleep
        self._workflow = self._build_workflow()

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def extract_transcript(
        self,
        video_id: VideoId,
        *,
        language: Optional[str] = None,
        fallback_languages: Sequence[str] = (),
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> ExtractionResult:
        """Extract a transcript, retrying with a linearly increasing delay.

        Parameters
        ----------
        video_id:
            Canonical 11-character YouTube video identifier.
        language:
            Preferred language code, defaulting to the configured transcript language;
            ``en`` also matches ``en-GB`` and similar variants.
        fallback_languages:
            Language codes tried in order when the preferred language is unavailable.
        max_retries:
            Number of retries after the first attempt.

        Returns
        -------
        ExtractionResult
            ``success=True`` with the transcript and the number of retries used, or
            ``success=False`` with the last error once every attempt has failed.
        """

        max_attempts = max(0, max_retries) + 1
        state: ExtractionState = {
            "video_id": video_id,
            "language": language or self._settings.default_transcript_language,
            "fallback_languages": tuple(fallback_languages),
            "max_attempts": max_attempts,
            "attempt": 0,
            "data": None,
            "error": None,
        }
        final_state = await self._workflow.ainvoke(
            state,
            config={"recursion_limit": max_attempts * 2 + 5},
        )

        data = final_state.get("data")
        attempts = final_state.get("attempt", max_attempts)
        if data is not None:
            return ExtractionResult(success=True, data=data, retry_count=attempts - 1)

        message = (
            f"Failed to extract transcript after {attempts} attempts. "
            f"Last error: {final_state.get('error') or 'unknown error'}"
        )
        self._console.log(f"[red]{message}[/red] (video_id={video_id})")
        return ExtractionResult(success=False, error=message, retry_count=attempts - 1)

    def has_transcript(self, video_id: VideoId) -> bool:
        """Return ``True`` when at least one caption track exists for the video."""

        return bool(self.get_available_languages(video_id))

    def get_available_languages(self, video_id: VideoId) -> List[str]:
        """Return the language codes of every caption track for the video."""

        try:
            return [track.language_code for track in self._source.list_transcripts(video_id)]
        except CouldNotRetrieveTranscript as exc:
            self._console.log(f"[yellow]No transcripts listed for {video_id}:[/yellow] {exc}")
            return []

    @staticmethod
    def create_metadata(raw: RawTranscriptData) -> TranscriptMetadata:
        """Summarise an extracted transcript."""

        total_duration = raw.segments[-1].end if raw.segments else 0.0
        return TranscriptMetadata(
            total_duration=total_duration,
            segment_count=len(raw.segments),
            word_count=count_words(raw.full_text),
            language=raw.language,
            quality=raw.quality,
            processing_version=PROCESSING_VERSION,
        )

    # ------------------------------------------------------------------ #
    # Retry workflow                                                      #
    # ------------------------------------------------------------------ #
    def _build_workflow(self) -> object:
        """Construct the LangGraph workflow that drives extraction retries."""

        graph = StateGraph(ExtractionState)
        graph.add_node("extract", self._extract_node)
        graph.add_node("backoff", self._backoff_node)
        graph.add_edge(START, "extract")
        graph.add_conditional_edges(
            "extract",
            self._route_post_extract,
            {
                "complete": END,
                "retry": "backoff",
                "fail": END,
            },
        )
        graph.add_edge("backoff", "extract")
        return graph.compile()

    async def _extract_node(self, state: ExtractionState) -> ExtractionState:
        attempt = state.get("attempt", 0) + 1
        video_id = state["video_id"]
        try:
            data = await asyncio.to_thread(
                self._extract_once,
                VideoId(video_id),
                state.get("language"),
                state.get("fallback_languages", ()),
            )
        except Exception as exc:
            self._console.log(
                f"[yellow]Transcript attempt {attempt}/{state['max_attempts']} failed:[/yellow] "
                f"{exc} (video_id={video_id})"
            )
            return {"attempt": attempt, "data": None, "error": str(exc)}

        self._console.log(
            f"Transcript extracted (video_id={video_id}, language={data.language}, "
            f"segments={len(data.segments)}, quality={data.quality.value})"
        )
        return {"attempt": attempt, "data": data, "error": None}

    async def _backoff_node(self, state: ExtractionState) -> ExtractionState:
        delay = RETRY_DELAY_SECONDS * state.get("attempt", 1)
        self._console.log(f"[yellow]Retrying transcript extraction in {delay:.1f}s[/yellow]")
        await self._sleep(delay)
        return {}

    def _route_post_extract(self, state: ExtractionState) -> str:
        if state.get("data") is not None:
            return "complete"
        if state.get("attempt", 0) >= state["max_attempts"]:
            return "fail"
        return "retry"

    # ------------------------------------------------------------------ #
    # Internal helpers                                                    #
    # ------------------------------------------------------------------ #
    def _extract_once(
        self,
        video_id: VideoId,
        language: Optional[str],
        fallback_languages: Sequence[str],
    ) -> RawTranscriptData:
        available = list(self._source.list_transcripts(video_id))
        if not available:
            raise TranscriptExtractionError(f"No transcripts available for video {video_id}")

        chosen = select_transcript(available, language, fallback_languages)
        captions = self._source.fetch(video_id, chosen.language_code)
        segments = clean_captions(captions)
        if not segments:
            raise TranscriptExtractionError(f"Transcript for video {video_id} is empty after cleaning")

        full_text = " ".join(segment.text for segment in segments)
        return RawTranscriptData(
            video_id=video_id,
            language=chosen.language_code,
            is_auto_generated=chosen.is_generated,
            segments=tuple(segments),
            full_text=full_text,
            quality=assess_quality(segments, full_text),
            extracted_at=datetime.now(timezone.utc),
            source="youtube_captions",
        )


def _matches_language(code: str, wanted: str) -> bool:
    return code == wanted or code.startswith(f"{wanted}-")


def select_transcript(
    available: Sequence[AvailableTranscript],
    language: Optional[str] = None,
    fallback_languages: Sequence[str] = (),
) -> AvailableTranscript:
    """Pick the best caption track.

    Order: explicit language, fallbacks in order, English, first manual track, first track.
    """

    if not available:
        raise TranscriptExtractionError("No transcripts available")

    for wanted in [*([language] if language else []), *fallback_languages, "en"]:
        for track in available:
            if _matches_language(track.language_code, wanted):
                return track

    for track in available:
        if not track.is_generated:
            return track
    return available[0]


def clean_caption_text(text: str) -> str:
    """Strip stage directions, sound cues, and music notes."""

    text = _BRACKETED.sub("", text)
    text = _PARENTHETICAL.sub("", text)
    text = _MUSIC_NOTES.sub("", text)
    return collapse_whitespace(text)


def clean_captions(captions: Sequence[RawCaption]) -> List[TranscriptSegment]:
    """Convert raw captions to cleaned segments, dropping those left empty."""

    segments: List[TranscriptSegment] = []
    for caption in captions:
        text = clean_caption_text(caption.text)
        if not text:
            continue
        segments.append(
            TranscriptSegment(start=max(0.0, caption.start), duration=max(0.0, caption.duration), text=text)
        )
    return segments


def assess_quality(segments: Sequence[TranscriptSegment], full_text: str) -> TranscriptQuality:
    """Grade a transcript from its speaking rate, segment density, and length."""

    word_count = count_words(full_text)
    total_minutes = segments[-1].end / 60 if segments else 0.0
    words_per_minute = word_count / total_minutes if total_minutes > 0 else 0.0
    words_per_segment = word_count / len(segments) if segments else 0.0

    score = 0
    if 100 <= words_per_minute <= 200:
        score += 2
    elif 50 <= words_per_minute <= 250:
        score += 1

    if 3 <= words_per_segment <= 10:
        score += 2
    elif 2 <= words_per_segment <= 15:
        score += 1

    if word_count >= 100:
        score += 1
    if word_count >= 500:
        score += 1

    if score >= 5:
        return TranscriptQuality.HIGH
    if score >= 3:
        return TranscriptQuality.MEDIUM
    return TranscriptQuality.LOW


__all__ = [
    "AvailableTranscript",
    "RawCaption",
    "TranscriptExtractionError",
    "TranscriptExtractor",
    "TranscriptSource",
    "YouTubeTranscriptSource",
    "assess_quality",
    "clean_caption_text",
    "clean_captions",
    "select_transcript",
]
