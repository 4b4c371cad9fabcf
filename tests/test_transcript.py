from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Sequence

import pytest
from rich.console import Console
from youtube_transcript_api import TranscriptsDisabled

from scholar.config.settings import Settings
from scholar.models.ids import VideoId
from scholar.models.transcript import RawTranscriptData, TranscriptQuality, TranscriptSegment
from scholar.services.transcript import (
    AvailableTranscript,
    RawCaption,
    TranscriptExtractionError,
    TranscriptExtractor,
    assess_quality,
    clean_caption_text,
    clean_captions,
    select_transcript,
)
from scholar.utils.validation import (
    InvalidYouTubeURLError,
    extract_video_id,
    is_valid_api_key_format,
    sanitize_error_message,
)
from support import RecordingSleep

VIDEO_ID = VideoId("dQw4w9WgXcQ")

CAPTIONS = [
    RawCaption(start=0.0, duration=2.0, text="Hello [Music] world"),
    RawCaption(start=2.0, duration=2.0, text="♪ la la ♪"),
    RawCaption(start=4.0, duration=3.0, text="(laughs)  this is   python"),
]


class FlakySource:
    """Transcript source failing a fixed number of times before answering."""

    def __init__(self, failures: int, tracks: Sequence[AvailableTranscript] = ()) -> None:
        self.failures = failures
        self.list_calls = 0
        self.fetched: List[str] = []
        self.tracks = list(tracks) or [AvailableTranscript(language_code="en", language="English", is_generated=False)]

    def list_transcripts(self, video_id: str) -> List[AvailableTranscript]:
        self.list_calls += 1
        if self.list_calls <= self.failures:
            raise ConnectionError(f"temporary failure {self.list_calls}")
        return self.tracks

    def fetch(self, video_id: str, language_code: str) -> List[RawCaption]:
        self.fetched.append(language_code)
        return list(CAPTIONS)


class DisabledSource:
    def list_transcripts(self, video_id: str) -> List[AvailableTranscript]:
        raise TranscriptsDisabled(video_id)

    def fetch(self, video_id: str, language_code: str) -> List[RawCaption]:
        raise AssertionError("fetch should not be called")


def _extractor(source: object, console: Console, settings: Settings, sleep: RecordingSleep) -> TranscriptExtractor:
    return TranscriptExtractor(settings=settings, console=console, source=source, sleep=sleep)  # type: ignore[arg-type]


def _track(code: str, generated: bool) -> AvailableTranscript:
    return AvailableTranscript(language_code=code, language=code, is_generated=generated)


def test_extraction_retries_with_linear_backoff(console: Console, settings: Settings) -> None:
    sleep = RecordingSleep()
    source = FlakySource(failures=2)

    result = asyncio.run(_extractor(source, console, settings, sleep).extract_transcript(VIDEO_ID))

    assert result.success is True
    assert result.retry_count == 2
    assert sleep.delays == [1.0, 2.0]
    assert result.data is not None
    assert result.data.full_text == "Hello world this is python"
    assert [segment.text for segment in result.data.segments] == ["Hello world", "this is python"]
    assert result.data.language == "en"
    assert result.data.source == "youtube_captions"


def test_extraction_reports_failure_after_all_attempts(console: Console, settings: Settings) -> None:
    sleep = RecordingSleep()
    source = FlakySource(failures=10)

    result = asyncio.run(_extractor(source, console, settings, sleep).extract_transcript(VIDEO_ID, max_retries=2))

    assert result.success is False
    assert result.data is None
    assert result.error is not None
    assert result.error.startswith("Failed to extract transcript after 3 attempts")
    assert "temporary failure 3" in result.error
    assert source.list_calls == 3
    assert sleep.delays == [1.0, 2.0]


def test_extraction_uses_fallback_languages(console: Console, settings: Settings) -> None:
    source = FlakySource(failures=0, tracks=[_track("de", False), _track("fr", True)])

    result = asyncio.run(
        _extractor(source, console, settings, RecordingSleep()).extract_transcript(
            VIDEO_ID, language="pt", fallback_languages=["es", "fr"]
        )
    )

    assert result.success is True
    assert source.fetched == ["fr"]
    assert result.data is not None
    assert result.data.is_auto_generated is True


def test_available_languages_tolerate_disabled_transcripts(console: Console, settings: Settings) -> None:
    extractor = _extractor(DisabledSource(), console, settings, RecordingSleep())

    assert extractor.get_available_languages(VIDEO_ID) == []
    assert extractor.has_transcript(VIDEO_ID) is False


def test_select_transcript_preference_order() -> None:
    tracks = [_track("fr", False), _track("en-GB", True), _track("de", False)]

    assert select_transcript(tracks).language_code == "en-GB"
    assert select_transcript(tracks, "de").language_code == "de"
    assert select_transcript(tracks, "pt", ["es", "fr"]).language_code == "fr"
    assert select_transcript([_track("fr", True), _track("de", False)]).language_code == "de"
    assert select_transcript([_track("fr", True), _track("de", True)]).language_code == "fr"
    with pytest.raises(TranscriptExtractionError):
        select_transcript([])


def test_caption_cleaning_drops_annotations() -> None:
    assert clean_caption_text("[Applause] so (inaudible) we begin ♪ intro ♪ now") == "so we begin now"

    segments = clean_captions([*CAPTIONS, RawCaption(start=-1.0, duration=1.0, text="early")])

    assert [segment.text for segment in segments] == ["Hello world", "this is python", "early"]
    assert segments[-1].start == 0.0


def test_quality_reflects_rate_density_and_length() -> None:
    dense = [TranscriptSegment(start=index * 2.0, duration=2.0, text="one two three four five") for index in range(60)]
    sparse = [TranscriptSegment(start=0.0, duration=60.0, text="hello")]

    assert assess_quality(dense, " ".join(segment.text for segment in dense)) is TranscriptQuality.HIGH
    assert assess_quality(sparse, "hello") is TranscriptQuality.LOW
    assert assess_quality([], "") is TranscriptQuality.LOW


def test_metadata_summarises_raw_transcript() -> None:
    segments = (
        TranscriptSegment(start=0.0, duration=2.5, text="hello world"),
        TranscriptSegment(start=2.5, duration=4.0, text="it's python time"),
    )
    raw = RawTranscriptData(
        video_id=VIDEO_ID,
        language="en",
        is_auto_generated=False,
        segments=segments,
        full_text="hello world it's python time",
        quality=TranscriptQuality.MEDIUM,
        extracted_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )

    metadata = TranscriptExtractor.create_metadata(raw)

    assert metadata.total_duration == 6.5
    assert metadata.segment_count == 2
    assert metadata.word_count == 6
    assert metadata.quality is TranscriptQuality.MEDIUM


@pytest.mark.parametrize(
    "url",
    [
        "dQw4w9WgXcQ",
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://youtube.com/shorts/dQw4w9WgXcQ",
    ],
)
def test_extract_video_id_accepts_common_forms(url: str) -> None:
    assert extract_video_id(url) == "dQw4w9WgXcQ"


def test_extract_video_id_rejects_other_urls() -> None:
    with pytest.raises(InvalidYouTubeURLError):
        extract_video_id("https://vimeo.com/123456")
    with pytest.raises(InvalidYouTubeURLError):
        extract_video_id("https://www.youtube.com/watch?v=short")


def test_api_key_format() -> None:
    assert is_valid_api_key_format("AIza" + "B" * 35) is True
    assert is_valid_api_key_format("AIza" + "B" * 34) is False
    assert is_valid_api_key_format("not-a-key") is False


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("bad key AIza" + "C" * 35 + " used", "bad key AIza*** used"),
        ("Incorrect API key provided: sk-proj-Ab12_cd", "Incorrect API key provided: sk-***"),
        ("GET /search?q=python&key=abc123&part=snippet", "GET /search?q=python&key=***&part=snippet"),
        ("callback?TOKEN=xyz failed", "callback?TOKEN=*** failed"),
        ("task-runner failed", "task-runner failed"),
    ],
)
def test_error_messages_are_redacted(message: str, expected: str) -> None:
    assert sanitize_error_message(message) == expected


def test_error_messages_are_capped() -> None:
    capped = sanitize_error_message("x" * 50, max_length=20)

    assert capped == "x" * 17 + "..."
    assert sanitize_error_message("short", max_length=20) == "short"
