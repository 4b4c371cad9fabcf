"""Transcript normalisation and chunking ahead of model analysis."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from rich.console import Console

from scholar.models.transcript import (
    ProcessingFlags,
    RawTranscriptData,
    SegmentSummary,
    TranscriptChunk,
    TranscriptForAnalysis,
    TranscriptSegment,
)
from scholar.utils.text import collapse_whitespace, count_words

DEFAULT_MIN_SEGMENT_LENGTH = 3
WORDS_PER_MINUTE_READING = 200
DEFAULT_MAX_WORDS_PER_CHUNK = 500
DEFAULT_OVERLAP_WORDS = 50

_FILLERS = re.compile(r"\b(?:um|uh|ah|er)\b", re.IGNORECASE)
_REPEATED_HEDGES = re.compile(r"\b(you know|like|so)(?:\s+\1\b)+", re.IGNORECASE)
_REPEATED_DOTS = re.compile(r"\.{2,}")
_REPEATED_COMMAS = re.compile(r",{2,}")
_MUSIC_MARKERS = (re.compile(r"\[[^\]]*music[^\]]*\]"), re.compile(r"♪.*♪"))
_SOUND_MARKERS = (
    re.compile(r"\[(?:applause|laughter)\]"),
    re.compile(r"\[[^\]]*sound[^\]]*\]"),
    re.compile(r"\([^)]*sound[^)]*\)"),
)
_ANNOTATIONS = re.compile(r"\[.*?\]|\(.*?\)")
_SENTENCE_BREAK = re.compile(r"[.!?]+")


@dataclass(slots=True)
class _ChunkBuilder:
    segments: List[TranscriptSegment] = field(default_factory=list)
    indices: List[int] = field(default_factory=list)
    word_count: int = 0

    def add(self, index: int, segment: TranscriptSegment, words: int) -> None:
        self.segments.append(segment)
        self.indices.append(index)
        self.word_count += words

    def build(self) -> TranscriptChunk:
        start_time = self.segments[0].start
        return TranscriptChunk(
            text=" ".join(segment.text for segment in self.segments),
            start_time=start_time,
            end_time=self.segments[-1].end,
            segment_indices=list(self.indices),
        )

    def tail(self, overlap_words: int) -> "_ChunkBuilder":
        """Return a builder seeded with trailing segments covering ``overlap_words``."""

        carried = _ChunkBuilder()
        position = len(self.segments) - 1
        while position >= 0 and carried.word_count < overlap_words:
            segment = self.segments[position]
            carried.segments.insert(0, segment)
            carried.indices.insert(0, self.indices[position])
            carried.word_count += count_words(segment.text)
            position -= 1
        return carried


class TranscriptProcessor:
    """Clean, merge, filter, and chunk transcripts for model consumption."""

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    def process_for_analysis(
        self,
        raw: RawTranscriptData,
        *,
        clean_text: bool = True,
        merge_short_segments: bool = True,
        min_segment_length: int = DEFAULT_MIN_SEGMENT_LENGTH,
        remove_music: bool = False,
        remove_sound_effects: bool = False,
    ) -> TranscriptForAnalysis:
        """Project an extracted transcript into analysis-ready form.

        Parameters
        ----------
        raw:
            Transcript produced by the extractor. It is never modified.
        clean_text:
            Strip filler words and punctuation noise from the analysis text.
        merge_short_segments:
            Greedily merge segments shorter than ``min_segment_length`` words.
        min_segment_length:
            Word threshold used by the merge pass.
        remove_music, remove_sound_effects:
            Drop segments that only carry music or sound-effect annotations.

        Returns
        -------
        TranscriptForAnalysis
            Processed text, segments, and word statistics with flags describing which
            passes ran.
        """

        segments: List[TranscriptSegment] = list(raw.segments)
        text = raw.full_text
        flags = ProcessingFlags()

        if clean_text:
            text = self.clean_text_for_analysis(text)
            flags.cleaned = True

        if merge_short_segments:
            segments = self.merge_short_segments(segments, min_segment_length)
            flags.merged = True

        if remove_music or remove_sound_effects:
            segments = self.filter_segments(
                segments,
                remove_music=remove_music,
                remove_sound_effects=remove_sound_effects,
            )
            text = " ".join(segment.text for segment in segments)
            if clean_text:
                text = self.clean_text_for_analysis(text)
            flags.filtered = True

        word_count = count_words(text)
        return TranscriptForAnalysis(
            text=text,
            segments=segments,
            word_count=word_count,
            estimated_read_time=self.calculate_read_time(word_count),
            quality=raw.quality,
            processing_flags=flags,
        )

    def create_chunks_for_ai(
        self,
        segments: Sequence[TranscriptSegment],
        *,
        max_words_per_chunk: int = DEFAULT_MAX_WORDS_PER_CHUNK,
        overlap_words: int = DEFAULT_OVERLAP_WORDS,
    ) -> List[TranscriptChunk]:
        """Split segments into overlapping windows of at most ``max_words_per_chunk`` words.

        Each new window starts with trailing segments of the previous one until at least
        ``overlap_words`` words are carried over, so context spanning a boundary is seen
        by both requests. A single segment longer than the limit forms its own chunk.
        """

        chunks: List[TranscriptChunk] = []
        current = _ChunkBuilder()

        for index, segment in enumerate(segments):
            words = count_words(segment.text)
            if current.segments and current.word_count + words > max_words_per_chunk:
                chunks.append(current.build())
                current = current.tail(overlap_words) if overlap_words > 0 else _ChunkBuilder()
                # Never let the carried overlap alone overflow the next window.
                while current.segments and current.word_count + words > max_words_per_chunk:
                    current.word_count -= count_words(current.segments.pop(0).text)
                    current.indices.pop(0)
            current.add(index, segment, words)

        if current.segments:
            chunks.append(current.build())
        return chunks

    @staticmethod
    def clean_text_for_analysis(text: str) -> str:
        """Remove fillers, repeated hedges, and duplicated punctuation."""

        text = collapse_whitespace(text)
        text = _FILLERS.sub("", text)
        text = _REPEATED_HEDGES.sub(r"\1", text)
        text = _REPEATED_DOTS.sub(".", text)
        text = _REPEATED_COMMAS.sub(",", text)
        return collapse_whitespace(text)

    @staticmethod
    def merge_short_segments(
        segments: Sequence[TranscriptSegment],
        min_length: int = DEFAULT_MIN_SEGMENT_LENGTH,
    ) -> List[TranscriptSegment]:
        """Greedy single pass merging segments with fewer than ``min_length`` words.

        A segment joins the running accumulator when either of them is short. The merged
        span always ends where the last absorbed segment ends.
        """

        merged: List[TranscriptSegment] = []
        current: Optional[TranscriptSegment] = None

        for segment in segments:
            if current is None:
                current = segment
                continue
            if count_words(segment.text) < min_length or count_words(current.text) < min_length:
                current = current.model_copy(
                    update={
                        "duration": max(0.0, segment.end - current.start),
                        "text": f"{current.text} {segment.text}".strip(),
                    }
                )
            else:
                merged.append(current)
                current = segment

        if current is not None:
            merged.append(current)
        return merged

    @staticmethod
    def filter_segments(
        segments: Sequence[TranscriptSegment],
        *,
        remove_music: bool = False,
        remove_sound_effects: bool = False,
    ) -> List[TranscriptSegment]:
        """Drop music or sound-effect segments and those without spoken words."""

        kept: List[TranscriptSegment] = []
        for segment in segments:
            lowered = segment.text.lower()
            if remove_music and ("♪" in lowered or "♫" in lowered or _matches_any(_MUSIC_MARKERS, lowered)):
                continue
            if remove_sound_effects and _matches_any(_SOUND_MARKERS, lowered):
                continue
            if not _ANNOTATIONS.sub("", lowered).strip():
                continue
            kept.append(segment)
        return kept

    @staticmethod
    def calculate_read_time(word_count: int) -> int:
        """Return reading time in whole minutes, never below one."""

        return max(1, round(word_count / WORDS_PER_MINUTE_READING))

    @staticmethod
    def create_segment_summary(segments: Sequence[TranscriptSegment]) -> SegmentSummary:
        """Summarise segment count, coverage, and speaking rate."""

        total_duration = segments[-1].end if segments else 0.0
        word_count = sum(count_words(segment.text) for segment in segments)
        return SegmentSummary(
            total_segments=len(segments),
            total_duration=total_duration,
            average_segment_length=total_duration / len(segments) if segments else 0.0,
            word_count=word_count,
            speaking_rate=word_count / (total_duration / 60) if total_duration > 0 else 0.0,
        )

    @staticmethod
    def extract_key_phrases(text: str, max_phrases: int = 10) -> List[str]:
        """Return the highest scoring sentences, favouring long and wordy ones."""

        scored: List[tuple[float, str]] = []
        for sentence in _SENTENCE_BREAK.split(text):
            sentence = sentence.strip()
            if len(sentence) <= 10:
                continue
            words = sentence.split()
            score = len(words) * 0.7 + sum(1 for word in words if len(word) > 4) * 0.3
            scored.append((score, sentence))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [sentence for _, sentence in scored[:max_phrases]]


def _matches_any(patterns: Sequence[re.Pattern[str]], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


__all__ = [
    "DEFAULT_MAX_WORDS_PER_CHUNK",
    "DEFAULT_MIN_SEGMENT_LENGTH",
    "DEFAULT_OVERLAP_WORDS",
    "TranscriptProcessor",
]
