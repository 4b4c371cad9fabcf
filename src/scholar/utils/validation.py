"""Validation helpers for YouTube URLs, identifiers, API keys, and error text."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

from scholar.models.ids import VideoId


class InvalidYouTubeURLError(ValueError):
    """Raised when a provided URL is not a valid YouTube video link."""


_VIDEO_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]{11}$")
_API_KEY_PATTERN = re.compile(r"^AIza[A-Za-z0-9_-]{35}$")


def extract_video_id(url: str) -> VideoId:
    """Extract and validate a YouTube video ID from a URL or raw ID string."""

    stripped = url.strip()
    if _VIDEO_ID_PATTERN.fullmatch(stripped):
        return VideoId(stripped)

    parsed = urlparse(stripped)
    if parsed.netloc in {"youtu.be", "www.youtu.be"}:
        candidate = parsed.path.lstrip("/")
        if _VIDEO_ID_PATTERN.fullmatch(candidate):
            return VideoId(candidate)

    if parsed.netloc.endswith("youtube.com"):
        if parsed.path == "/watch":
            candidate_list = parse_qs(parsed.query).get("v", [])
            if candidate_list and _VIDEO_ID_PATTERN.fullmatch(candidate_list[0]):
                return VideoId(candidate_list[0])
        else:
            # /embed/<id>, /shorts/<id>, /live/<id>
            embedded_match = re.search(r"/(?:embed|shorts|live)/([0-9A-Za-z_-]{11})", parsed.path)
            if embedded_match:
                return VideoId(embedded_match.group(1))

    raise InvalidYouTubeURLError(f"Invalid YouTube URL or video ID: {url!r}")


def is_valid_api_key_format(key: str) -> bool:
    """Return ``True`` when ``key`` has the shape of a Google API key."""

    return bool(_API_KEY_PATTERN.fullmatch(key.strip()))


MAX_ERROR_MESSAGE_LENGTH = 300

_SECRET_PATTERNS = (
    (re.compile(r"AIza[0-9A-Za-z_-]{35}"), "AIza***"),
    (re.compile(r"\bsk-[0-9A-Za-z_-]+"), "sk-***"),
    (re.compile(r"\b(key|token)=[^&\s]+", re.IGNORECASE), r"\1=***"),
)


def sanitize_error_message(message: str, *, max_length: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Redact API keys and credential query values from ``message`` and cap its length."""

    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    if len(message) > max_length:
        message = message[: max(0, max_length - 3)] + "..."
    return message


__all__ = [
    "InvalidYouTubeURLError",
    "MAX_ERROR_MESSAGE_LENGTH",
    "extract_video_id",
    "is_valid_api_key_format",
    "sanitize_error_message",
]
