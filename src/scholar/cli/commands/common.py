"""Exit codes, service wiring, and argument parsing shared by CLI commands."""

from __future__ import annotations

import json
from enum import IntEnum
from functools import cached_property
from pathlib import Path
from typing import List, Optional, Sequence

from psycopg2 import Error as PsycopgError
from pydantic import TypeAdapter, ValidationError
from rich.console import Console

from scholar.config.settings import Settings, get_settings
from scholar.db.connection import DatabasePool, create_pool
from scholar.models.category import Category
from scholar.models.video import VideoUI
from scholar.services.analysis import AnalysisOrchestrator
from scholar.services.cache import AnalysisCache, build_durable_tier
from scholar.services.filters import VideoFilterService
from scholar.services.gateway import ModelGateway, UsageTracker
from scholar.services.processor import TranscriptProcessor
from scholar.services.query import QueryEnhancer
from scholar.services.transcript import TranscriptExtractor
from scholar.services.youtube import ApiKeyValidator, YouTubeSearchClient


class ExitCode(IntEnum):
    """Mapping of meaningful CLI exit codes."""

    SUCCESS = 0
    INVALID_INPUT = 1
    TRANSCRIPT_UNAVAILABLE = 2
    NETWORK_ERROR = 3
    PROCESSING_ERROR = 4
    STORAGE_ERROR = 5
    COST_LIMIT = 6


class ServiceProvider:
    """Build services on first use so every command shares one console and settings object."""

    def __init__(self, console: Console, *, settings: Optional[Settings] = None) -> None:
        self.console = console
        self._settings = settings

    @cached_property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @cached_property
    def pool(self) -> Optional[DatabasePool]:
        try:
            return create_pool(self.settings)
        except PsycopgError as exc:
            self.console.log(f"[yellow]Database unavailable, using the in-memory cache only:[/yellow] {exc}")
            return None

    @cached_property
    def usage_tracker(self) -> UsageTracker:
        tracker = UsageTracker(path=self.settings.usage_state_path, console=self.console)
        tracker.load()
        return tracker

    @cached_property
    def gateway(self) -> ModelGateway:
        return ModelGateway(settings=self.settings, console=self.console, usage_tracker=self.usage_tracker)

    @cached_property
    def analysis_cache(self) -> AnalysisCache:
        return AnalysisCache(
            settings=self.settings,
            console=self.console,
            durable=build_durable_tier(self.pool, console=self.console),
        )

    @cached_property
    def orchestrator(self) -> AnalysisOrchestrator:
        return AnalysisOrchestrator(gateway=self.gateway, cache=self.analysis_cache, console=self.console)

    @cached_property
    def extractor(self) -> TranscriptExtractor:
        return TranscriptExtractor(settings=self.settings, console=self.console)

    @cached_property
    def processor(self) -> TranscriptProcessor:
        return TranscriptProcessor(console=self.console)

    @cached_property
    def query_enhancer(self) -> QueryEnhancer:
        return QueryEnhancer(console=self.console)

    def search_client(self) -> YouTubeSearchClient:
        """Return a new client; callers close it inside the event loop that used it."""

        return YouTubeSearchClient(settings=self.settings, console=self.console)

    def filter_service(self, search_client: Optional[YouTubeSearchClient] = None) -> VideoFilterService:
        return VideoFilterService(
            settings=self.settings,
            console=self.console,
            search_client=search_client,
            query_enhancer=self.query_enhancer,
        )

    def key_validator(self) -> ApiKeyValidator:
        return ApiKeyValidator(console=self.console)


def parse_category(value: str) -> Category:
    """Parse ``NAME[:DESCRIPTION[:CRITERIA]]`` into an ad-hoc category."""

    parts = [part.strip() for part in value.split(":", 2)]
    if not parts[0]:
        raise ValueError(f"Category name is required: {value!r}")
    name = parts[0]
    description = parts[1] if len(parts) > 1 else ""
    criteria = parts[2] if len(parts) > 2 else ""
    return Category(name=name, description=description, criteria=criteria)


def parse_categories(values: Optional[Sequence[str]]) -> List[Category]:
    return [parse_category(value) for value in values or []]


_VIDEO_LIST = TypeAdapter(List[VideoUI])


def load_videos(path: Path) -> List[VideoUI]:
    """Read a JSON array of videos from ``path``."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Could not read videos from {path}: {exc}") from exc
    try:
        return _VIDEO_LIST.validate_python(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid video data in {path}: {exc.error_count()} validation errors") from exc


__all__ = [
    "ExitCode",
    "ServiceProvider",
    "load_videos",
    "parse_categories",
    "parse_category",
]
