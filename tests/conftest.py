from __future__ import annotations

from pathlib import Path

import pytest
from rich.console import Console

from scholar.config.settings import Settings

_ENV_KEYS = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "YOUTUBE_API_KEY",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
    "LANGFUSE_HOST",
    "DAILY_COST_LIMIT",
    "PER_VIDEO_COST_LIMIT",
    "COST_WARNING_THRESHOLD",
    "ANALYSIS_CACHE_TTL_SECONDS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def console() -> Console:
    return Console(quiet=True)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, USAGE_STATE_PATH=str(tmp_path / "usage.json"))
