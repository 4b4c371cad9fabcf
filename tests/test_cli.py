from __future__ import annotations

import json
from pathlib import Path

import pytest
import typer
from rich.console import Console
from typer.testing import CliRunner

from scholar.cli.commands.common import ExitCode, ServiceProvider, load_videos, parse_category
from scholar.cli.main import create_app
from scholar.config.settings import Settings

runner = CliRunner()


@pytest.fixture
def app(console: Console, settings: Settings) -> typer.Typer:
    return create_app(console, ServiceProvider(console, settings=settings))


def _write_videos(path: Path) -> Path:
    videos = [
        {"id": "aaaaaaaaaaa", "title": "Python in 3 minutes", "published_at": "2026-01-01T00:00:00Z", "duration": "3:00"},
        {"id": "bbbbbbbbbbb", "title": "Deep dive", "published_at": "2026-01-02T00:00:00Z", "duration": "45:00"},
        {"id": "ccccccccccc", "title": "Unknown length", "published_at": "2026-01-03T00:00:00Z"},
    ]
    path.write_text(json.dumps(videos), encoding="utf-8")
    return path


def test_enhance_query_emits_json(app: typer.Typer) -> None:
    result = runner.invoke(
        app,
        ["enhance-query", "arrays", "--category", "Python Basics:intro to programming:variables loops functions", "--json"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["enhancement"]["enhanced_query"] == "arrays python basics"
    assert payload["enhancement"]["strategy"] == "keyword_boost"
    assert payload["searchParams"]["order"] == "viewCount"
    assert payload["suggestions"][0] == "Python Basics tutorial"


def test_filter_local_file(app: typer.Typer, tmp_path: Path) -> None:
    source = _write_videos(tmp_path / "videos.json")

    result = runner.invoke(app, ["filter", str(source), "--duration", "short", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["source"] == "local"
    assert [video["id"] for video in payload["videos"]] == ["aaaaaaaaaaa"]


def test_filter_preset_supplies_filters_and_options_refine_it(app: typer.Typer, tmp_path: Path) -> None:
    source = _write_videos(tmp_path / "videos.json")

    preset = runner.invoke(app, ["filter", str(source), "--preset", "quick-watch", "--json"])
    refined = runner.invoke(app, ["filter", str(source), "--preset", "Quick Watch", "--duration", "long", "--json"])

    assert preset.exit_code == 0, preset.output
    assert [video["id"] for video in json.loads(preset.output)["videos"]] == ["aaaaaaaaaaa"]
    assert refined.exit_code == 0, refined.output
    assert [video["id"] for video in json.loads(refined.output)["videos"]] == ["bbbbbbbbbbb"]


def test_filter_rejects_unknown_presets(app: typer.Typer, tmp_path: Path) -> None:
    source = _write_videos(tmp_path / "videos.json")

    result = runner.invoke(app, ["filter", str(source), "--preset", "longest"])

    assert result.exit_code == ExitCode.INVALID_INPUT


def test_filter_rejects_invalid_ranges(app: typer.Typer, tmp_path: Path) -> None:
    source = _write_videos(tmp_path / "videos.json")

    result = runner.invoke(app, ["filter", str(source), "--min-relevance", "150"])

    assert result.exit_code == ExitCode.INVALID_INPUT


def test_filter_requires_a_source(app: typer.Typer) -> None:
    result = runner.invoke(app, ["filter"])

    assert result.exit_code == ExitCode.INVALID_INPUT


def test_search_without_key_is_a_network_error(app: typer.Typer) -> None:
    result = runner.invoke(app, ["search", "python decorators"])

    assert result.exit_code == ExitCode.NETWORK_ERROR


def test_validate_key_rejects_malformed_keys(app: typer.Typer) -> None:
    result = runner.invoke(app, ["validate-key", "not-a-key", "--json"])

    assert result.exit_code == ExitCode.INVALID_INPUT
    payload = json.loads(result.output)
    assert payload[0]["status"] == "invalid_format"


def test_usage_reports_empty_counters(app: typer.Typer) -> None:
    result = runner.invoke(app, ["usage", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["daily_usage"] == 0.0
    assert payload["daily_limit"] == 5.0
    assert payload["remaining_daily_budget"] == 5.0


def test_analyze_rejects_invalid_urls(app: typer.Typer) -> None:
    result = runner.invoke(app, ["analyze", "https://vimeo.com/1234"])

    assert result.exit_code == ExitCode.INVALID_INPUT


def test_cache_stats_start_empty(app: typer.Typer) -> None:
    result = runner.invoke(app, ["cache-stats", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["memory_entries"] == 0


def test_parse_category_and_load_videos(tmp_path: Path) -> None:
    category = parse_category("Rust : systems programming : ownership borrowing")

    assert (category.name, category.description, category.criteria) == (
        "Rust",
        "systems programming",
        "ownership borrowing",
    )
    with pytest.raises(ValueError):
        parse_category(":no name")

    broken = tmp_path / "broken.json"
    broken.write_text('[{"title": "missing id"}]', encoding="utf-8")
    with pytest.raises(ValueError):
        load_videos(broken)
