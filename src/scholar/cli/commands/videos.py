"""CLI commands for filtering, searching, and category-aware query building."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from scholar.cli.commands.common import ExitCode, ServiceProvider, load_videos, parse_categories
from scholar.models.video import (
    DEFAULT_FILTER_PRESETS,
    DatePreset,
    DurationFilter,
    DurationPreset,
    PublishedDateFilter,
    SortField,
    SortOrder,
    VideoFilters,
    VideoQuality,
    VideoSort,
    VideoUI,
    ViewCountRange,
    find_filter_preset,
)
from scholar.services.filters import FilterContext, FilterExecutionResult, FilterValidationError, VideoFilterService
from scholar.services.query import CategorySearchContext, CategorySearchResult
from scholar.services.youtube import SearchErrorKind, VideoSearchError


def register(app: typer.Typer, console: Console, services: ServiceProvider) -> None:
    """Register video filtering and search commands."""

    async def run_filters(
        videos: Sequence[VideoUI],
        filters: VideoFilters,
        sort: VideoSort,
        context: FilterContext,
    ) -> FilterExecutionResult:
        client = services.search_client() if filters.query else None
        try:
            service = services.filter_service(client)
            await service.initialize()
            return await service.apply_filters(videos, filters, sort, context)
        finally:
            if client is not None:
                await client.aclose()

    async def run_search(query: str, search_context: CategorySearchContext) -> CategorySearchResult:
        async with services.search_client() as client:
            if not client.has_api_key:
                raise VideoSearchError("YOUTUBE_API_KEY is not configured.", kind=SearchErrorKind.AUTHENTICATION)
            return await services.query_enhancer.search_with_category_enhancement(query, search_context, client)

    @app.command("filter")
    def filter_videos(  # pylint: disable=too-many-arguments,too-many-locals
        source: Optional[Path] = typer.Argument(None, help="JSON file holding an array of videos"),
        query: Optional[str] = typer.Option(None, "--query", "-q", help="Search YouTube instead of filtering locally"),
        preset_name: Optional[str] = typer.Option(
            None,
            "--preset",
            "-p",
            help="Start from a named preset; other options refine it",
        ),
        duration: DurationPreset = typer.Option(DurationPreset.ANY, "--duration", help="Duration bucket"),
        published: DatePreset = typer.Option(DatePreset.ANY, "--published", help="Upload date window"),
        min_views: Optional[int] = typer.Option(None, "--min-views", min=0, help="Minimum view count"),
        max_views: Optional[int] = typer.Option(None, "--max-views", min=0, help="Maximum view count"),
        quality: Optional[List[VideoQuality]] = typer.Option(None, "--quality", help="Accepted quality; repeatable"),
        languages: Optional[List[str]] = typer.Option(None, "--language", "-l", help="Accepted language; repeatable"),
        captions: Optional[bool] = typer.Option(None, "--captions/--no-captions", help="Require or exclude captions"),
        tags: Optional[List[str]] = typer.Option(None, "--tag", help="Required tag; repeatable"),
        min_relevance: Optional[float] = typer.Option(None, "--min-relevance", help="Minimum relevance score"),
        categories: Optional[List[str]] = typer.Option(
            None,
            "--category",
            "-c",
            help="Category as NAME[:DESCRIPTION[:CRITERIA]] used to enhance --query",
        ),
        sort_field: Optional[SortField] = typer.Option(None, "--sort", help="Sort field [default: relevance]"),
        sort_order: Optional[SortOrder] = typer.Option(None, "--order", help="Sort order [default: desc]"),
        as_json: bool = typer.Option(False, "--json", help="Emit the filter result as JSON"),
    ) -> None:
        """Filter and sort a local video list, or search YouTube with --query."""

        if source is None and not query:
            console.print("[red]Error:[/red] Provide a video file or --query.")
            raise typer.Exit(code=ExitCode.INVALID_INPUT)

        try:
            videos = load_videos(source) if source is not None else []
            selected = parse_categories(categories)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc

        base_filters, base_sort = VideoFilters(), VideoSort()
        if preset_name is not None:
            preset = find_filter_preset(preset_name)
            if preset is None:
                known = ", ".join(option.id for option in DEFAULT_FILTER_PRESETS)
                console.print(f"[red]Error:[/red] Unknown preset {preset_name!r}. Choose one of: {known}")
                raise typer.Exit(code=ExitCode.INVALID_INPUT)
            base_filters, base_sort = preset.filters, preset.sort

        overrides = {
            "query": query,
            "duration": DurationFilter(preset=duration) if duration is not DurationPreset.ANY else None,
            "published_date": PublishedDateFilter(preset=published) if published is not DatePreset.ANY else None,
            "view_count": ViewCountRange(min=min_views, max=max_views)
            if min_views is not None or max_views is not None
            else None,
            "quality": list(quality) if quality else None,
            "languages": list(languages) if languages else None,
            "has_captions": captions,
            "min_relevance_score": min_relevance,
            "tags": list(tags) if tags else None,
        }
        filters = base_filters.model_copy(
            update={field: value for field, value in overrides.items() if value is not None}, deep=True
        )
        sort = VideoSort(field=sort_field or base_sort.field, order=sort_order or base_sort.order)
        context = FilterContext(query=query, selected_categories=selected)

        try:
            result = asyncio.run(run_filters(videos, filters, sort, context))
        except FilterValidationError as exc:
            for error in exc.errors:
                console.print(f"[red]Error:[/red] {error}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc
        except VideoSearchError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.NETWORK_ERROR) from exc

        if as_json:
            typer.echo(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
            return

        console.print(_video_table(result.videos, title=VideoFilterService.describe_filters(filters)))
        console.print(
            f"[green]{result.total_count} videos[/green] via {result.source.value} "
            f"in {result.metrics.total_execution_time * 1000:.1f} ms"
        )

    @app.command("search")
    def search(
        query: str = typer.Argument(..., help="Free-text search query"),
        categories: Optional[List[str]] = typer.Option(
            None,
            "--category",
            "-c",
            help="Category as NAME[:DESCRIPTION[:CRITERIA]]; repeat for several",
        ),
        max_results: int = typer.Option(25, "--max-results", min=1, max=50, help="Number of results"),
        enhance: bool = typer.Option(True, "--enhance/--no-enhance", help="Append category keywords to the query"),
        as_json: bool = typer.Option(False, "--json", help="Emit search results as JSON"),
    ) -> None:
        """Search YouTube with a category-enhanced query."""

        try:
            selected = parse_categories(categories)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc

        search_context = CategorySearchContext(
            selected_categories=selected,
            enhance_query=enhance,
            max_results=max_results,
        )
        try:
            result = asyncio.run(run_search(query, search_context))
        except VideoSearchError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.NETWORK_ERROR) from exc

        if as_json:
            typer.echo(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
            return

        console.print(
            f"Query [bold]{result.enhancement.enhanced_query}[/bold] ({result.enhancement.strategy.value})"
        )
        table = Table(title=f"{len(result.page.items)} results")
        table.add_column("Video ID", style="cyan")
        table.add_column("Title")
        table.add_column("Channel")
        table.add_column("Categories", style="green")
        for item in result.page.items:
            table.add_row(item.video_id, item.title, item.channel_title, ", ".join(item.category_ids))
        console.print(table)

    @app.command("enhance-query")
    def enhance_query(
        query: str = typer.Argument(..., help="Free-text search query"),
        categories: List[str] = typer.Option(
            ...,
            "--category",
            "-c",
            help="Category as NAME[:DESCRIPTION[:CRITERIA]]; repeat for several",
        ),
        as_json: bool = typer.Option(False, "--json", help="Emit the enhancement as JSON"),
    ) -> None:
        """Show how category keywords would rewrite a query."""

        try:
            selected = parse_categories(categories)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc

        enhancer = services.query_enhancer
        enhancement = enhancer.enhance_search_query(query, selected)
        params = enhancer.build_category_search_params(selected)

        if as_json:
            payload = {
                "enhancement": enhancement.model_dump(mode="json"),
                "searchParams": params.model_dump(mode="json"),
                "suggestions": enhancer.get_search_suggestions(selected),
            }
            typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
            return

        table = Table(show_header=False, box=None)
        table.add_row("Original", enhancement.original_query)
        table.add_row("Enhanced", f"[bold]{enhancement.enhanced_query}[/bold]")
        table.add_row("Strategy", enhancement.strategy.value)
        table.add_row("Primary", ", ".join(enhancement.extracted_keywords.primary))
        table.add_row("Criteria", ", ".join(enhancement.extracted_keywords.criteria))
        table.add_row("Order", params.order)
        table.add_row("Duration", params.video_duration or "any")
        console.print(table)
        _print_suggestions(console, enhancer.get_search_suggestions(selected))


def _video_table(videos: Sequence[VideoUI], *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Video ID", style="cyan")
    table.add_column("Title")
    table.add_column("Duration", justify="right")
    table.add_column("Views", justify="right")
    table.add_column("Relevance", justify="right", style="green")
    for video in videos:
        table.add_row(video.id, video.title, video.duration, f"{video.view_count:,}", f"{video.relevance_score:.0f}")
    return table


def _print_suggestions(console: Console, suggestions: Sequence[str]) -> None:
    if suggestions:
        console.print(f"[bold]Suggestions:[/bold] {', '.join(suggestions)}")


__all__ = ["register"]
