"""CLI commands for transcript extraction and video analysis."""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from scholar.cli.commands.common import ExitCode, ServiceProvider, parse_categories
from scholar.models.analysis import AnalysisDepth, AnalysisOptions, AnalysisRequest, AnalysisResult
from scholar.models.ids import VideoId
from scholar.models.transcript import RawTranscriptData
from scholar.services.gateway import CostLimitExceededError, ModelGatewayError
from scholar.utils.validation import InvalidYouTubeURLError, extract_video_id


class TranscriptUnavailableError(RuntimeError):
    """Raised when no transcript could be extracted for a video."""


def register(app: typer.Typer, console: Console, services: ServiceProvider) -> None:
    """Register transcript and analysis commands."""

    async def fetch_transcript(video_id: VideoId, language: Optional[str]) -> RawTranscriptData:
        result = await services.extractor.extract_transcript(video_id, language=language)
        if not result.success or result.data is None:
            raise TranscriptUnavailableError(result.error or f"No transcript available for {video_id}")
        return result.data

    async def analysis_pipeline(
        *,
        video_id: VideoId,
        category_specs: List[str],
        depth: AnalysisDepth,
        language: Optional[str],
        max_cost: Optional[float],
        skip_insights: bool,
    ) -> AnalysisResult:
        raw = await fetch_transcript(video_id, language)
        processed = services.processor.process_for_analysis(raw)
        request = AnalysisRequest(
            video_id=video_id,
            transcript=processed.text,
            categories=[category.to_ref() for category in parse_categories(category_specs)],
            depth=depth,
            options=AnalysisOptions(include_insights=not skip_insights, max_cost=max_cost),
        )
        return await services.orchestrator.analyze_video(request)

    @app.command("transcript")
    def transcript(
        url: str = typer.Argument(..., help="YouTube video URL or ID"),
        language: Optional[str] = typer.Option(None, "--language", "-l", help="Preferred transcript language"),
        as_json: bool = typer.Option(False, "--json", help="Emit the processed transcript as JSON"),
    ) -> None:
        """Extract and clean a video's captions."""

        try:
            video_id = extract_video_id(url)
        except InvalidYouTubeURLError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc

        try:
            raw = asyncio.run(fetch_transcript(video_id, language))
        except TranscriptUnavailableError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.TRANSCRIPT_UNAVAILABLE) from exc

        processed = services.processor.process_for_analysis(raw)
        metadata = services.extractor.create_metadata(raw)

        if as_json:
            payload = {
                "metadata": metadata.model_dump(mode="json"),
                "transcript": processed.model_dump(mode="json"),
            }
            typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
            return

        summary = Table(show_header=False, box=None)
        summary.add_row("Video", video_id)
        summary.add_row("Language", raw.language + (" (auto-generated)" if raw.is_auto_generated else ""))
        summary.add_row("Quality", raw.quality.value)
        summary.add_row("Segments", str(metadata.segment_count))
        summary.add_row("Words", str(processed.word_count))
        summary.add_row("Read time", f"{processed.estimated_read_time} min")
        console.print(Panel.fit(summary, title="Transcript"))
        console.print(processed.text or "<empty transcript>")

    @app.command("analyze")
    def analyze(  # pylint: disable=too-many-arguments
        url: str = typer.Argument(..., help="YouTube video URL or ID"),
        categories: Optional[List[str]] = typer.Option(
            None,
            "--category",
            "-c",
            help="Category as NAME[:DESCRIPTION[:CRITERIA]]; repeat for several",
        ),
        depth: AnalysisDepth = typer.Option(AnalysisDepth.STANDARD, "--depth", help="Analysis depth"),
        language: Optional[str] = typer.Option(None, "--language", "-l", help="Preferred transcript language"),
        max_cost: Optional[float] = typer.Option(
            None, "--max-cost", min=0.0, help="Refuse analyses estimated above this cost (USD)"
        ),
        skip_insights: bool = typer.Option(False, "--skip-insights", help="Only score category relevance"),
        as_json: bool = typer.Option(False, "--json", help="Emit the analysis result as JSON"),
    ) -> None:
        """Analyse a video for learning insights and category relevance."""

        try:
            video_id = extract_video_id(url)
            category_specs = list(categories or [])
            parse_categories(category_specs)
        except (InvalidYouTubeURLError, ValueError) as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.INVALID_INPUT) from exc

        try:
            result = asyncio.run(
                analysis_pipeline(
                    video_id=video_id,
                    category_specs=category_specs,
                    depth=depth,
                    language=language,
                    max_cost=max_cost,
                    skip_insights=skip_insights,
                )
            )
        except TranscriptUnavailableError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.TRANSCRIPT_UNAVAILABLE) from exc
        except CostLimitExceededError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.COST_LIMIT) from exc
        except ModelGatewayError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.PROCESSING_ERROR) from exc

        if as_json:
            typer.echo(json.dumps(result.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2))
            return

        _render_result(console, result)


def _render_result(console: Console, result: AnalysisResult) -> None:
    insights = result.insights
    overview = Table(show_header=False, box=None)
    overview.add_row("Type", insights.content_type.value)
    overview.add_row("Difficulty", insights.difficulty.value)
    overview.add_row("Learning time", f"{insights.estimated_learning_time} min")
    overview.add_row("Confidence", f"{insights.confidence}%")
    overview.add_row("Model", insights.model_used)
    overview.add_row("Processing", f"{result.processing_time:.2f}s")
    console.print(Panel.fit(overview, title=f"Analysis {result.video_id}"))

    if insights.summary:
        console.print(Panel.fit(insights.summary, title="Summary"))
    if insights.main_topics:
        console.print(f"[bold]Topics:[/bold] {', '.join(insights.main_topics)}")
    if insights.learning_objectives:
        console.print("[bold]Objectives:[/bold]")
        for objective in insights.learning_objectives:
            console.print(f"  • {objective}")

    if not result.relevance_scores:
        return

    matches = {match.category_id: match for match in result.category_analysis.category_matches}
    table = Table(title="Category relevance")
    table.add_column("Category", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Matched keywords")
    for category_id, score in sorted(result.relevance_scores.items(), key=lambda item: item[1], reverse=True):
        match = matches.get(category_id)
        table.add_row(category_id, str(score), ", ".join(match.matched_keywords) if match else "")
    console.print(table)


__all__ = ["TranscriptUnavailableError", "register"]
