"""CLI commands for spend tracking, caches, API keys, and database migrations."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import List

import typer
from psycopg2 import Error as PsycopgError
from rich.console import Console
from rich.table import Table

from scholar.cli.commands.common import ExitCode, ServiceProvider
from scholar.db.migrate import run_migrations
from scholar.db.repositories import RepositoryError
from scholar.services.youtube import KeyValidationResult


def register(app: typer.Typer, console: Console, services: ServiceProvider) -> None:
    """Register maintenance commands."""

    async def validate_keys(keys: List[str]) -> List[KeyValidationResult]:
        validator = services.key_validator()
        try:
            return await validator.validate_many(keys)
        finally:
            await validator.aclose()

    @app.command("usage")
    def usage(
        reset: bool = typer.Option(False, "--reset", help="Zero today's spend counter"),
        as_json: bool = typer.Option(False, "--json", help="Emit usage statistics as JSON"),
    ) -> None:
        """Show model spend against the configured limits."""

        gateway = services.gateway
        if reset:
            gateway.reset_daily_usage()
            console.print("[green]Daily usage reset.[/green]")

        stats = gateway.get_usage_stats()
        if as_json:
            typer.echo(json.dumps(stats.model_dump(mode="json"), ensure_ascii=False, indent=2))
            return

        limits = gateway.get_limits()
        table = Table(title="Model usage")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Today", f"${stats.daily_usage:.4f}")
        table.add_row("Daily limit", f"${stats.daily_limit:.2f}")
        table.add_row("Remaining", f"${stats.remaining_daily_budget:.4f}")
        table.add_row("Used", f"{stats.percentage_used:.1f}%")
        table.add_row("This month", f"${stats.monthly_usage:.4f}")
        table.add_row("All time", f"${stats.total_cost:.4f}")
        table.add_row("Requests", str(stats.request_count))
        table.add_row("Per-video limit", f"${limits.per_video_limit:.2f}")
        console.print(table)
        if stats.quota_exceeded:
            console.print("[red]Daily spend limit reached; new analyses fall back to heuristics.[/red]")

    @app.command("cache-stats")
    def cache_stats(
        as_json: bool = typer.Option(False, "--json", help="Emit cache statistics as JSON"),
    ) -> None:
        """Show the analysis cache summary."""

        stats = services.orchestrator.get_cache_stats()
        if as_json:
            typer.echo(json.dumps(stats.model_dump(mode="json"), ensure_ascii=False, indent=2))
            return

        oldest = (
            datetime.fromtimestamp(stats.oldest_entry).isoformat(timespec="seconds")
            if stats.oldest_entry is not None
            else "-"
        )
        table = Table(title="Analysis cache")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Entries", str(stats.memory_entries))
        table.add_row("Approx. size", f"{stats.memory_size:,} bytes")
        table.add_row("Hits per entry", f"{stats.hit_rate:.2f}")
        table.add_row("Oldest entry", oldest)
        table.add_row("Durable tier", "enabled" if services.pool is not None else "disabled")
        console.print(table)

    @app.command("validate-key")
    def validate_key(
        keys: List[str] = typer.Argument(..., help="YouTube Data API keys to check"),
        as_json: bool = typer.Option(False, "--json", help="Emit validation results as JSON"),
    ) -> None:
        """Check YouTube API keys with a one-unit request each."""

        results = asyncio.run(validate_keys(list(keys)))

        if as_json:
            payload = [result.model_dump(mode="json") for result in results]
            typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        else:
            table = Table(title="API key validation")
            table.add_column("Key", style="cyan")
            table.add_column("Status")
            table.add_column("Details")
            for result in results:
                colour = "green" if result.is_valid else "red"
                status = f"[{colour}]{result.status.value}[/{colour}]"
                details = result.channel_title or result.error_message or ""
                table.add_row(result.key_preview, status, details)
            console.print(table)

        if not all(result.is_valid for result in results):
            raise typer.Exit(code=ExitCode.INVALID_INPUT)

    @app.command("migrate")
    def migrate() -> None:
        """Apply pending database migrations."""

        try:
            applied = run_migrations(settings=services.settings, console=console)
        except (RepositoryError, PsycopgError) as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ExitCode.STORAGE_ERROR) from exc
        console.print(f"[green]{len(applied)} migrations applied.[/green]")


__all__ = ["register"]
