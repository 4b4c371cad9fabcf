"""Command registration utilities for the Scholar CLI."""

from __future__ import annotations

import typer
from rich.console import Console

from scholar.cli.commands import admin, analyze, videos
from scholar.cli.commands.common import ServiceProvider


def register_commands(app: typer.Typer, console: Console, services: ServiceProvider) -> None:
    """Attach command groups to the provided Typer application."""

    analyze.register(app, console, services)
    videos.register(app, console, services)
    admin.register(app, console, services)

    @app.callback(invoke_without_command=True)
    def main_callback(ctx: typer.Context) -> None:
        """Curate YouTube videos into learning categories."""

        if ctx.invoked_subcommand is None:
            console.print("[bold green]Scholar CLI ready for commands.[/bold green]")


__all__ = ["register_commands"]
