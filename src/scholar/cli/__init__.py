"""Typer command-line interface for Scholar."""

from scholar.cli.main import CLIApplication, create_app, main

__all__ = ["CLIApplication", "create_app", "main"]
