"""Utilities for executing SQL migrations stored under `db/migrations`."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Set

from psycopg2.extensions import cursor as PsycopgCursor
from rich.console import Console
from rich.table import Table

from scholar.config.settings import Settings, get_settings
from scholar.db.connection import connection_from_dsn
from scholar.db.repositories import RepositoryError

MIGRATIONS_ROOT = Path(__file__).resolve().parent / "migrations"

_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    name TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def load_migration_files(directory: Path = MIGRATIONS_ROOT) -> List[Path]:
    return sorted(directory.glob("*.sql"))


def _applied_migrations(db_cursor: PsycopgCursor) -> Set[str]:
    db_cursor.execute(_TRACKING_TABLE)
    db_cursor.execute("SELECT name FROM schema_migrations")
    return {row[0] for row in db_cursor.fetchall()}


def _execute_sql_file(db_cursor: PsycopgCursor, migration_file: Path) -> None:
    db_cursor.execute(migration_file.read_text(encoding="utf-8"))
    db_cursor.execute("INSERT INTO schema_migrations (name) VALUES (%(name)s)", {"name": migration_file.name})


def run_migrations(*, settings: Optional[Settings] = None, console: Optional[Console] = None) -> List[str]:
    """Apply pending migrations in filename order and return the names applied."""

    console = console or Console()
    settings = settings or get_settings()
    migrations = load_migration_files()

    if not migrations:
        console.print("[yellow]No migrations found.[/yellow]")
        return []
    if settings.database_url is None:
        raise RepositoryError("DATABASE_URL is not configured; cannot run migrations.")

    connection = connection_from_dsn(str(settings.database_url))

    table = Table(title="Database Migrations")
    table.add_column("Migration", style="cyan")
    table.add_column("Status", style="green")

    applied: List[str] = []
    try:
        with connection.cursor() as db_cursor:
            already_applied = _applied_migrations(db_cursor)
            for migration in migrations:
                if migration.name in already_applied:
                    table.add_row(migration.name, "skipped")
                    continue
                _execute_sql_file(db_cursor, migration)
                applied.append(migration.name)
                table.add_row(migration.name, "applied")
        connection.commit()
    except Exception as exc:  # pragma: no cover - surface migration errors
        connection.rollback()
        console.print(f"[red]Migration failed:[/red] {exc}")
        raise
    finally:
        connection.close()

    console.print(table)
    return applied


def main() -> None:
    """Entry point for running migrations via `python -m scholar.db.migrate`."""

    run_migrations()


if __name__ == "__main__":  # pragma: no cover
    main()
