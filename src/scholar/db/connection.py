"""Database connection utilities using psycopg2 connection pooling."""

from __future__ import annotations

from contextlib import AbstractContextManager, contextmanager
from typing import Iterator, Optional

from psycopg2 import connect
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.pool import SimpleConnectionPool

from scholar.config.settings import Settings, get_settings

DEFAULT_MIN_CONNECTIONS = 1
DEFAULT_MAX_CONNECTIONS = 5


class DatabasePool:
    """Lightweight wrapper around psycopg2's SimpleConnectionPool.

    Calling the pool returns a pooled connection context manager, so an instance can be
    passed anywhere a :class:`~scholar.db.ConnectionFactory` is expected.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_connections: int = DEFAULT_MIN_CONNECTIONS,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
    ) -> None:
        self._pool = SimpleConnectionPool(min_connections, max_connections, dsn)

    def __call__(self) -> AbstractContextManager[PsycopgConnection]:
        return self.connection()

    @contextmanager
    def connection(self) -> Iterator[PsycopgConnection]:
        """Yield a transactional connection from the pool."""

        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:  # pragma: no cover - re-raised after rollback
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def close(self) -> None:
        """Close all pooled connections."""

        self._pool.closeall()


def create_pool(settings: Optional[Settings] = None) -> Optional[DatabasePool]:
    """Return a pool for the configured database, or ``None`` when none is configured."""

    settings = settings or get_settings()
    if settings.database_url is None:
        return None
    return DatabasePool(str(settings.database_url))


def connection_from_dsn(dsn: str) -> PsycopgConnection:
    """Create a standalone connection using the given DSN."""

    return connect(dsn)


__all__ = ["DatabasePool", "connection_from_dsn", "create_pool"]
