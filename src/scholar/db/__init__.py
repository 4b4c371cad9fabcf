"""Postgres persistence for the durable analysis cache and user categories."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol

from psycopg2.extensions import connection as PsycopgConnection


class ConnectionFactory(Protocol):
    """Anything that hands out a transactional connection per call, such as ``DatabasePool``."""

    def __call__(self) -> AbstractContextManager[PsycopgConnection]: ...


__all__ = ["ConnectionFactory"]
