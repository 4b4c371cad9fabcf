"""Repository for the durable `analysis_cache` table."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import Field
from psycopg2.extras import Json

from scholar.db import ConnectionFactory
from scholar.db.repositories import BaseRepository
from scholar.models.base import ScholarBaseModel


class AnalysisCacheRecord(ScholarBaseModel):
    """Row of the `analysis_cache` table; ``data`` holds the serialised analysis result."""

    cache_key: str
    data: Dict[str, Any]
    timestamp: float
    expiry: float
    hits: int = Field(default=0, ge=0)


class AnalysisCacheRepository(BaseRepository[AnalysisCacheRecord]):
    """Data access object for cached analysis results keyed by cache key."""

    table_name = "analysis_cache"
    model_type = AnalysisCacheRecord
    insert_fields = ("cache_key", "data", "timestamp", "expiry", "hits")
    update_fields = ("data", "timestamp", "expiry", "hits")
    conflict_fields = ("cache_key",)

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        super().__init__(connection_factory)

    def find_by_key(self, cache_key: str) -> Optional[AnalysisCacheRecord]:
        """Return the cached row for ``cache_key`` if one exists."""

        return self.find_one("cache_key = %(cache_key)s", {"cache_key": cache_key})

    def delete_by_key(self, cache_key: str) -> int:
        return self.delete_where("cache_key = %(cache_key)s", {"cache_key": cache_key})

    def delete_all(self) -> int:
        return self.delete_where()

    def _transform_value(self, field: str, value: object) -> object:
        if field == "data" and value is not None:
            return Json(value)
        return super()._transform_value(field, value)


__all__ = ["AnalysisCacheRecord", "AnalysisCacheRepository"]
