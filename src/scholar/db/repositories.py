"""Generic repository abstractions for Postgres-backed persistence."""

from __future__ import annotations

from contextlib import contextmanager
from typing import ClassVar, Dict, Generic, Iterator, List, Mapping, Optional, Sequence, Type, TypeVar
from uuid import UUID

from psycopg2.extensions import cursor as PsycopgCursor
from psycopg2.extras import RealDictCursor

from scholar.db import ConnectionFactory
from scholar.models.base import ScholarBaseModel

ModelT = TypeVar("ModelT", bound=ScholarBaseModel)


class RepositoryError(RuntimeError):
    """Base exception raised for repository layer failures."""


class RecordNotFoundError(RepositoryError):
    """Raised when a write expected to return a row matched nothing."""


class BaseRepository(Generic[ModelT]):
    """Table-bound data access built from declarative column lists.

    Subclasses name the table, the pydantic row model, and which columns are written on
    insert and update. Lookups return ``None`` or an empty list for missing rows; only
    writes that must produce a row raise :class:`RecordNotFoundError`.
    """

    table_name: ClassVar[str]
    model_type: ClassVar[Type[ModelT]]
    insert_fields: ClassVar[Sequence[str]]
    update_fields: ClassVar[Sequence[str]]
    auto_timestamp_field: ClassVar[Optional[str]] = None
    conflict_fields: ClassVar[Sequence[str]] = ()

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connection_factory = connection_factory

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    def find_one(self, where_clause: str, params: Mapping[str, object]) -> Optional[ModelT]:
        """Return the first row matching ``where_clause``, or ``None``."""

        rows = self._select(f"SELECT * FROM {self.table_name} WHERE {where_clause} LIMIT 1", params)
        return self.model_type.model_validate(rows[0]) if rows else None

    def find_many(
        self,
        where_clause: Optional[str] = None,
        params: Optional[Mapping[str, object]] = None,
        *,
        order_by: Optional[str] = None,
    ) -> List[ModelT]:
        query = f"SELECT * FROM {self.table_name}"
        if where_clause:
            query = f"{query} WHERE {where_clause}"
        if order_by:
            query = f"{query} ORDER BY {order_by}"
        return [self.model_type.model_validate(row) for row in self._select(query, params or {})]

    def insert(self, model: ModelT) -> ModelT:
        """Persist a new row and return it as stored."""

        payload = self._serialize(model, self.insert_fields, include_none=False)
        query = f"INSERT INTO {self.table_name} ({self._columns(payload)}) VALUES ({self._placeholders(payload)})"
        return self._returning(query, payload)

    def update(self, model: ModelT, *, include_none: bool = False) -> ModelT:
        """Overwrite the ``update_fields`` of the row sharing ``model.id``."""

        record_id = getattr(model, "id", None)
        if record_id is None:
            raise RepositoryError(f"{type(self).__name__}.update requires a model with an `id`.")

        payload = self._serialize(model, self.update_fields, include_none=include_none)
        assignments = [f"{column} = %({column})s" for column in payload]
        if self.auto_timestamp_field:
            assignments.append(f"{self.auto_timestamp_field} = NOW()")
        if not assignments:
            raise RepositoryError("No columns available for update.")

        payload["id"] = str(record_id) if isinstance(record_id, UUID) else record_id
        query = f"UPDATE {self.table_name} SET {', '.join(assignments)} WHERE id = %(id)s"
        return self._returning(query, payload)

    def upsert(self, model: ModelT) -> ModelT:
        """Insert a row or overwrite the one sharing its ``conflict_fields``."""

        if not self.conflict_fields:
            raise RepositoryError(f"{type(self).__name__} does not declare conflict fields.")

        payload = self._serialize(model, self.insert_fields, include_none=True)
        assignments = ", ".join(
            f"{column} = EXCLUDED.{column}" for column in payload if column not in self.conflict_fields
        )
        query = (
            f"INSERT INTO {self.table_name} ({self._columns(payload)}) VALUES ({self._placeholders(payload)}) "
            f"ON CONFLICT ({', '.join(self.conflict_fields)}) DO UPDATE SET {assignments}"
        )
        return self._returning(query, payload)

    def delete_where(self, where_clause: Optional[str] = None, params: Optional[Mapping[str, object]] = None) -> int:
        """Delete matching rows, or every row without a predicate; return the count removed."""

        query = f"DELETE FROM {self.table_name}"
        if where_clause:
            query = f"{query} WHERE {where_clause}"
        with self._cursor() as cursor:
            cursor.execute(query, params or {})
            return max(cursor.rowcount, 0)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                    #
    # ------------------------------------------------------------------ #
    def _serialize(self, model: ModelT, fields: Sequence[str], *, include_none: bool) -> Dict[str, object]:
        values = model.model_dump(mode="json")
        return {
            field: self._transform_value(field, values[field])
            for field in fields
            if field in values and (include_none or values[field] is not None)
        }

    def _transform_value(self, field: str, value: object) -> object:
        """Hook for subclasses that need driver adapters such as ``Json``."""

        return value

    @staticmethod
    def _columns(payload: Mapping[str, object]) -> str:
        return ", ".join(payload)

    @staticmethod
    def _placeholders(payload: Mapping[str, object]) -> str:
        return ", ".join(f"%({column})s" for column in payload)

    def _returning(self, query: str, params: Mapping[str, object]) -> ModelT:
        rows = self._select(f"{query} RETURNING *", params)
        if not rows:
            raise RecordNotFoundError(f"{self.table_name}: no row returned for {query!r}")
        return self.model_type.model_validate(rows[0])

    def _select(self, query: str, params: Mapping[str, object]) -> List[Dict[str, object]]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    @contextmanager
    def _cursor(self) -> Iterator[PsycopgCursor]:
        with self._connection_factory() as connection:
            with connection.cursor(cursor_factory=RealDictCursor) as cursor:
                yield cursor


__all__ = [
    "BaseRepository",
    "RecordNotFoundError",
    "RepositoryError",
]
