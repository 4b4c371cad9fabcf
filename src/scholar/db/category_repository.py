"""Repository for user-scoped learning categories."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from scholar.db import ConnectionFactory
from scholar.db.repositories import BaseRepository
from scholar.models.analysis import CategoryRef
from scholar.models.category import Category
from scholar.models.ids import UserId

_OWNED_ROW = "id = %(id)s AND user_id = %(user_id)s"


class CategoryRepository(BaseRepository[Category]):
    """Data access object for categories, always scoped to an authenticated user.

    A missing user or a missing row is an ordinary outcome: lookups return ``None`` or an
    empty list instead of raising.
    """

    table_name = "categories"
    model_type = Category
    insert_fields = (
        "user_id",
        "name",
        "description",
        "criteria",
        "keywords",
        "tags",
        "color",
        "icon",
        "is_active",
    )
    update_fields = (
        "name",
        "description",
        "criteria",
        "keywords",
        "tags",
        "color",
        "icon",
        "is_active",
    )
    auto_timestamp_field = "updated_at"

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        super().__init__(connection_factory)

    def list_for_user(self, user_id: Optional[UserId], *, active_only: bool = False) -> List[Category]:
        """Return the user's categories ordered by name."""

        if not user_id:
            return []
        where = "user_id = %(user_id)s"
        if active_only:
            where = f"{where} AND is_active"
        return self.find_many(where, {"user_id": user_id}, order_by="name")

    def get_for_user(self, user_id: Optional[UserId], category_id: UUID) -> Optional[Category]:
        if not user_id:
            return None
        return self.find_one(_OWNED_ROW, {"id": str(category_id), "user_id": user_id})

    def create(self, user_id: Optional[UserId], category: Category) -> Optional[Category]:
        """Insert ``category`` owned by ``user_id``."""

        if not user_id:
            return None
        return self.insert(category.model_copy(update={"user_id": user_id}))

    def update_for_user(self, user_id: Optional[UserId], category: Category) -> Optional[Category]:
        """Update a category only when it belongs to ``user_id``."""

        if not user_id or category.id is None or self.get_for_user(user_id, category.id) is None:
            return None
        return self.update(category)

    def delete_for_user(self, user_id: Optional[UserId], category_id: UUID) -> bool:
        """Delete the user's category, returning ``False`` when nothing matched."""

        if not user_id:
            return False
        return self.delete_where(_OWNED_ROW, {"id": str(category_id), "user_id": user_id}) > 0


def to_category_ref(category: Category) -> CategoryRef:
    """Project a stored category into analyzer input."""

    return category.to_ref()


__all__ = ["CategoryRepository", "to_category_ref"]
