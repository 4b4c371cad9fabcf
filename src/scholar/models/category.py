"""Pydantic models describing user-defined learning categories."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from scholar.models.analysis import CategoryRef
from scholar.models.base import ScholarBaseModel
from scholar.models.ids import CategoryId, UserId


class Category(ScholarBaseModel):
    """Domain model representing a row in the ``categories`` table.

    Categories are read-only input to keyword extraction and relevance scoring; the analysis
    pipeline only ever derives ephemeral keyword sets from them.
    """

    id: Optional[UUID] = None
    user_id: Optional[UserId] = None
    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    criteria: str = ""
    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    color: str = Field(default="#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    icon: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def category_id(self) -> CategoryId:
        """Return the identifier used as a cache and scoring key."""

        return CategoryId(str(self.id) if self.id is not None else self.name)

    def to_ref(self) -> CategoryRef:
        """Project the category into the shape consumed by the analyzer."""

        return CategoryRef(id=self.category_id, name=self.name, keywords=list(self.keywords))


__all__ = ["Category"]
