"""Shared base model definitions for Scholar domain objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ScholarBaseModel(BaseModel):
    """Base model configured for Scholar-wide defaults."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class FrozenModel(BaseModel):
    """Immutable variant used for values that must not change once produced."""

    model_config = ConfigDict(extra="forbid", frozen=True)


__all__ = ["FrozenModel", "ScholarBaseModel"]
