"""Nominal identifier types.

Plain strings at runtime, distinct types to the type checker so a video ID cannot be
passed where a category ID is expected.
"""

from __future__ import annotations

from typing import NewType

VideoId = NewType("VideoId", str)
CategoryId = NewType("CategoryId", str)
UserId = NewType("UserId", str)
ApiKeyId = NewType("ApiKeyId", str)
CacheKey = NewType("CacheKey", str)

__all__ = ["ApiKeyId", "CacheKey", "CategoryId", "UserId", "VideoId"]
