"""Service layer for the Scholar application."""

from typing import Protocol


class SupportsAsyncClose(Protocol):
    """Protocol describing resources that hold open network connections."""

    async def aclose(self) -> None:
        """Release any acquired resources."""


__all__ = ["SupportsAsyncClose"]
