"""Tagged result types for operations that always produce a value."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Analyzed(Generic[T]):
    """The model-backed path produced ``value``."""

    value: T
    ok: Literal[True] = True


@dataclass(slots=True, frozen=True)
class FellBack(Generic[T]):
    """The model-backed path failed; ``fallback_value`` was substituted."""

    fallback_value: T
    error: str
    ok: Literal[False] = False


AnalysisOutcome = Union[Analyzed[T], FellBack[T]]


def unwrap(outcome: AnalysisOutcome[T]) -> T:
    """Return the value carried by either branch of an outcome."""

    if isinstance(outcome, Analyzed):
        return outcome.value
    return outcome.fallback_value


__all__ = ["AnalysisOutcome", "Analyzed", "FellBack", "unwrap"]
