"""Tiered cache for analysis results."""

from __future__ import annotations

import asyncio
import hashlib
import random
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from psycopg2 import Error as PsycopgError
from pydantic import BaseModel, ValidationError
from rich.console import Console

from scholar.config.settings import Settings, get_settings
from scholar.db import ConnectionFactory
from scholar.db.cache_repository import AnalysisCacheRecord, AnalysisCacheRepository
from scholar.db.repositories import RepositoryError
from scholar.models.analysis import AnalysisDepth, AnalysisResult, CacheEntry
from scholar.models.ids import CacheKey, CategoryId, VideoId

DAY_SECONDS = 24 * 60 * 60
CLEANUP_PROBABILITY = 0.1

# TTL per kind of analysis data; a result is stored under the kind of its richest part.
CACHE_STRATEGY: Dict[str, int] = {
    "relevance_scores": 7 * DAY_SECONDS,
    "content_insights": 7 * DAY_SECONDS,
    "category_matches": 1 * DAY_SECONDS,
}
DEFAULT_CACHE_KIND = "content_insights"

Clock = Callable[[], float]
RandomSource = Callable[[], float]


class CacheTier(Protocol):
    """One storage level of a :class:`TieredCache`."""

    name: str

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry, expired or not, or ``None``."""

    async def set(self, key: str, entry: CacheEntry) -> None:
        """Store ``entry`` under ``key``."""

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    async def clear(self) -> None:
        """Remove every entry."""


class MemoryCacheTier:
    """In-process dictionary tier."""

    name = "memory"

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    def sweep_expired(self, now: float) -> int:
        """Drop expired entries and return how many were removed."""

        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)


class PostgresCacheTier:
    """Durable tier over the `analysis_cache` table.

    Database failures are logged and treated as a miss or a no-op; this tier never raises.
    """

    name = "postgres"

    def __init__(self, repository: AnalysisCacheRepository, *, console: Optional[Console] = None) -> None:
        self._repository = repository
        self._console = console or Console()

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            record = await asyncio.to_thread(self._repository.find_by_key, key)
            if record is None:
                return None
            return CacheEntry(
                data=AnalysisResult.model_validate(record.data),
                timestamp=record.timestamp,
                expiry=record.expiry,
                hits=record.hits,
            )
        except (PsycopgError, RepositoryError, ValidationError) as exc:
            self._warn("read", key, exc)
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        record = AnalysisCacheRecord(
            cache_key=key,
            data=entry.data.model_dump(mode="json", by_alias=True),
            timestamp=entry.timestamp,
            expiry=entry.expiry,
            hits=entry.hits,
        )
        try:
            await asyncio.to_thread(self._repository.upsert, record)
        except (PsycopgError, RepositoryError) as exc:
            self._warn("write", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._repository.delete_by_key, key)
        except (PsycopgError, RepositoryError) as exc:
            self._warn("delete", key, exc)

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self._repository.delete_all)
        except (PsycopgError, RepositoryError) as exc:
            self._warn("clear", "*", exc)

    def _warn(self, operation: str, key: str, exc: BaseException) -> None:
        self._console.log(f"[yellow]Durable cache {operation} failed for {key}:[/yellow] {exc}")


class TieredCache:
    """Try tiers in order, back-filling faster tiers on a hit in a slower one."""

    def __init__(self, tiers: Sequence[CacheTier], *, clock: Clock = time.time) -> None:
        if not tiers:
            raise ValueError("TieredCache requires at least one tier")
        self._tiers: Tuple[CacheTier, ...] = tuple(tiers)
        self._clock = clock

    @property
    def tiers(self) -> Tuple[CacheTier, ...]:
        return self._tiers

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the first unexpired entry, deleting expired ones as they are found."""

        now = self._clock()
        for index, tier in enumerate(self._tiers):
            entry = await tier.get(key)
            if entry is None:
                continue
            if entry.is_expired(now):
                await tier.delete(key)
                continue
            entry.hits += 1
            for faster in self._tiers[:index]:
                await faster.set(key, entry)
            return entry
        return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        for tier in self._tiers:
            await tier.set(key, entry)

    async def delete(self, key: str) -> None:
        for tier in self._tiers:
            await tier.delete(key)

    async def clear(self) -> None:
        for tier in self._tiers:
            await tier.clear()


class CacheStats(BaseModel):
    """Summary of the in-memory tier."""

    memory_entries: int
    memory_size: int
    hit_rate: float
    oldest_entry: Optional[float] = None


class AnalysisCache:
    """Two-level analysis cache: memory first, then the optional durable tier."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        memory: Optional[MemoryCacheTier] = None,
        durable: Optional[CacheTier] = None,
        clock: Clock = time.time,
        rng: RandomSource = random.random,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._memory = memory if memory is not None else MemoryCacheTier()
        tiers: List[CacheTier] = [self._memory]
        if durable is not None:
            tiers.append(durable)
        self._tiers = TieredCache(tiers, clock=clock)
        self._clock = clock
        self._rng = rng
        self._ttl_override = self._settings.analysis_cache_ttl_seconds

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #
    async def get(self, cache_key: str) -> Optional[AnalysisResult]:
        entry = await self._tiers.get(cache_key)
        return entry.data if entry is not None else None

    async def set(
        self,
        cache_key: str,
        data: AnalysisResult,
        *,
        ttl_seconds: Optional[float] = None,
        kind: str = DEFAULT_CACHE_KIND,
    ) -> None:
        """Write ``data`` through every tier, occasionally sweeping expired memory entries.

        The lifetime is ``ttl_seconds`` when given, else :meth:`ttl_for` of ``kind``.
        """

        now = self._clock()
        entry = CacheEntry(
            data=data,
            timestamp=now,
            expiry=now + (ttl_seconds if ttl_seconds is not None else self.ttl_for(kind)),
            hits=0,
        )
        await self._tiers.set(cache_key, entry)

        if self._rng() < CLEANUP_PROBABILITY:
            removed = self._memory.sweep_expired(now)
            if removed:
                self._console.log(f"Swept {removed} expired analysis cache entries")

    def ttl_for(self, kind: str) -> float:
        """Lifetime for ``kind``; ``ANALYSIS_CACHE_TTL_SECONDS`` overrides every kind when set."""

        if kind not in CACHE_STRATEGY:
            raise ValueError(f"Unknown cache kind {kind!r}; expected one of {sorted(CACHE_STRATEGY)}")
        if self._ttl_override is not None:
            return float(self._ttl_override)
        return float(CACHE_STRATEGY[kind])

    async def has(self, cache_key: str) -> bool:
        return await self.get(cache_key) is not None

    async def invalidate(self, cache_key: str) -> None:
        await self._tiers.delete(cache_key)

    async def clear(self) -> None:
        await self._tiers.clear()

    def get_stats(self) -> CacheStats:
        """Report entry count, approximate size, hits per entry, and the oldest timestamp."""

        entries = self._memory.entries()
        total_hits = sum(entry.hits for entry in entries)
        return CacheStats(
            memory_entries=len(entries),
            memory_size=sum(len(entry.data.model_dump_json(by_alias=True)) * 2 for entry in entries),
            hit_rate=total_hits / len(entries) if entries else 0.0,
            oldest_entry=min((entry.timestamp for entry in entries), default=None),
        )

    @staticmethod
    def generate_cache_key(
        video_id: VideoId,
        category_ids: Iterable[CategoryId],
        depth: Union[AnalysisDepth, str],
    ) -> CacheKey:
        """Build a key that ignores the order of ``category_ids``."""

        depth_value = depth.value if isinstance(depth, AnalysisDepth) else depth
        category_key = ",".join(sorted(category_ids))
        digest = hashlib.sha256(f"{video_id}-{category_key}-{depth_value}".encode("utf-8")).hexdigest()[:16]
        return CacheKey(f"analysis:{video_id}:{digest}")


def build_durable_tier(
    connection_factory: Optional[ConnectionFactory],
    *,
    console: Optional[Console] = None,
) -> Optional[PostgresCacheTier]:
    """Return a Postgres tier for a configured connection factory, else ``None``."""

    if connection_factory is None:
        return None
    return PostgresCacheTier(AnalysisCacheRepository(connection_factory), console=console)


__all__ = [
    "AnalysisCache",
    "CACHE_STRATEGY",
    "DEFAULT_CACHE_KIND",
    "CacheStats",
    "CacheTier",
    "MemoryCacheTier",
    "PostgresCacheTier",
    "TieredCache",
    "build_durable_tier",
]
