from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import psycopg2
import pytest
from rich.console import Console

from scholar.config.settings import Settings
from scholar.db.cache_repository import AnalysisCacheRecord
from scholar.models.analysis import AnalysisDepth, CacheEntry
from scholar.models.ids import CategoryId, VideoId
from scholar.services.cache import CACHE_STRATEGY, AnalysisCache, MemoryCacheTier, PostgresCacheTier, TieredCache
from support import FakeClock, make_result


class InMemoryCacheRepository:
    """Stands in for the `analysis_cache` table."""

    def __init__(self) -> None:
        self.rows: Dict[str, AnalysisCacheRecord] = {}

    def find_by_key(self, cache_key: str) -> Optional[AnalysisCacheRecord]:
        return self.rows.get(cache_key)

    def upsert(self, record: AnalysisCacheRecord) -> AnalysisCacheRecord:
        self.rows[record.cache_key] = record
        return record

    def delete_by_key(self, cache_key: str) -> None:
        self.rows.pop(cache_key, None)

    def delete_all(self) -> None:
        self.rows.clear()


class BrokenCacheRepository:
    def __init__(self) -> None:
        self.attempts: List[str] = []

    def _fail(self, operation: str) -> None:
        self.attempts.append(operation)
        raise psycopg2.OperationalError("could not connect to server")

    def find_by_key(self, cache_key: str) -> Optional[AnalysisCacheRecord]:
        self._fail("find")
        return None

    def upsert(self, record: AnalysisCacheRecord) -> AnalysisCacheRecord:
        self._fail("upsert")
        return record

    def delete_by_key(self, cache_key: str) -> None:
        self._fail("delete")

    def delete_all(self) -> None:
        self._fail("clear")


def _entry(now: float, ttl: float = 60.0) -> CacheEntry:
    return CacheEntry(data=make_result(), timestamp=now, expiry=now + ttl)


def test_cache_key_ignores_category_order() -> None:
    video = VideoId("dQw4w9WgXcQ")
    forward = AnalysisCache.generate_cache_key(video, [CategoryId("a"), CategoryId("b")], AnalysisDepth.BASIC)
    backward = AnalysisCache.generate_cache_key(video, [CategoryId("b"), CategoryId("a")], "basic")
    deeper = AnalysisCache.generate_cache_key(video, [CategoryId("a"), CategoryId("b")], AnalysisDepth.DEEP)

    assert forward == backward
    assert forward != deeper
    assert forward.startswith("analysis:dQw4w9WgXcQ:")
    assert len(forward.rsplit(":", 1)[1]) == 16


def test_hit_in_slower_tier_backfills_memory() -> None:
    clock = FakeClock()
    memory = MemoryCacheTier()
    durable = MemoryCacheTier()
    tiers = TieredCache([memory, durable], clock=clock)
    asyncio.run(durable.set("k", _entry(clock.now)))

    entry = asyncio.run(tiers.get("k"))

    assert entry is not None
    assert entry.hits == 1
    assert asyncio.run(memory.get("k")) is entry


def test_expired_entries_are_deleted_on_read() -> None:
    clock = FakeClock()
    memory = MemoryCacheTier()
    tiers = TieredCache([memory], clock=clock)
    asyncio.run(tiers.set("k", _entry(clock.now, ttl=10)))

    clock.advance(11)

    assert asyncio.run(tiers.get("k")) is None
    assert len(memory) == 0


def test_analysis_cache_round_trip_and_expiry(console: Console, settings: Settings) -> None:
    clock = FakeClock()
    cache = AnalysisCache(settings=settings, console=console, clock=clock, rng=lambda: 1.0)
    result = make_result()

    asyncio.run(cache.set("analysis:test", result, ttl_seconds=30))
    assert asyncio.run(cache.get("analysis:test")) == result
    assert asyncio.run(cache.has("analysis:test")) is True

    clock.advance(31)
    assert asyncio.run(cache.get("analysis:test")) is None


def test_random_sweep_removes_expired_memory_entries(console: Console, settings: Settings) -> None:
    clock = FakeClock()
    memory = MemoryCacheTier()
    cache = AnalysisCache(settings=settings, console=console, memory=memory, clock=clock, rng=lambda: 0.0)

    asyncio.run(cache.set("old", make_result(cache_key="old"), ttl_seconds=5))
    clock.advance(10)
    asyncio.run(cache.set("new", make_result(cache_key="new")))

    assert memory.keys() == ["new"]


def test_cache_lifetimes_follow_the_kind_of_data(console: Console, settings: Settings) -> None:
    clock = FakeClock()
    memory = MemoryCacheTier()
    cache = AnalysisCache(settings=settings, console=console, memory=memory, clock=clock, rng=lambda: 1.0)

    asyncio.run(cache.set("insights", make_result(cache_key="insights")))
    asyncio.run(cache.set("categories", make_result(cache_key="categories"), kind="category_matches"))

    expiries = {entry.data.cache_key: entry.expiry - entry.timestamp for entry in memory.entries()}
    assert expiries == {
        "insights": CACHE_STRATEGY["content_insights"],
        "categories": CACHE_STRATEGY["category_matches"],
    }

    clock.advance(CACHE_STRATEGY["category_matches"] + 1)
    assert asyncio.run(cache.get("categories")) is None
    assert asyncio.run(cache.get("insights")) is not None

    with pytest.raises(ValueError):
        cache.ttl_for("transcripts")


def test_configured_ttl_overrides_every_kind(console: Console, settings: Settings) -> None:
    overridden = settings.model_copy(update={"analysis_cache_ttl_seconds": 120})
    cache = AnalysisCache(settings=overridden, console=console, rng=lambda: 1.0)

    assert cache.ttl_for("content_insights") == 120
    assert cache.ttl_for("category_matches") == 120
    assert AnalysisCache(settings=settings, console=console).ttl_for("relevance_scores") == CACHE_STRATEGY[
        "relevance_scores"
    ]


def test_durable_tier_serves_other_processes(console: Console, settings: Settings) -> None:
    repository = InMemoryCacheRepository()
    writer = AnalysisCache(
        settings=settings, console=console, durable=PostgresCacheTier(repository, console=console), rng=lambda: 1.0
    )
    reader = AnalysisCache(
        settings=settings, console=console, durable=PostgresCacheTier(repository, console=console), rng=lambda: 1.0
    )
    result = make_result()

    asyncio.run(writer.set("analysis:test", result))
    assert repository.rows["analysis:test"].data["videoId"] == "dQw4w9WgXcQ"

    assert asyncio.run(reader.get("analysis:test")) == result
    assert reader.get_stats().memory_entries == 1

    asyncio.run(reader.invalidate("analysis:test"))
    assert "analysis:test" not in repository.rows


def test_durable_tier_failures_are_tolerated(console: Console, settings: Settings) -> None:
    repository = BrokenCacheRepository()
    cache = AnalysisCache(
        settings=settings, console=console, durable=PostgresCacheTier(repository, console=console), rng=lambda: 1.0
    )

    asyncio.run(cache.set("analysis:test", make_result()))
    asyncio.run(cache.clear())

    assert asyncio.run(cache.get("analysis:test")) is None
    assert repository.attempts == ["upsert", "clear", "find"]


def test_stats_report_entries_hits_and_oldest(console: Console, settings: Settings) -> None:
    clock = FakeClock(start=500.0)
    cache = AnalysisCache(settings=settings, console=console, clock=clock, rng=lambda: 1.0)

    assert cache.get_stats().memory_entries == 0
    assert cache.get_stats().hit_rate == 0.0

    asyncio.run(cache.set("a", make_result(cache_key="a")))
    clock.advance(5)
    asyncio.run(cache.set("b", make_result(cache_key="b")))
    asyncio.run(cache.get("a"))
    asyncio.run(cache.get("a"))

    stats = cache.get_stats()
    assert stats.memory_entries == 2
    assert stats.hit_rate == 1.0
    assert stats.oldest_entry == 500.0
    assert stats.memory_size > 0
