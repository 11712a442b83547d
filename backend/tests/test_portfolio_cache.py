from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from app.sync_client.api import ApiError
from app.sync_client.portfolio_cache import (
    CACHE_VERSION,
    LEGACY_CACHE_KEY,
    CacheEntry,
    JsonFileCacheStore,
    MemoryCacheStore,
    PortfolioCache,
    cache_key,
)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeApi:
    def __init__(self, latest: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self.latest = latest
        self.error = error
        self.calls = 0

    async def latest_snapshot(self) -> Optional[Dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.latest


START = datetime(2025, 5, 1, 8, 0, tzinfo=UTC)


def _cache(api: FakeApi, store: Any, clock: Clock, user_id: int = 7) -> PortfolioCache:
    return PortfolioCache(api, store, user_id=user_id, clock=clock)  # type: ignore[arg-type]


def test_saved_entry_reads_back_until_ttl() -> None:
    clock = Clock(START)
    cache = _cache(FakeApi(), MemoryCacheStore(), clock)
    cache.save({"total_value": 1000})

    entry = cache.read_local()
    assert entry is not None
    assert entry.snapshot == {"total_value": 1000}

    clock.now = START + timedelta(hours=24)
    assert cache.read_local() is not None
    clock.now = START + timedelta(hours=24, seconds=1)
    assert cache.read_local() is None


def test_entries_with_other_version_or_garbage_are_ignored() -> None:
    store = MemoryCacheStore()
    clock = Clock(START)
    cache = _cache(FakeApi(), store, clock)

    store.set(cache_key(7), json.dumps({"snapshot": {}, "timestamp": START.isoformat(), "version": "0.9"}))
    assert cache.read_local() is None
    store.set(cache_key(7), "{not json")
    assert cache.read_local() is None
    store.set(cache_key(7), json.dumps({"snapshot": [], "timestamp": START.isoformat(), "version": CACHE_VERSION}))
    assert cache.read_local() is None


def test_cache_is_scoped_per_user() -> None:
    store = MemoryCacheStore()
    clock = Clock(START)
    _cache(FakeApi(), store, clock, user_id=1).save({"total_value": 1})
    assert _cache(FakeApi(), store, clock, user_id=2).read_local() is None


def test_load_serves_local_copy_then_server_copy() -> None:
    store = MemoryCacheStore()
    clock = Clock(START)
    _cache(FakeApi(), store, clock).save({"total_value": 1000})

    server = {"total_value": 1200, "created_at": "2025-05-01T07:00:00+00:00"}
    api = FakeApi(latest=server)
    cache = _cache(api, store, clock)
    seen: List[CacheEntry] = []

    result = asyncio.run(cache.load(on_local=seen.append))

    assert [e.snapshot["total_value"] for e in seen] == [1000]
    assert result == server
    assert cache.is_using_cache is True
    assert cache.timestamp == datetime(2025, 5, 1, 7, 0, tzinfo=UTC)
    assert cache.age_text() == "1h ago"
    stored = cache.read_local()
    assert stored is not None and stored.snapshot["total_value"] == 1200


def test_refresh_failure_keeps_cached_copy() -> None:
    store = MemoryCacheStore()
    clock = Clock(START)
    _cache(FakeApi(), store, clock).save({"total_value": 1000})

    for error in (ApiError(502, "upstream"), httpx.ConnectError("offline")):
        cache = _cache(FakeApi(error=error), store, clock)
        result = asyncio.run(cache.load())
        assert result == {"total_value": 1000}
        assert cache.is_using_cache is True


def test_empty_server_answer_leaves_cache_alone() -> None:
    cache = _cache(FakeApi(latest=None), MemoryCacheStore(), Clock(START))
    assert asyncio.run(cache.load()) is None
    assert cache.is_using_cache is False
    assert cache.age_text() is None


def test_clear_removes_current_and_legacy_keys() -> None:
    store = MemoryCacheStore()
    store.set(LEGACY_CACHE_KEY, "old")
    cache = _cache(FakeApi(), store, Clock(START))
    cache.save({"total_value": 5})
    cache.clear()

    assert store.get(cache_key(7)) is None
    assert store.get(LEGACY_CACHE_KEY) is None
    assert cache.snapshot is None


def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "portfolio.json"
    clock = Clock(START)
    _cache(FakeApi(), JsonFileCacheStore(path), clock).save({"total_value": 42})

    reopened = _cache(FakeApi(), JsonFileCacheStore(path), clock)
    entry = reopened.read_local()
    assert entry is not None and entry.snapshot == {"total_value": 42}

    reopened.clear()
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_json_file_store_tolerates_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "portfolio.json"
    path.write_text("not json", encoding="utf-8")
    store = JsonFileCacheStore(path)
    assert store.get("anything") is None
    store.set("k", "v")
    assert store.get("k") == "v"
