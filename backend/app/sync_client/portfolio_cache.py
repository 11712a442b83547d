from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from app.core.time_utils import to_utc, utc_now
from app.services.sync_health import time_ago
from app.sync_client.api import ApiError, PortfolioApiClient

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "portfolio_cache"
LEGACY_CACHE_KEY = "portfolio_cache"
CACHE_VERSION = "1.0"
CACHE_TTL = timedelta(hours=24)


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryCacheStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileCacheStore:
    """All keys in one JSON object on disk; rewritten on every change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning(
                "Unreadable cache file; starting empty",
                extra={"extra": {"path": str(self.path)}},
            )
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


@dataclass
class CacheEntry:
    snapshot: Dict[str, Any]
    timestamp: datetime


def cache_key(user_id: int | str) -> str:
    return f"{CACHE_KEY_PREFIX}:{user_id}"


class PortfolioCache:
    """Per-identity copy of the latest snapshot for instant first paint.

    Entries carry a version tag and expire after 24 hours; anything else in
    the store is treated as absent.
    """

    def __init__(
        self,
        api: PortfolioApiClient,
        store: CacheStore,
        *,
        user_id: int | str,
        clock: Callable[[], datetime] = utc_now,
        ttl: timedelta = CACHE_TTL,
    ) -> None:
        self.api = api
        self.store = store
        self.user_id = user_id
        self._clock = clock
        self.ttl = ttl
        self.snapshot: Optional[Dict[str, Any]] = None
        self.timestamp: Optional[datetime] = None
        self.is_using_cache = False

    @property
    def key(self) -> str:
        return cache_key(self.user_id)

    def read_local(self) -> Optional[CacheEntry]:
        raw = self.store.get(self.key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
            return None
        snapshot = data.get("snapshot")
        try:
            stamp = to_utc(datetime.fromisoformat(str(data.get("timestamp"))))
        except ValueError:
            return None
        if not isinstance(snapshot, dict):
            return None
        if self._clock() - stamp > self.ttl:
            return None
        return CacheEntry(snapshot=snapshot, timestamp=stamp)

    def save(self, snapshot: Dict[str, Any]) -> None:
        payload = {
            "snapshot": snapshot,
            "timestamp": self._clock().isoformat(),
            "version": CACHE_VERSION,
        }
        self.store.set(self.key, json.dumps(payload, default=str))

    def _apply(self, snapshot: Dict[str, Any], timestamp: datetime) -> None:
        self.snapshot = snapshot
        self.timestamp = timestamp
        self.is_using_cache = True

    async def load(
        self,
        on_local: Optional[Callable[[CacheEntry], None]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Serve the local copy first, then replace it with the server's latest."""

        local = self.read_local()
        if local is not None:
            self._apply(local.snapshot, local.timestamp)
            if on_local is not None:
                on_local(local)
        await self.refresh()
        return self.snapshot

    async def refresh(self) -> Optional[Dict[str, Any]]:
        try:
            server = await self.api.latest_snapshot()
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning(
                "Latest snapshot fetch failed; keeping cached copy",
                extra={"extra": {"user_id": self.user_id, "error": str(exc)}},
            )
            return self.snapshot
        if server:
            stamp = server.get("updated_at") or server.get("created_at")
            parsed = None
            if stamp:
                try:
                    parsed = to_utc(datetime.fromisoformat(str(stamp)))
                except ValueError:
                    parsed = None
            self._apply(server, parsed or self._clock())
            self.save(server)
        return self.snapshot

    def clear(self) -> None:
        self.store.delete(self.key)
        self.store.delete(LEGACY_CACHE_KEY)
        self.snapshot = None
        self.timestamp = None
        self.is_using_cache = False

    def age_text(self) -> Optional[str]:
        if self.timestamp is None:
            return None
        return time_ago(self.timestamp, now=self._clock())


__all__ = [
    "CACHE_VERSION",
    "CACHE_TTL",
    "LEGACY_CACHE_KEY",
    "CacheStore",
    "MemoryCacheStore",
    "JsonFileCacheStore",
    "CacheEntry",
    "PortfolioCache",
    "cache_key",
]
