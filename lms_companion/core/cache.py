"""
Response Cache.

Short-TTL cache for dashboard reads. Only keys that contain one of the
dashboard URL patterns are ever stored; set() silently ignores anything
else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from lms_companion.config import DEFAULT_DASHBOARD_PATTERNS
from lms_companion.core.scheduler import Scheduler, TimerHandle

MYCOURSES_PATTERN = "/api/studentdashboard/mycourses/"
DASHBOARD_PATTERN = "/api/studentdashboard/"


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


def generate_cache_key(url: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Build a cache key from a URL and its query params.

    Params are sorted by name, so the same set in a different order maps to
    the same key.
    """
    if not params:
        return url
    query = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return f"{url}?{query}"


class ResponseCache:
    """In-memory TTL cache restricted to dashboard-read URLs."""

    def __init__(
        self,
        clock: Callable[[], float],
        default_ttl: float = 120,
        patterns: list[str] | None = None,
    ):
        self._clock = clock
        self.default_ttl = default_ttl
        self.patterns = list(patterns if patterns is not None else DEFAULT_DASHBOARD_PATTERNS)
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: TimerHandle | None = None

    def is_dashboard_api(self, key: str) -> bool:
        return any(pattern in key for pattern in self.patterns)

    # =========================================================================
    # Entries
    # =========================================================================

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if not entry.is_valid(self._clock()):
            del self._entries[key]
            logger.debug(f"Cache expired: {key}")
            return None

        logger.debug(f"Cache hit: {key}")
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if not self.is_dashboard_api(key):
            return
        self._entries[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def cleanup(self) -> int:
        """Evict every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Cache cleanup: removed {len(expired)} expired entries")
        return len(expired)

    def clear_by_pattern(self, pattern: str) -> int:
        matching = [key for key in self._entries if pattern in key]
        for key in matching:
            del self._entries[key]
        return len(matching)

    def clear_dashboard_cache(self) -> int:
        return self.clear_by_pattern(DASHBOARD_PATTERN)

    def clear_mycourses_cache(self) -> int:
        return self.clear_by_pattern(MYCOURSES_PATTERN)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        valid = sum(1 for entry in self._entries.values() if entry.is_valid(now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
            "keys": list(self._entries.keys()),
        }

    # =========================================================================
    # Read-through & sweeping
    # =========================================================================

    async def cached(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value for ``key`` or fetch and store it."""
        value = self.get(key)
        if value is not None:
            return value

        logger.debug(f"Cache miss: {key}")
        value = await fetch()
        self.set(key, value, ttl)
        return value

    def start_sweeper(self, scheduler: Scheduler, interval: float = 120) -> TimerHandle:
        self.stop_sweeper()
        self._sweeper = scheduler.call_every(interval, self.cleanup)
        return self._sweeper

    def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
