"""In-memory TTL caches for webhook storms.

Two caches share one TTL implementation:

- DebounceCache: collapses duplicate deliveries of the same event for a
  short window (``event_type`` + quote id). ``try_claim`` checks and marks
  in one synchronous step, so no ``await`` can interleave between them.
- ExistenceCache: remembers the deal item id for a quote for a few minutes
  so repeated updates skip the paginated board search.

Entries expire lazily on read; every write also sweeps expired entries so
memory stays bounded without a background task. The clock is injectable.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Dict with per-entry timestamps and a fixed time-to-live.

    Args:
        ttl: Seconds an entry stays fresh.
        clock: Monotonic clock returning seconds.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[float, V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _fresh(self, stored_at: float, now: float) -> bool:
        return now - stored_at < self.ttl

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if not self._fresh(stored_at, self._clock()):
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (self._clock(), value)
        self.sweep()

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if not self._fresh(stored_at, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()


class DebounceCache:
    """Suppresses repeated deliveries of one event inside the window."""

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache: TTLCache[float] = TTLCache(ttl, clock)
        self._clock = clock

    @staticmethod
    def key(event_type: str, foreign_id: str | int) -> str:
        return f"{event_type}-{foreign_id}"

    def try_claim(self, event_type: str, foreign_id: str | int) -> bool:
        """Claim an event for processing.

        Returns:
            True if the caller now owns the event, False if the same event
            was claimed within the window.
        """
        key = self.key(event_type, foreign_id)
        if self._cache.get(key) is not None:
            logger.info("dedup.duplicate_suppressed", key=key)
            return False
        self._cache.set(key, self._clock())
        return True

    def release(self, event_type: str, foreign_id: str | int) -> None:
        self._cache.delete(self.key(event_type, foreign_id))

    def __len__(self) -> int:
        return len(self._cache)


@dataclass
class CachedItem:
    foreign_id: str
    item_id: str
    name: str
    last_updated: float


class ExistenceCache:
    """Quote id -> known deal item, for a few minutes."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._cache: TTLCache[CachedItem] = TTLCache(ttl, clock)
        self._clock = clock

    def get(self, foreign_id: str | int) -> CachedItem | None:
        return self._cache.get(str(foreign_id))

    def remember(self, foreign_id: str | int, item_id: str, name: str = "") -> CachedItem:
        entry = CachedItem(
            foreign_id=str(foreign_id),
            item_id=str(item_id),
            name=name,
            last_updated=self._clock(),
        )
        self._cache.set(entry.foreign_id, entry)
        return entry

    def evict(self, foreign_id: str | int) -> None:
        self._cache.delete(str(foreign_id))

    def __len__(self) -> int:
        return len(self._cache)
