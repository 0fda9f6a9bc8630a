"""Versioned snapshot cache with TTL eviction.

Holds prepared candidate pools keyed by filter. An entry is reused only
while its source version matches the repository's current version and it
has been used within the TTL window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _CachedSnapshot(Generic[T]):
    value: T
    version: int
    last_used: float


class SnapshotCache(Generic[T]):
    """Thread-safe cache of values derived from a versioned source."""

    def __init__(self, ttl: float = 30.0) -> None:
        self._ttl = ttl
        self._lock = threading.Lock()
        self._entries: dict[Hashable, _CachedSnapshot[T]] = {}

    def get(self, key: Hashable, version: int, build: Callable[[], tuple[int, T]]) -> T:
        """Return the cached value for ``key`` or rebuild it.

        ``build`` returns the version its value was derived from, which may
        be newer than ``version`` if the source changed in between.
        """
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and cached.version == version and not self._expired(cached, time.monotonic()):
                cached.last_used = time.monotonic()
                return cached.value

        built_version, value = build()

        with self._lock:
            # Another thread may have stored a newer snapshot while we built.
            existing = self._entries.get(key)
            if existing is not None and existing.version > built_version:
                existing.last_used = time.monotonic()
                return existing.value
            self._entries[key] = _CachedSnapshot(value=value, version=built_version, last_used=time.monotonic())
            logger.debug("Rebuilt snapshot %s at version %d", key, built_version)
            return value

    def cached_keys(self) -> list[Hashable]:
        with self._lock:
            return list(self._entries.keys())

    def evict_expired(self) -> None:
        """Drop entries idle for longer than the TTL."""
        if self._ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [key for key, cached in self._entries.items() if self._expired(cached, now)]
            for key in expired:
                del self._entries[key]
                logger.debug("Evicted idle snapshot %s", key)

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or all entries when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def _expired(self, cached: _CachedSnapshot[T], now: float) -> bool:
        return self._ttl != 0 and (now - cached.last_used) > self._ttl
