"""
In-process ephemeral tier.

Entries are valid for a fixed two-second window from their write time.
Expired entries are dropped when read and purged on every write so the map
cannot grow without bound.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from .models import CachedEntry

logger = structlog.get_logger()

EPHEMERAL_TTL_MS = 2000


def now_ms() -> int:
    return int(time.time() * 1000)


class EphemeralStore:
    """
    Lock-guarded in-memory map of cached payloads with write timestamps.

    Scoped to one process; concurrent requests only need the map updates to
    be atomic.
    """

    def __init__(
        self,
        max_size: int = 10000,
        ttl_ms: int = EPHEMERAL_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the store.

        Args:
            max_size: Maximum number of live entries; the oldest is evicted when full
            ttl_ms: Validity window of an entry in milliseconds
            clock: Millisecond clock, injectable for tests
        """
        self._entries: Dict[str, CachedEntry] = {}
        self._max_size = max_size
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _expired(self, entry: CachedEntry, now: int) -> bool:
        return now - entry.written_at_ms >= self._ttl_ms

    def get(self, key: str) -> Optional[Tuple[Any, int]]:
        """
        Get a payload and its write time.

        An entry past its window is deleted and reported as absent.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if self._expired(entry, now):
                del self._entries[key]
                self._misses += 1
                logger.debug("ephemeral_entry_expired", key=key, age_ms=now - entry.written_at_ms)
                return None

            self._hits += 1
            return entry.payload, entry.written_at_ms

    def put(self, key: str, payload: Any, write_time: Optional[int] = None) -> CachedEntry:
        """Store a payload stamped with ``write_time`` (defaults to now)."""
        with self._lock:
            now = self._clock()
            self._purge_expired_locked(now)

            if len(self._entries) >= self._max_size and key not in self._entries:
                oldest_key = min(self._entries.items(), key=lambda item: item[1].written_at_ms)[0]
                del self._entries[oldest_key]

            entry = CachedEntry(
                key=key,
                payload=payload,
                written_at_ms=write_time if write_time is not None else now,
            )
            self._entries[key] = entry
        return entry

    def delete_if_expired(self, key: str) -> bool:
        """Delete one entry if its window has elapsed. Returns True if deleted."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry, self._clock()):
                del self._entries[key]
                return True
            return False

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: int) -> int:
        expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._hits + self._misses
        hit_ratio = self._hits / total_requests if total_requests > 0 else 0

        return {
            'size': len(self._entries),
            'max_size': self._max_size,
            'hits': self._hits,
            'misses': self._misses,
            'hit_ratio': hit_ratio,
        }
