"""TTL result cache with bounded size."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from ..errors import CacheError
from ..models import AnalysisKey, AnalysisResult

_LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(slots=True)
class _Entry:
    result: AnalysisResult
    stored_at: float
    expires_at: float


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0

    def as_dict(self, size: int) -> dict[str, float | int]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": size,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }


class ResultCache:
    """Store analysis results keyed by :class:`AnalysisKey`.

    Expiry is checked lazily on ``get``: an entry whose age has reached its
    TTL is dropped and reported as absent. When ``max_entries`` is reached the
    least recently used entry is evicted. The clock is monotonic seconds and
    can be replaced in tests.
    """

    def __init__(self, *, max_entries: int = 512, clock: Clock | None = None) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[AnalysisKey, _Entry] = OrderedDict()
        self._stats = CacheStats()
        self._lock = threading.Lock()

    def get(self, key: AnalysisKey) -> AnalysisResult | None:
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                _LOGGER.debug("Cache entry %s expired", key)
                return None
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.result

    def put(self, key: AnalysisKey, result: AnalysisResult, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise CacheError(f"TTL must be positive, got {ttl_ms}ms for {key}")
        now = self._now()
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                _LOGGER.debug("Evicted cache entry %s", evicted)
            self._entries[key] = _Entry(result=result, stored_at=now, expires_at=now + ttl_ms / 1000.0)
            self._stats.sets += 1

    def age_ms(self, key: AnalysisKey) -> float | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return (self._now() - entry.stored_at) * 1000.0

    def invalidate(self, key: AnalysisKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def purge_expired(self) -> int:
        now = self._now()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
            self._stats.expirations += len(expired)
        return len(expired)

    def stats(self) -> dict[str, float | int]:
        with self._lock:
            return self._stats.as_dict(len(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def _now(self) -> float:
        try:
            return float(self._clock())
        except Exception as exc:
            raise CacheError(f"Cache clock failed: {exc}") from exc
