"""
In-process memo of calculation results keyed by context fingerprint.

The cache does not know about tariff records or rules: editing either leaves
stale results in place until the TTL expires or someone calls ``clear()``
(exposed as ``POST /api/tarifa-engine/clear-cache``).

Expired entries are swept from ``put()`` at most once per ``check_period``
seconds, and ``max_entries`` caps the map by dropping the oldest entries.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..dataclasses import CalculationResult

logger = logging.getLogger(__name__)


class ResultCache:
    def __init__(
        self,
        ttl_seconds: Optional[int] = 300,
        clock: Callable[[], float] = time.monotonic,
        check_period: int = 60,
        max_entries: Optional[int] = 10000,
    ):
        self.ttl_seconds = ttl_seconds
        self.check_period = check_period
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, CalculationResult]] = {}
        self._hits = 0
        self._misses = 0
        self._last_purge = clock()

    def _expired(self, stored_at: float, now: float) -> bool:
        return self.ttl_seconds is not None and now - stored_at >= self.ttl_seconds

    def get(self, fingerprint: str) -> Optional[CalculationResult]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and self._expired(entry[0], self._clock()):
                del self._entries[fingerprint]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            hit = copy.deepcopy(entry[1])
        hit.cache_hit = True
        return hit

    def put(self, fingerprint: str, result: CalculationResult) -> None:
        stored = copy.deepcopy(result)
        stored.cache_hit = False
        with self._lock:
            now = self._clock()
            if now - self._last_purge >= self.check_period:
                self._purge_expired(now)
            # re-inserting moves the key to the end, so eviction drops the oldest writes first
            self._entries.pop(fingerprint, None)
            self._entries[fingerprint] = (now, stored)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    del self._entries[next(iter(self._entries))]

    def clear(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            before = self._stats_unlocked()
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            after = self._stats_unlocked()
        logger.info(f"Tariff cache cleared ({before['keys']} entries dropped)")
        return {"before": before, "after": after}

    def stats(self) -> Dict[str, Optional[int]]:
        with self._lock:
            self._purge_expired(self._clock())
            return self._stats_unlocked()

    def _purge_expired(self, now: float) -> None:
        self._last_purge = now
        if self.ttl_seconds is None:
            return
        dead = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)]
        for key in dead:
            del self._entries[key]
        if dead:
            logger.debug(f"Purged {len(dead)} expired tariff cache entries")

    def _stats_unlocked(self):
        return {
            "keys": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "ttlSeconds": self.ttl_seconds,
            "maxEntries": self.max_entries,
        }
