"""
In-process TTL cache with least-recently-used eviction.

Shields the geocoding and Overpass layers from repeated outbound calls:
  - Entries expire ``ttl_seconds`` after they were written. A read past
    that instant deletes the entry and reports a miss.
  - When full, inserting a new key evicts exactly one entry: the one with
    the oldest last access (reads refresh it, not just writes).
  - A background sweeper thread removes expired entries every
    ``sweep_interval`` seconds so memory is reclaimed with no traffic.

Thread-safe: every operation holds a single lock. Values are deep-copied
on read so callers can never mutate what is stored.

The sweeper follows the same daemon-thread pattern as health_monitor.py
(start/stop, threading.Event for shutdown).
"""

import copy
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL = 60


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    last_accessed_at: float


class TTLCache:
    """Bounded key/value store with TTL expiry and LRU eviction."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        name: str = "cache",
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval

        self._lock = threading.Lock()
        # Ordered oldest-access first; reads and writes move keys to the end.
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    @staticmethod
    def make_key(params: Mapping[str, Any]) -> str:
        """Deterministic key for a params mapping (order-insensitive)."""
        return json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the live value for *key*, or None."""
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                return None
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            value = entry.value
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key* for ``ttl_seconds``."""
        stored = copy.deepcopy(value)
        now = time.monotonic()
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._evict_lru()
            self._entries[key] = CacheEntry(
                key=key,
                value=stored,
                expires_at=now + self.ttl_seconds,
                last_accessed_at=now,
            )

    def invalidate(self, pattern: str) -> int:
        """Remove every key containing *pattern*. Returns the count removed."""
        with self._lock:
            doomed = [k for k in self._entries if pattern in k]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.info("[cache] %s: invalidated %d keys matching %r", self.name, len(doomed), pattern)
        return len(doomed)

    def cleanup(self) -> int:
        """Remove all expired entries. Returns the count removed."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("[cache] %s: swept %d expired entries", self.name, len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {
            "name": self.name,
            "size": size,
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_lru(self) -> None:
        """Drop the entry with the oldest last access. Caller holds the lock."""
        if not self._entries:
            return
        # min() keeps the first of equal timestamps, which is the older access.
        oldest = min(self._entries.values(), key=lambda e: e.last_accessed_at)
        del self._entries[oldest.key]
        logger.debug("[cache] %s: evicted %s", self.name, oldest.key)

    # ------------------------------------------------------------------
    # Background sweeper lifecycle
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        logger.info(
            "[cache] %s sweeper started (interval=%ss)", self.name, self.sweep_interval
        )
        while not self._stop_event.wait(timeout=self.sweep_interval):
            try:
                self.cleanup()
            except Exception:
                logger.exception("[cache] %s: unexpected error during sweep", self.name)
        logger.info("[cache] %s sweeper stopped", self.name)

    def start_sweeper(self) -> None:
        """Start the periodic cleanup thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"cache-sweeper-{self.name}", daemon=True
        )
        self._thread.start()

    def stop_sweeper(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the sweeper to exit and wait for it."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._thread = None

    @property
    def sweeper_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
