from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from .config import CACHE_SWEEP_SECONDS, CACHE_TTL_SECONDS


log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class TTLCache(Generic[T]):
    """Process-local key/value cache whose entries expire after ``ttl`` seconds.

    Expired entries are dropped lazily on ``get`` and in bulk by ``cleanup``;
    ``start_sweeper`` runs ``cleanup`` on a daemon timer. A cold or cleared
    cache only costs recomputation.
    """

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        sweep_interval: float = CACHE_SWEEP_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._sweeping = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            log.debug("Evicted %d expired cache entries", len(expired))
        return len(expired)

    def start_sweeper(self) -> None:
        with self._lock:
            if self._sweeping:
                return
            self._sweeping = True
        self._schedule()

    def stop_sweeper(self) -> None:
        with self._lock:
            self._sweeping = False
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _schedule(self) -> None:
        timer = threading.Timer(self.sweep_interval, self._sweep)
        timer.daemon = True
        with self._lock:
            if not self._sweeping:
                return
            self._timer = timer
        timer.start()

    def _sweep(self) -> None:
        try:
            self.cleanup()
        finally:
            self._schedule()
