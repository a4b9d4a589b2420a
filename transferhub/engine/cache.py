"""
TTL cache with an injected clock.

Lifetime is explicit: entries expire after ``ttl`` seconds of the clock's
monotonic time, ``invalidate`` drops them, and ``get(..., force=True)``
bypasses a fresh entry.  When a reload fails with a transient error the
last known good value is served instead (``stale_ok``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from transferhub.domain.clock import Clock, SystemClock
from .retry import is_transient

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[K, V]):
    def __init__(self, ttl: float, clock: Optional[Clock] = None):
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self._entries: dict[K, _Entry[V]] = {}

    def peek(self, key: K) -> Optional[V]:
        """Return the stored value, fresh or stale, without loading."""
        entry = self._entries.get(key)
        return entry.value if entry else None

    def is_fresh(self, key: K) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self.clock.monotonic() - entry.stored_at < self.ttl

    def put(self, key: K, value: V) -> None:
        self._entries[key] = _Entry(value, self.clock.monotonic())

    def invalidate(self, key: Optional[K] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get(
        self,
        key: K,
        loader: Callable[[], Awaitable[V]],
        *,
        force: bool = False,
        stale_ok: bool = True,
    ) -> V:
        if not force and self.is_fresh(key):
            return self._entries[key].value
        try:
            value = await loader()
        except Exception as exc:
            if stale_ok and key in self._entries and is_transient(exc):
                logger.warning("Serving stale cache entry for %r: %s", key, exc)
                return self._entries[key].value
            raise
        self.put(key, value)
        return value
