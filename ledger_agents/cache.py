"""Time-to-live cache for slowly changing upstream data."""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[K, V]):
    """
    In-process cache keyed by K with a fixed time-to-live.

    Stale reads are safe: cached values only feed non-destructive
    suggestions, so an expired entry is refreshed lazily on the next read
    and concurrent refreshes of the same key are not deduplicated. Swap
    this class for an external store by implementing the same methods.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, _Entry[V]] = {}

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            logger.debug(f"Cache entry expired: {key}")
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: K, value: V):
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value or load, store and return a fresh one."""
        value = self.get(key)
        if value is not None:
            return value

        value = await loader()
        self.set(key, value)
        logger.info(f"Cache refreshed: {key}")
        return value

    def invalidate(self, key: K):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
