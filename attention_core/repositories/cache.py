"""Bounded TTL cache for membership and Slack config lookups."""

from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, TypeVar
import time


V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """Size-bounded cache whose entries expire after a fixed TTL.

    Never authoritative: a stale read is at most ``ttl_seconds`` old.
    Least recently used entries are evicted once ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1024,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, key: Hashable) -> object:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return _MISSING
        self._entries.move_to_end(key)
        return value

    def get(self, key: Hashable) -> Optional[V]:
        """Get a live entry, or None."""
        value = self._lookup(key)
        return None if value is _MISSING else value  # type: ignore[return-value]

    def contains(self, key: Hashable) -> bool:
        """Check for a live entry. Cached None values count as present."""
        return self._lookup(key) is not _MISSING

    def set(self, key: Hashable, value: V) -> None:
        """Store a value, evicting the least recently used entry if full."""
        self._entries[key] = (self._clock() + self._ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: Hashable) -> bool:
        """Remove one entry."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
