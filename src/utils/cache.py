"""Small in-process caches with an injectable clock.

``TTLCache`` backs the per-tenant catalog snapshots and inverted indexes;
entries expire after ``ttl`` seconds even if nobody invalidates them.
``BoundedCache`` holds compiled regex bundles and drops its oldest half
in one sweep once it grows past ``max_size``.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


class TTLCache(Generic[K, V]):
    """Mapping whose entries go stale ``ttl`` seconds after insertion.

    Parameters
    ----------
    ttl:
        Lifetime of an entry in seconds.
    clock:
        Zero-argument callable returning monotonic seconds.  Tests inject a
        fake to step time deterministically.
    """

    def __init__(self, ttl: float, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}

    def get(self, key: K) -> V | None:
        """Return the live value for *key*, evicting it first if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)


class BoundedCache(Generic[K, V]):
    """Insertion-ordered cache with bulk eviction.

    When an insert would exceed ``max_size`` the oldest half of the entries
    is discarded at once, so the eviction cost is paid rarely.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 2:
            raise ValueError("max_size must be >= 2")
        self._max_size = max_size
        self._entries: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def set(self, key: K, value: V) -> None:
        if key not in self._entries and len(self._entries) >= self._max_size:
            for _ in range(self._max_size // 2):
                self._entries.popitem(last=False)
        self._entries[key] = value

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        value = self._entries.get(key)
        if value is None:
            value = factory()
            self.set(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
