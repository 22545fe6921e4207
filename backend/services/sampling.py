"""
Sampling primitives for fixed-memory aggregation.

Two structures bound the memory of the dashboard aggregator regardless of how
many transactions are ingested:

- ReservoirSample: uniform random sample of at most k items (Algorithm R).
- BoundedTopK: exact k greatest items by a key, stable on ties.

Randomness is injected as a ``random.Random`` instance so that a seeded build
is reproducible.

Usage:
    rng = random.Random(42)
    sample = ReservoirSample(2000, rng)
    for psf in values:
        sample.add(psf)
    sample.values()  # <= 2000 items, uniform over everything added

    recent = BoundedTopK(500, key=lambda tx: tx.month_key)
    recent.add(tx)
    recent.result()  # newest first
"""

import bisect
import itertools
import random
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar('T')

__all__ = [
    'ReservoirSample',
    'BoundedTopK',
]


class ReservoirSample(Generic[T]):
    """
    Uniform reservoir sample of capacity k.

    After n additions, every added item is resident with probability
    min(1, k/n), and the resident count is min(n, k).
    """

    __slots__ = ('capacity', 'seen', '_items', '_rng')

    def __init__(self, capacity: int, rng: Optional[random.Random] = None):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.seen = 0
        self._items: List[T] = []
        self._rng = rng if rng is not None else random.Random()

    def add(self, item: T) -> None:
        self.seen += 1
        if self.seen <= self.capacity:
            self._items.append(item)
            return
        j = self._rng.randrange(self.seen)
        if j < self.capacity:
            self._items[j] = item

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.add(item)

    def values(self) -> List[T]:
        """Residents in slot order (a copy)."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __repr__(self) -> str:
        return f"ReservoirSample(capacity={self.capacity}, seen={self.seen}, size={len(self._items)})"


class BoundedTopK(Generic[T]):
    """
    Keeps the k greatest items by ``key``.

    Items are held best-first. An item whose key equals a resident's key ranks
    after it, so on ties the earlier insert wins.
    """

    __slots__ = ('capacity', 'key', '_keys', '_items', '_order')

    def __init__(self, capacity: int, key: Callable[[T], object]):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.key = key
        # Negated ordering is not available for arbitrary keys (e.g. strings),
        # so residents are kept ascending by key with insertion rank appended
        # and read back reversed.
        self._keys: List[tuple] = []
        self._items: List[T] = []
        self._order = itertools.count()

    def add(self, item: T) -> None:
        k = self.key(item)
        full = len(self._items) >= self.capacity
        if full and not k > self._keys[0][0]:
            return
        # Later inserts sort lower among equal keys: rank = -insert_order
        rank = (k, -next(self._order))
        pos = bisect.bisect_left(self._keys, rank)
        self._keys.insert(pos, rank)
        self._items.insert(pos, item)
        if len(self._items) > self.capacity:
            del self._keys[0]
            del self._items[0]

    def result(self) -> List[T]:
        """Residents sorted best-first."""
        return list(reversed(self._items))

    def __len__(self) -> int:
        return len(self._items)
