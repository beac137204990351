"""Bounded access-order map.

Not synchronized: owners wrap every read-modify-write sequence in their
own lock so that an LRU touch and a possible eviction happen atomically.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """OrderedDict-backed LRU map; reads and writes both refresh recency."""

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._max = max_size

    @property
    def max_size(self) -> int:
        return self._max

    def get(self, key: K) -> V | None:
        """Return the value and mark it most recently used."""
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
        return value

    def peek(self, key: K) -> V | None:
        """Return the value without touching recency."""
        return self._entries.get(key)

    def put(self, key: K, value: V) -> list[K]:
        """Insert or replace, returning the keys evicted to stay in bounds."""
        self._entries[key] = value
        self._entries.move_to_end(key)
        evicted: list[K] = []
        while len(self._entries) > self._max:
            old_key, _ = self._entries.popitem(last=False)
            evicted.append(old_key)
        return evicted

    def pop(self, key: K) -> V | None:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    def items(self) -> list[tuple[K, V]]:
        return list(self._entries.items())

    def values(self) -> list[V]:
        return list(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))
