from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadThroughCache(Protocol):
    def get_or_load(self, key: tuple[Hashable, ...], loader: Callable[[], T]) -> T: ...

    def invalidate(self, prefix: tuple[Hashable, ...] = ()) -> int: ...


class NullCache:
    """Always calls the loader."""

    def get_or_load(self, key: tuple[Hashable, ...], loader: Callable[[], T]) -> T:
        return loader()

    def invalidate(self, prefix: tuple[Hashable, ...] = ()) -> int:
        return 0


class InMemoryCache:
    """
    Per-run read-through cache for store lookups (previous records, buy history).

    Keys are tuples; `invalidate(prefix)` drops every key starting with `prefix`.
    A loaded None is cached as well.
    """

    def __init__(self) -> None:
        self._data: dict[tuple[Hashable, ...], Any] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def get_or_load(self, key: tuple[Hashable, ...], loader: Callable[[], T]) -> T:
        if key in self._data:
            self.hits += 1
            return self._data[key]
        self.misses += 1
        value = loader()
        self._data[key] = value
        return value

    def invalidate(self, prefix: tuple[Hashable, ...] = ()) -> int:
        n = len(prefix)
        stale = [k for k in self._data if k[:n] == prefix]
        for k in stale:
            del self._data[k]
        if stale:
            logger.debug("Invalidated %d cache entries for %r", len(stale), prefix)
        return len(stale)
