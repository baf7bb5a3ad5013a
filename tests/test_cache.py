from __future__ import annotations

from portfolio_perf.cache import InMemoryCache, NullCache


def test_in_memory_cache_reads_through_once():
    cache = InMemoryCache()
    calls = []

    def loader():
        calls.append(1)
        return None

    assert cache.get_or_load(("latest_before", "u1", "a"), loader) is None
    assert cache.get_or_load(("latest_before", "u1", "a"), loader) is None
    assert len(calls) == 1
    assert (cache.hits, cache.misses) == (1, 1)


def test_invalidate_by_prefix():
    cache = InMemoryCache()
    cache.get_or_load(("latest_before", "u1", "a", 1), lambda: 1)
    cache.get_or_load(("latest_before", "u1", "a", 2), lambda: 2)
    cache.get_or_load(("latest_before", "u1", "b", 1), lambda: 3)
    assert cache.invalidate(("latest_before", "u1", "a")) == 2
    assert len(cache) == 1
    assert cache.invalidate() == 1


def test_null_cache_always_loads():
    cache = NullCache()
    calls = []
    cache.get_or_load(("k",), lambda: calls.append(1))
    cache.get_or_load(("k",), lambda: calls.append(1))
    assert len(calls) == 2
